from dataclasses import dataclass, field
from enum import Enum


class FacetType(str, Enum):
    AESTHETIC = "aesthetic"  # Visual style from screenshots
    ATMOSPHERE = "atmosphere"  # Emotional mood/vibe
    MECHANICS = "mechanics"  # Gameplay patterns
    NARRATIVE = "narrative"  # Theme and story
    DYNAMICS = "dynamics"  # Pacing and feel


class SourceType(str, Enum):
    IMAGE = "image"
    TEXT = "text"
    MULTIMODAL = "multimodal"
    VIDEO = "video"


class ExtractionStrategy(str, Enum):
    WEB = "web"
    VISION = "vision"
    TAGS = "tags"
    NONE = "none"


FACET_TYPES: list[FacetType] = list(FacetType)


# Web-grounded search prompts. "{title}" is replaced with the item title.

AESTHETIC_SEARCH_PROMPT = (
    "Search Reddit, Twitter, and gaming forums for how players and reviewers "
    'describe the visual aesthetic and art style of the video game "{title}". '
    "What terms does the community use to describe how it looks? Give me a 2-3 "
    "sentence summary using the exact terminology the community uses."
)

GAMEPLAY_SEARCH_PROMPT = (
    "Search Reddit, Twitter, and gaming forums for how players and reviewers "
    "describe the gameplay mechanics, genre, and play style of the video game "
    '"{title}". What terms does the community use to describe how it plays? '
    "Give me a 2-3 sentence summary using the exact terminology the community "
    'uses (e.g., "extraction shooter", "roguelite", "metroidvania", "city builder").'
)

NARRATIVE_SEARCH_PROMPT = (
    "Search Reddit, Twitter, and gaming forums for how players and reviewers "
    "describe the narrative structure, story style, tone, and mood of the video "
    'game "{title}". What terms does the community use to describe its '
    "storytelling? Give me a 2-3 sentence summary using the exact terminology the "
    'community uses (e.g., "branching narrative", "choice-driven", "dark fantasy", "cozy").'
)

DYNAMICS_SEARCH_PROMPT = (
    "Search Reddit, Twitter, and gaming forums for how players and reviewers "
    'describe the pacing, session length, and moment-to-moment flow of the video game "{title}". '
    "What terms does the community use to describe how it feels to play over time? "
    "Give me a 2-3 sentence summary using the exact terminology the community uses "
    '(e.g., "fast-paced", "slow burn", "bite-sized runs", "grindy").'
)

REFINE_PROMPT = """You are a keyword extractor. Extract ONLY descriptor words and phrases from this text.

STRICT RULES:
1. Extract ONLY adjectives and noun phrases that describe the topic (visual style, gameplay, or narrative)
2. NO verbs (features, brings, portrays, enhances, etc.)
3. NO sentences or complete thoughts
4. NO narrative phrases like "brings to life", "attention to detail", "immersive experience"
5. ONLY words/phrases like: "photorealistic", "post-apocalyptic", "low poly", "cyberpunk", "pixel art", "gritty", "extraction shooter", "roguelite", "branching narrative", "choice-driven", "dark fantasy"
6. Maximum 2-3 words per phrase
7. Return ONLY a comma-separated list with NO other text

BAD examples (DO NOT INCLUDE):
- "features photorealistic graphics" -> extract only "photorealistic"
- "brings to life a post-apocalyptic world" -> extract only "post-apocalyptic"
- "attention to detail" -> skip this entirely
- "enhances the immersive experience" -> skip this entirely
- "is an extraction shooter" -> extract only "extraction shooter"

GOOD examples:
- "photorealistic, post-apocalyptic, gritty, cinematic, decaying, overgrown"
- "extraction shooter, roguelite, skill-based, run-based"
- "branching narrative, choice-driven, dark fantasy, moral ambiguity"

Text to extract from:
{text}

Return ONLY comma-separated words/phrases:"""

# Vision captioning prompts

ATMOSPHERE_VISION_PROMPT = """Describe the mood and atmosphere of this video game screenshot in 2-3 sentences. Focus on:
- Emotional tone (dark, cozy, tense, whimsical, melancholic, etc.)
- Visual atmosphere (lighting, color palette, weather/environment mood)
- Overall feeling it evokes

Be concise and focus on emotional qualities, not gameplay or objects."""

VISUAL_STYLE_VISION_PROMPT = """Describe the visual art style of this video game screenshot in 2-3 sentences. Focus on:
- Art style (pixel art, realistic 3D, anime, hand-drawn, low-poly, etc.)
- Color palette (vibrant, muted, neon, pastel, monochrome, etc.)
- Visual techniques (cel-shading, lighting style, texture quality)

Be concise and focus on visual aesthetics, not the content or gameplay."""


@dataclass(frozen=True)
class FacetConfig:
    facet: FacetType
    label: str
    description: str
    source_type: SourceType
    web_prompt: str | None = None
    vision_prompt: str | None = None
    caption_header: str = "Based on multiple screenshots"


FACET_CONFIGS: dict[FacetType, FacetConfig] = {
    FacetType.AESTHETIC: FacetConfig(
        facet=FacetType.AESTHETIC,
        label="Looks Like",
        description="Similar art style and visual design",
        source_type=SourceType.IMAGE,
        web_prompt=AESTHETIC_SEARCH_PROMPT,
        vision_prompt=VISUAL_STYLE_VISION_PROMPT,
        caption_header="Visual style based on multiple screenshots",
    ),
    FacetType.ATMOSPHERE: FacetConfig(
        facet=FacetType.ATMOSPHERE,
        label="Feels Like",
        description="Similar mood and emotional atmosphere",
        source_type=SourceType.MULTIMODAL,
        vision_prompt=ATMOSPHERE_VISION_PROMPT,
        caption_header="Game atmosphere based on multiple screenshots",
    ),
    FacetType.MECHANICS: FacetConfig(
        facet=FacetType.MECHANICS,
        label="Plays Like",
        description="Similar gameplay and mechanics",
        source_type=SourceType.TEXT,
        web_prompt=GAMEPLAY_SEARCH_PROMPT,
    ),
    FacetType.NARRATIVE: FacetConfig(
        facet=FacetType.NARRATIVE,
        label="Premise",
        description="Similar themes and story",
        source_type=SourceType.TEXT,
        web_prompt=NARRATIVE_SEARCH_PROMPT,
    ),
    FacetType.DYNAMICS: FacetConfig(
        facet=FacetType.DYNAMICS,
        label="Flows Like",
        description="Similar pacing and feel",
        source_type=SourceType.TEXT,
        web_prompt=DYNAMICS_SEARCH_PROMPT,
    ),
}


@dataclass(frozen=True)
class FacetPreset:
    id: str
    label: str
    description: str
    weights: dict[FacetType, float] = field(default_factory=dict)


FACET_PRESETS: dict[str, FacetPreset] = {
    preset.id: preset
    for preset in [
        FacetPreset(
            id="balanced",
            label="Balanced",
            description="Equal weight across all facets",
            weights={
                FacetType.AESTHETIC: 0.25,
                FacetType.ATMOSPHERE: 0.25,
                FacetType.MECHANICS: 0.25,
                FacetType.NARRATIVE: 0.25,
            },
        ),
        FacetPreset(
            id="visual",
            label="Visual Match",
            description="Prioritizes art style and mood",
            weights={
                FacetType.AESTHETIC: 0.5,
                FacetType.ATMOSPHERE: 0.3,
                FacetType.NARRATIVE: 0.2,
            },
        ),
        FacetPreset(
            id="gameplay",
            label="Gameplay Match",
            description="Prioritizes mechanics and feel",
            weights={
                FacetType.MECHANICS: 0.6,
                FacetType.ATMOSPHERE: 0.4,
            },
        ),
        FacetPreset(
            id="story",
            label="Story Match",
            description="Prioritizes themes and narrative",
            weights={
                FacetType.NARRATIVE: 0.5,
                FacetType.ATMOSPHERE: 0.3,
                FacetType.AESTHETIC: 0.2,
            },
        ),
    ]
}

DEFAULT_PRESET = "balanced"
