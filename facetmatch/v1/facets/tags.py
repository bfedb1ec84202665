"""
Tag normalization, categorization and deterministic facet templates.

Maps community tags to canonical forms, buckets them by facet relevance and
renders one plain-text document per facet. Used when neither web search nor
vision captioning produced a description, and as the text component of the
atmosphere facet.
"""

import re

from facetmatch.v1.catalog.schemas import CatalogItem
from facetmatch.v1.facets.config import FacetType

# Map variations to canonical forms
TAG_SYNONYMS: dict[str, str] = {
    # Subgenre
    "Souls-like": "soulslike",
    "Soulslike": "soulslike",
    "Soulsborne": "soulslike",
    "Rogue-like": "roguelike",
    "Roguelite": "roguelike",
    "Rogue-lite": "roguelike",
    "Roguelike": "roguelike",
    "Metroidvania": "metroidvania",
    "MetroidVania": "metroidvania",
    "Metroid-vania": "metroidvania",
    # Perspective
    "First-Person": "first-person",
    "First Person": "first-person",
    "FPS": "first-person-shooter",
    "Third-Person": "third-person",
    "Third Person": "third-person",
    "Top-Down": "top-down",
    "Top Down": "top-down",
    "Isometric": "isometric",
    "Side-Scroller": "side-scroller",
    "Side Scroller": "side-scroller",
    "Sidescroller": "side-scroller",
    "2D Platformer": "platformer-2d",
    "3D Platformer": "platformer-3d",
    # Genre
    "Action RPG": "action-rpg",
    "ARPG": "action-rpg",
    "Turn-Based": "turn-based",
    "Turn Based": "turn-based",
    "Real-Time": "real-time",
    "Real Time": "real-time",
    "RTS": "real-time-strategy",
    "Real-Time Strategy": "real-time-strategy",
    "Real Time Strategy": "real-time-strategy",
    # Mode
    "Single-player": "singleplayer",
    "Single Player": "singleplayer",
    "Singleplayer": "singleplayer",
    "Multi-player": "multiplayer",
    "Multi Player": "multiplayer",
    "Multiplayer": "multiplayer",
    "Co-op": "coop",
    "Co-Op": "coop",
    "Coop": "coop",
    "Cooperative": "coop",
    "PvP": "pvp",
    "PVP": "pvp",
    "Player vs Player": "pvp",
    "PvE": "pve",
    "PVE": "pve",
    "Player vs Environment": "pve",
}

MECHANIC_TAGS = frozenset(
    {
        # Core mechanics
        "roguelike", "metroidvania", "soulslike", "bullet-hell", "hack-and-slash",
        "beat-em-up", "shoot-em-up", "run-and-gun",
        # Gameplay systems
        "crafting", "base-building", "city-builder", "management", "simulation",
        "survival", "stealth", "tower-defense", "deck-building", "card-game",
        # Combat styles
        "turn-based", "real-time", "tactical", "strategy", "action", "combat",
        # Progression systems
        "rpg", "action-rpg", "jrpg", "crpg", "skill-tree", "leveling", "loot",
        # Movement/traversal
        "platformer", "platformer-2d", "platformer-3d", "parkour", "racing",
        "driving", "flying",
        # Puzzle
        "puzzle", "puzzle-platformer", "logic", "mystery",
        # Exploration
        "exploration", "open-world", "sandbox", "walking-simulator", "adventure",
    }
)

PERSPECTIVE_TAGS = frozenset(
    {
        "first-person", "first-person-shooter", "third-person", "top-down",
        "isometric", "side-scroller", "2d", "3d", "vr", "bird-view",
        "point-and-click",
    }
)

MODE_TAGS = frozenset(
    {
        "singleplayer", "multiplayer", "coop", "pvp", "pve", "local-coop",
        "online-coop", "split-screen", "mmo", "massively-multiplayer",
    }
)

PACING_TAGS = frozenset(
    {
        "fast-paced", "slow-paced", "action-packed", "intense", "adrenaline",
        "arcade", "short", "difficult", "replay-value", "speedrun", "time-attack",
        "time-management", "wave-based", "idler", "clicker", "score-attack",
    }
)

MOOD_TAGS = frozenset(
    {
        # Positive/Cozy
        "cozy", "relaxing", "peaceful", "wholesome", "cute", "casual",
        "family-friendly",
        # Dark/Tense
        "dark", "atmospheric", "horror", "psychological-horror", "survival-horror",
        "creepy", "disturbing", "gore", "violent",
        # Whimsical
        "colorful", "surreal", "quirky", "funny", "comedy", "parody", "absurd",
        # Melancholic
        "emotional", "story-rich", "narrative", "choices-matter", "multiple-endings",
    }
)

THEME_TAGS = frozenset(
    {
        # Settings
        "sci-fi", "fantasy", "medieval", "post-apocalyptic", "cyberpunk",
        "steampunk", "space", "western", "noir", "modern", "historical",
        "world-war", "alternate-history",
        # Supernatural
        "magic", "supernatural", "lovecraftian", "mythology", "demons",
        "vampires", "zombies",
        # Nature
        "nature", "animals", "farming", "fishing",
        # Abstract
        "abstract", "minimalist", "experimental",
    }
)

VISUAL_STYLE_TAGS = frozenset(
    {
        "pixel-art", "retro", "8-bit", "16-bit", "hand-drawn", "stylized", "anime",
        "cartoon", "realistic", "photorealistic", "low-poly", "voxel", "cel-shaded",
        "noir", "black-and-white", "colorful", "minimalist", "beautiful",
        "great-soundtrack",
    }
)

# Platform features many items share; they carry no similarity signal
GENERIC_TAGS = frozenset(
    {
        "Steam Achievements", "Steam Cloud", "Steam Trading Cards", "Steam Workshop",
        "Steam Leaderboards", "Family Sharing", "Save Anytime", "Subtitle Options",
        "Adjustable Text Size", "Adjustable Difficulty", "Camera Comfort",
        "Playable without Timed Input", "Remote Play on Tablet", "Remote Play on Phone",
        "Remote Play on TV", "Remote Play Together", "Partial Controller Support",
        "Full controller support", "Includes level editor", "In-App Purchases",
        "Stats", "Cross-Platform Multiplayer", "Captions available",
        "Commentary available", "Valve Anti-Cheat enabled", "Tracked Controller Support",
        "Color Alternatives", "Custom Volume Controls", "Mouse Only Option",
        "Keyboard Only Option", "Touch Only Option", "Stereo Sound", "Surround Sound",
    }
)

MOOD_PATTERNS: list[tuple[re.Pattern, str]] = [
    (re.compile(r"dark|grim|bleak|sinister", re.IGNORECASE), "dark"),
    (re.compile(r"cozy|warm|peaceful|relaxing", re.IGNORECASE), "cozy"),
    (re.compile(r"tense|intense|thrilling|suspense", re.IGNORECASE), "tense"),
    (re.compile(r"beautiful|gorgeous|stunning", re.IGNORECASE), "beautiful"),
    (re.compile(r"eerie|creepy|haunting", re.IGNORECASE), "eerie"),
    (re.compile(r"whimsical|charming|delightful", re.IGNORECASE), "whimsical"),
    (re.compile(r"brutal|violent|visceral", re.IGNORECASE), "brutal"),
    (re.compile(r"melancholic|sad|emotional", re.IGNORECASE), "melancholic"),
]

SETTING_PRIORITY = [
    "sci-fi", "fantasy", "medieval", "post-apocalyptic", "cyberpunk", "steampunk",
    "space", "western", "noir", "modern", "historical",
]

PERSPECTIVE_ORDER = [
    "first-person", "third-person", "top-down", "isometric", "side-scroller", "2d", "3d",
]

SUBGENRE_ORDER = [
    "metroidvania", "soulslike", "roguelike", "bullet-hell", "deck-building",
    "city-builder", "survival", "tower-defense", "walking-simulator", "visual-novel",
]

MAX_DESCRIPTION_CHARS = 500

_PLAYER_FANTASY = re.compile(r"you (?:are|play as|become) (?:a |an )?([^,.]+)", re.IGNORECASE)


def normalize_tag(tag: str) -> str:
    """Map a tag to its canonical lowercase hyphenated form."""
    tag = tag.strip()
    if tag in TAG_SYNONYMS:
        return TAG_SYNONYMS[tag]
    return re.sub(r"\s+", "-", tag.lower())


def normalize_tags(tags: list[str]) -> list[str]:
    return [normalize_tag(t) for t in tags]


def filter_meaningful_tags(tags: list[str]) -> list[str]:
    return [t for t in tags if t.strip() and t not in GENERIC_TAGS]


def categorize_tags(tags: list[str]) -> dict[str, list[str]]:
    """Bucket tags by type. Each tag lands in the first bucket that claims it."""
    result: dict[str, list[str]] = {
        "mechanics": [],
        "perspectives": [],
        "modes": [],
        "pacing": [],
        "moods": [],
        "themes": [],
        "visuals": [],
        "other": [],
    }
    buckets = [
        ("mechanics", MECHANIC_TAGS),
        ("perspectives", PERSPECTIVE_TAGS),
        ("modes", MODE_TAGS),
        ("pacing", PACING_TAGS),
        ("moods", MOOD_TAGS),
        ("themes", THEME_TAGS),
        ("visuals", VISUAL_STYLE_TAGS),
    ]

    for tag in normalize_tags(filter_meaningful_tags(tags)):
        for name, members in buckets:
            if tag in members:
                if tag not in result[name]:
                    result[name].append(tag)
                break
        else:
            if tag not in result["other"]:
                result["other"].append(tag)

    return result


def extract_sorted_tags(tags: dict[str, float] | None) -> list[str]:
    """Tag names sorted by weight, most common first."""
    if not tags:
        return []
    return [name for name, _ in sorted(tags.items(), key=lambda kv: -kv[1])]


def infer_perspective(tags: list[str]) -> str:
    normalized = normalize_tags(tags)

    for perspective in PERSPECTIVE_ORDER:
        if perspective in normalized:
            return perspective

    if any("fps" in t or "shooter" in t for t in normalized):
        return "first-person"

    if any("platformer" in t for t in normalized):
        return "third-person" if "3d" in normalized else "side-scroller"

    return "unknown"


def infer_game_modes(tags: list[str]) -> list[str]:
    normalized = set(normalize_tags(tags))
    modes: list[str] = []

    if normalized & {"singleplayer", "single-player"}:
        modes.append("Single-player")
    if normalized & {"multiplayer", "online"}:
        modes.append("Multiplayer")
    if normalized & {"coop", "co-op", "cooperative"}:
        modes.append("Co-op")
    if normalized & {"pvp", "competitive"}:
        modes.append("PvP")
    if normalized & {"local-coop", "split-screen"}:
        modes.append("Local Co-op")

    return modes or ["Single-player"]


def infer_subgenre(tags: list[str]) -> str:
    normalized = normalize_tags(tags)

    for subgenre in SUBGENRE_ORDER:
        if subgenre in normalized:
            return subgenre

    tagset = set(normalized)
    has_action = "action" in tagset
    has_rpg = "rpg" in tagset or "role-playing" in tagset
    has_platformer = "platformer" in tagset
    has_strategy = "strategy" in tagset

    if has_action and has_rpg:
        return "action-rpg"
    if has_platformer and "puzzle" in tagset:
        return "puzzle-platformer"
    if has_action and has_platformer:
        return "action-platformer"
    if has_strategy and "turn-based" in tagset:
        return "turn-based-strategy"
    if has_strategy and "real-time" in tagset:
        return "real-time-strategy"
    if "simulation" in tagset:
        return "simulation"

    return normalized[0] if normalized else "indie"


def infer_structure(tags: list[str]) -> str:
    """Describe how a play session is organized."""
    normalized = set(normalize_tags(tags))
    if normalized & {"roguelike", "roguelite", "procedural-generation"}:
        return "run-based, procedurally varied"
    if normalized & {"open-world", "sandbox"}:
        return "open-ended, player-directed"
    if "episodic" in normalized:
        return "episodic"
    if normalized & {"linear", "story-rich", "visual-novel"}:
        return "linear, story-driven"
    if normalized & {"mmo", "massively-multiplayer", "pvp"}:
        return "session-based, competitive"
    if normalized & {"management", "city-builder", "base-building"}:
        return "long-form, incremental"
    return "level-based"


def description_moods(text: str) -> list[str]:
    return [mood for pattern, mood in MOOD_PATTERNS if pattern.search(text or "")]


def clean_text(text: str, max_chars: int = MAX_DESCRIPTION_CHARS) -> str:
    cleaned = re.sub(r"\s+", " ", text or "").strip()
    if len(cleaned) <= max_chars:
        return cleaned
    return cleaned[:max_chars].rsplit(" ", 1)[0]


def infer_setting(item: CatalogItem, themes: list[str]) -> str:
    for setting in SETTING_PRIORITY:
        if setting in themes:
            return setting[0].upper() + setting[1:]

    desc = item.short_text.lower()
    if any(word in desc for word in ("space", "galaxy", "planet")):
        return "Science fiction, Space"
    if any(word in desc for word in ("magic", "kingdom", "dragon")):
        return "Fantasy"
    if any(word in desc for word in ("zombie", "apocalypse", "wasteland")):
        return "Post-apocalyptic"

    return ", ".join(themes[:2]) or "Unknown"


def infer_tone(moods: list[str]) -> str:
    if "horror" in moods or "dark" in moods:
        return "Dark, tense"
    if "cozy" in moods or "relaxing" in moods:
        return "Warm, gentle"
    if "funny" in moods or "comedy" in moods:
        return "Comedic, lighthearted"
    if "emotional" in moods or "story-rich" in moods:
        return "Emotional, dramatic"
    if "atmospheric" in moods:
        return "Atmospheric, immersive"
    return "Engaging"


def infer_player_fantasy(description: str) -> str:
    match = _PLAYER_FANTASY.search(description)
    if match:
        return match.group(1).strip()
    if len(description) > 10:
        first_sentence = re.split(r"[.!?]", description)[0]
        if len(first_sentence) < 100:
            return first_sentence.strip()
    return ""


# Facet templates


def build_aesthetic_text(item: CatalogItem) -> str:
    categorized = categorize_tags(extract_sorted_tags(item.tags))
    parts: list[str] = []
    if categorized["visuals"]:
        parts.append(f"Visual style: {', '.join(categorized['visuals'][:6])}")
    if categorized["perspectives"]:
        parts.append(f"Perspective: {', '.join(categorized['perspectives'][:2])}")
    if categorized["themes"]:
        parts.append(f"Setting: {', '.join(categorized['themes'][:3])}")
    return "\n".join(parts)


def build_atmosphere_text(item: CatalogItem) -> str:
    categorized = categorize_tags(extract_sorted_tags(item.tags))
    parts: list[str] = []

    if categorized["moods"]:
        parts.append(f"Mood: {', '.join(categorized['moods'][:5])}")
    if categorized["visuals"]:
        parts.append(f"Style: {', '.join(categorized['visuals'][:3])}")
    if categorized["themes"]:
        parts.append(f"Theme: {', '.join(categorized['themes'][:3])}")

    feel = description_moods(item.short_text)
    if feel:
        parts.append(f"Feel: {', '.join(feel)}")

    return "\n".join(parts) or "atmospheric indie game"


def build_mechanics_text(item: CatalogItem) -> str:
    tags = extract_sorted_tags(item.tags)
    categorized = categorize_tags(tags)

    parts = [
        f"Genre: {', '.join(item.genres) or 'Unknown'}",
        f"Perspective: {infer_perspective(tags)}",
        f"Core mechanics: {', '.join(categorized['mechanics'][:8]) or 'action'}",
        f"Game modes: {', '.join(infer_game_modes(tags))}",
        f"Subgenre: {infer_subgenre(tags)}",
    ]
    if categorized["other"]:
        parts.append(f"Additional: {', '.join(categorized['other'][:5])}")

    return "\n".join(parts)


def build_narrative_text(item: CatalogItem) -> str:
    categorized = categorize_tags(extract_sorted_tags(item.tags))

    themes: list[str] = []
    for tag in categorized["moods"][:3] + categorized["themes"][:3]:
        if tag not in themes:
            themes.append(tag)

    description = clean_text(item.short_text or item.long_text)
    parts = [
        f"Setting: {infer_setting(item, categorized['themes'])}",
        f"Themes: {', '.join(themes[:8]) or 'Adventure'}",
        f"Story: {description or item.title}",
        f"Tone: {infer_tone(categorized['moods'])}",
    ]

    fantasy = infer_player_fantasy(item.short_text)
    if fantasy:
        parts.append(f"Fantasy: {fantasy}")

    return "\n".join(parts)


def build_dynamics_text(item: CatalogItem) -> str:
    tags = extract_sorted_tags(item.tags)
    categorized = categorize_tags(tags)

    pacing = categorized["pacing"][:5]
    if not pacing:
        mechanics = set(categorized["mechanics"])
        if mechanics & {"turn-based", "puzzle", "management", "walking-simulator"}:
            pacing = ["deliberate", "slow-paced"]
        elif mechanics & {"action", "bullet-hell", "racing", "shoot-em-up"}:
            pacing = ["fast-paced"]
        else:
            pacing = ["moderate"]

    parts = [
        f"Pacing: {', '.join(pacing)}",
        f"Game modes: {', '.join(infer_game_modes(tags))}",
        f"Structure: {infer_structure(tags)}",
    ]
    return "\n".join(parts)


TEMPLATE_BUILDERS = {
    FacetType.AESTHETIC: build_aesthetic_text,
    FacetType.ATMOSPHERE: build_atmosphere_text,
    FacetType.MECHANICS: build_mechanics_text,
    FacetType.NARRATIVE: build_narrative_text,
    FacetType.DYNAMICS: build_dynamics_text,
}


def build_tag_document(facet: FacetType, item: CatalogItem) -> str:
    """Deterministic tag-derived description for ``facet``."""
    return TEMPLATE_BUILDERS[facet](item)
