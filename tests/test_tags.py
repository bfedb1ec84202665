import pytest

from facetmatch.v1.facets.config import FacetType
from facetmatch.v1.facets.tags import (
    build_aesthetic_text,
    build_atmosphere_text,
    build_dynamics_text,
    build_mechanics_text,
    build_narrative_text,
    build_tag_document,
    categorize_tags,
    clean_text,
    extract_sorted_tags,
    infer_game_modes,
    infer_perspective,
    infer_subgenre,
    normalize_tag,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Souls-like", "soulslike"),
        ("Rogue-lite", "roguelike"),
        ("Co-op", "coop"),
        ("Pixel Graphics", "pixel-graphics"),
        (" Open World ", "open-world"),
    ],
)
def test_normalize_tag(raw, expected):
    assert normalize_tag(raw) == expected


def test_categorize_tags_buckets_and_drops_platform_features():
    categorized = categorize_tags(
        ["Puzzle", "Co-op", "First-Person", "Sci-fi", "Steam Cloud", "Pixel Graphics"]
    )

    assert categorized["mechanics"] == ["puzzle"]
    assert categorized["perspectives"] == ["first-person"]
    assert categorized["modes"] == ["coop"]
    assert categorized["themes"] == ["sci-fi"]
    assert categorized["other"] == ["pixel-graphics"]
    assert "steam-cloud" not in sum(categorized.values(), [])


def test_short_perspective_tags_are_kept(item_factory):
    assert categorize_tags(["2D", "VR", "3D", "Pixel Graphics"])["perspectives"] == [
        "2d",
        "vr",
        "3d",
    ]

    text = build_aesthetic_text(item_factory(tags={"2D": 900, "Pixel Graphics": 500}))

    assert "Perspective: 2d" in text


def test_extract_sorted_tags_orders_by_weight():
    assert extract_sorted_tags({"Indie": 1, "Puzzle": 3, "Co-op": 2}) == [
        "Puzzle",
        "Co-op",
        "Indie",
    ]
    assert extract_sorted_tags(None) == []


def test_infer_perspective():
    assert infer_perspective(["FPS"]) == "first-person"
    assert infer_perspective(["Top-Down", "Shooter"]) == "top-down"
    assert infer_perspective(["Platformer"]) == "side-scroller"
    assert infer_perspective([]) == "unknown"


def test_infer_game_modes():
    assert infer_game_modes(["Co-op", "Single-player"]) == ["Single-player", "Co-op"]
    assert infer_game_modes(["Puzzle"]) == ["Single-player"]


def test_infer_subgenre():
    assert infer_subgenre(["Rogue-lite", "Action"]) == "roguelike"
    assert infer_subgenre(["Action", "RPG"]) == "action-rpg"
    assert infer_subgenre(["Platformer", "Puzzle"]) == "puzzle-platformer"
    assert infer_subgenre([]) == "indie"


def test_mechanics_text(item_factory):
    text = build_mechanics_text(item_factory())

    assert "Genre: Action, Adventure" in text
    assert "Perspective: first-person" in text
    assert "Core mechanics: puzzle" in text
    assert "Game modes: Co-op" in text
    assert "Subgenre: puzzle" in text


def test_mechanics_text_depends_only_on_tags_and_genres(item_factory):
    a = item_factory(1, "First", images=[])
    b = item_factory(2, "Second", images=[], short_text="Completely different blurb.")

    assert build_mechanics_text(a) == build_mechanics_text(b)


def test_atmosphere_text_falls_back_when_nothing_is_known(item_factory):
    item = item_factory(tags={}, short_text="A game.")

    assert build_atmosphere_text(item) == "atmospheric indie game"


def test_atmosphere_text_uses_description_moods(item_factory):
    item = item_factory(
        tags={"Atmospheric": 10, "Horror": 5},
        short_text="A bleak, haunting descent.",
    )

    text = build_atmosphere_text(item)

    assert "Mood: atmospheric, horror" in text
    assert "Feel: dark, eerie" in text


def test_narrative_text(item_factory):
    text = build_narrative_text(item_factory())

    assert "Setting: Sci-fi" in text
    assert "Story: Portal 2 is a puzzle game." in text
    assert "Tone: Engaging" in text


def test_dynamics_text_infers_pacing_from_mechanics(item_factory):
    text = build_dynamics_text(item_factory())

    assert "Pacing: deliberate, slow-paced" in text
    assert "Structure: level-based" in text


def test_dynamics_text_prefers_explicit_pacing_tags(item_factory):
    item = item_factory(tags={"Fast-Paced": 10, "Rogue-like": 8})

    text = build_dynamics_text(item)

    assert "Pacing: fast-paced" in text
    assert "Structure: run-based, procedurally varied" in text


@pytest.mark.parametrize("facet", list(FacetType))
def test_every_facet_has_a_template(item_factory, facet):
    assert build_tag_document(facet, item_factory()).strip()


def test_clean_text_truncates_on_word_boundary():
    assert clean_text("word " * 200, max_chars=20) == "word word word word"
    assert clean_text("  short\n text ") == "short text"
