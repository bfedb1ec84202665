import numpy as np
import pytest

from facetmatch.v1.core.vectors import (
    cosine_similarity,
    fuse,
    l2_normalize,
    project_dimensions,
)


def test_l2_normalize_returns_unit_vector():
    vector = l2_normalize([3.0, 4.0])

    assert np.linalg.norm(vector) == pytest.approx(1.0)
    assert vector.tolist() == pytest.approx([0.6, 0.8])


def test_l2_normalize_rejects_zero_vector():
    with pytest.raises(ValueError):
        l2_normalize([0.0, 0.0, 0.0])


def test_project_dimensions_pads_and_truncates():
    assert project_dimensions([1.0, 2.0], 4).tolist() == [1.0, 2.0, 0.0, 0.0]
    assert project_dimensions([1.0, 2.0, 3.0], 2).tolist() == [1.0, 2.0]


def test_fuse_output_is_unit_norm():
    rng = np.random.default_rng(7)
    vectors = [rng.standard_normal(16) for _ in range(4)]

    fused = fuse(vectors, [2.0, 1.0, 1.0, 1.0], 16)

    assert np.linalg.norm(fused) == pytest.approx(1.0)


@pytest.mark.parametrize("scale", [0.01, 3.0, 1000.0])
def test_fuse_is_scale_invariant_in_weights(scale):
    rng = np.random.default_rng(11)
    vectors = [rng.standard_normal(8) for _ in range(3)]
    weights = [0.6, 0.3, 0.1]

    base = fuse(vectors, weights, 8)
    scaled = fuse(vectors, [w * scale for w in weights], 8)

    assert np.allclose(base, scaled)


def test_fuse_single_vector_is_its_direction():
    fused = fuse([[2.0, 0.0, 0.0]], [1.0], 3)

    assert fused.tolist() == pytest.approx([1.0, 0.0, 0.0])


def test_fuse_rejects_bad_weights():
    with pytest.raises(ValueError):
        fuse([[1.0, 0.0]], [-1.0], 2)
    with pytest.raises(ValueError):
        fuse([[1.0, 0.0], [0.0, 1.0]], [0.0, 0.0], 2)
    with pytest.raises(ValueError):
        fuse([], [], 2)


def test_cosine_similarity():
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
    assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)
    assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0
