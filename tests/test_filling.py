import numpy as np
import pytest

from gbss.cohort import CohortStack
from gbss.exceptions import DegenerateDivisionWarning
from gbss.filling import fill_cohort, fill_lesions
from gbss.lesion import LesionResult
from gbss.parameters import GBSSParameters


def _single_lesion(shape=(7, 7, 7, 1)):
    projection = np.full(shape, 0.5)
    lesion = np.zeros(shape)
    lesion[3, 3, 3, 0] = 1
    return projection, lesion


def test_reference_composite_fills_reliable_lesion_twice():
    projection, lesion = _single_lesion()
    result = fill_lesions(projection, lesion, sigma=1.0)
    assert result.reliable_fill_mask[3, 3, 3, 0] == 1
    assert np.isclose(result.filler[3, 3, 3, 0], 0.5)
    assert np.isclose(result.filled[3, 3, 3, 0], 1.0)
    assert np.all(result.filled[lesion == 0] == 0.5)


def test_simplified_composite_fills_lesion_once():
    projection, lesion = _single_lesion()
    result = fill_lesions(projection, lesion, sigma=1.0, composite="simplified")
    assert np.isclose(result.filled[3, 3, 3, 0], 0.5)
    with pytest.raises(ValueError):
        fill_lesions(projection, lesion, composite="median")


def test_all_lesion_guarded_division():
    projection = np.full((5, 5, 5, 1), 0.4)
    lesion = np.ones(projection.shape)
    with pytest.warns(DegenerateDivisionWarning):
        result = fill_lesions(projection, lesion)
    assert np.all(result.filled == 0)
    assert np.all(result.reliable_fill_mask == 0)
    assert result.n_degenerate == lesion.size


def test_all_lesion_unguarded_division():
    projection = np.full((5, 5, 5, 1), 0.4)
    lesion = np.ones(projection.shape)
    with pytest.warns(DegenerateDivisionWarning):
        result = fill_lesions(projection, lesion, guard_division=False)
    assert np.all(np.isnan(result.filled))
    assert np.all(result.reliable_fill_mask == 0)


def test_unguarded_nan_stays_inside_lesions():
    projection = np.full((25, 5, 5, 1), 0.5)
    projection[2, 2, 2, 0] = 0
    lesion = np.ones(projection.shape)
    lesion[2, 2, 2, 0] = 0
    lesion[22, 2, 2, 0] = 0
    with pytest.warns(DegenerateDivisionWarning, match="voxels in total"):
        result = fill_lesions(projection, lesion, guard_division=False)
    # no non-lesion neighbour carries signal, yet the voxel keeps its own value
    assert result.filled[2, 2, 2, 0] == 0
    assert result.filled[22, 2, 2, 0] == 0.5
    assert np.isclose(result.filled[21, 2, 2, 0], 0.5)
    assert np.isnan(result.filled[0, 0, 0, 0])
    assert not np.any(np.isnan(result.filled[lesion == 0]))


def test_poorly_covered_lesion_receives_filler_once():
    projection = np.full((15, 15, 15, 1), 0.5)
    lesion = np.zeros(projection.shape)
    lesion[4:11, 4:11, 4:11] = 1
    result = fill_lesions(projection, lesion, sigma=1.0, coverage_threshold=0.05)
    poorly_covered = (result.reliable_fill_mask == 0) & (lesion == 1) & (result.smoothed_weight > 0)
    assert poorly_covered[7, 7, 7, 0]
    assert np.allclose(result.filled[poorly_covered], result.filler[poorly_covered])


def test_negative_values_are_clamped():
    projection, lesion = _single_lesion()
    projection[0, 0, 0, 0] = -1
    result = fill_lesions(projection, lesion, sigma=1.0)
    assert result.non_lesion.min() >= 0
    assert result.filled[0, 0, 0, 0] == 0


def test_fill_lesions_shape_mismatch():
    projection, lesion = _single_lesion()
    with pytest.raises(ValueError):
        fill_lesions(projection, lesion[..., :0])


def test_fill_cohort_parallel_matches_serial():
    _, lesion = _single_lesion()
    projections = {modality: CohortStack(modality=modality, data=np.full(lesion.shape, value), affine=np.eye(4),
                                         subject_ids=("01",))
                   for modality, value in (("FA", 0.3), ("ODI", 0.6))}
    zeros = np.zeros(lesion.shape[:3])
    lesions = LesionResult(consistency_mask=zeros, gm_lesion=lesion, skeleton_thresh_inv=zeros,
                           all_lesion=lesion, lesion_mean=lesion[..., 0])
    serial = fill_cohort(projections, lesions, GBSSParameters(fill_modalities=("ODI", "FA"), smoothing_sigma=1.0))
    parallel = fill_cohort(projections, lesions, GBSSParameters(fill_modalities=("ODI", "FA"), smoothing_sigma=1.0,
                                                               n_jobs=2))
    assert list(serial) == ["ODI", "FA"]
    for modality in serial:
        assert np.array_equal(serial[modality].filled, parallel[modality].filled)
    assert np.isclose(serial["ODI"].filled[3, 3, 3, 0], 1.2)
    assert serial["FA"].reliable_fill_mask[3, 3, 3, 0] == 1

    with pytest.raises(KeyError):
        fill_cohort(projections, lesions, GBSSParameters(fill_modalities=("ICVF",)))
