import numpy as np
import pytest

from gbss.maths import at_or_below, binarize, divide, subject_mean, threshold


def test_binarize_values_are_zero_or_one():
    data = np.array([-2.0, 0.0, 0.3, 7.0, np.nan])
    mask = binarize(data)
    assert set(np.unique(mask).tolist()) <= {0.0, 1.0}
    assert mask.tolist() == [1.0, 0.0, 1.0, 1.0, 1.0]


def test_threshold_keeps_values_at_or_above_cutoff():
    data = np.array([0.1, 0.65, 0.7, -1.0])
    assert threshold(data, 0.65).tolist() == [0.0, 0.65, 0.7, 0.0]
    assert threshold(data, 0).tolist() == [0.1, 0.65, 0.7, 0.0]


def test_at_or_below_flags_zeros():
    data = np.array([0.0, 0.65, 0.66, 1.0])
    assert at_or_below(data, 0.65).tolist() == [1.0, 1.0, 0.0, 0.0]


def test_subject_mean_requires_4d():
    data = np.ones((2, 2, 2, 3))
    data[..., 0] = 0
    assert np.allclose(subject_mean(data), 2 / 3)
    with pytest.raises(ValueError):
        subject_mean(np.ones((2, 2, 2)))


def test_divide_guarded_matches_fslmaths():
    quotient, n_zero = divide(np.array([1.0, 0.0, 2.0]), np.array([2.0, 0.0, 0.0]), guard=True)
    assert quotient.tolist() == [0.5, 0.0, 0.0]
    assert n_zero == 2


def test_divide_unguarded_propagates_nan_and_inf():
    quotient, n_zero = divide(np.array([1.0, 0.0, 2.0]), np.array([2.0, 0.0, 0.0]), guard=False)
    assert quotient[0] == 0.5
    assert np.isnan(quotient[1])
    assert np.isinf(quotient[2])
    assert n_zero == 2
