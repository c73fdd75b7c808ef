"""
Voxelwise operations with fslmaths semantics.

All functions return new arrays; inputs are never modified in place.
"""
import numpy as np


def binarize(data):
    """Nonzero voxels become 1, all others 0 (fslmaths -bin)."""
    return np.where(np.asarray(data) != 0, 1.0, 0.0).astype(np.float32)


def threshold(data, lower):
    """Zero every voxel below ``lower`` (fslmaths -thr)."""
    data = np.asarray(data, dtype=float)
    return np.where(data >= lower, data, 0.0)


def at_or_below(data, cutoff):
    """Binary mask of the voxels whose value is at or below ``cutoff``, zeros included."""
    return np.where(np.asarray(data) <= cutoff, 1.0, 0.0).astype(np.float32)


def below(data, cutoff):
    """Binary mask of the voxels whose value is strictly below ``cutoff``, zeros included."""
    return np.where(np.asarray(data) < cutoff, 1.0, 0.0).astype(np.float32)


def subject_mean(data):
    """Mean over the subject axis of a 4D stack (fslmaths -Tmean)."""
    data = np.asarray(data, dtype=float)
    if data.ndim != 4:
        raise ValueError(f"Expected a 4D stack, got {data.ndim} dimensions")
    return data.mean(axis=3)


def divide(numerator, denominator, guard=True):
    """
    Voxelwise division.
    :param numerator: numpy array.
    :param denominator: numpy array broadcastable to the numerator.
    :param guard: if True, voxels with a zero denominator are set to 0 as fslmaths -div does. If False, IEEE
    semantics apply and those voxels become NaN or +/-Inf.
    :return: (quotient, number of voxels with a zero denominator)
    """
    numerator = np.asarray(numerator, dtype=float)
    denominator = np.asarray(denominator, dtype=float)
    zero = np.broadcast_to(denominator == 0, np.broadcast(numerator, denominator).shape)
    with np.errstate(divide="ignore", invalid="ignore"):
        quotient = numerator / denominator
    if guard:
        quotient = np.where(zero, 0.0, quotient)
    return quotient, int(np.count_nonzero(zero))
