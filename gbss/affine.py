import numpy as np

from gbss.exceptions import ShapeMismatchError


def get_spacing_from_affine(affine):
    """
    Get the spacing from the affine matrix.
    :param affine: affine matrix
    :return: spacing
    """
    RZS = affine[:3, :3]
    return np.sqrt(np.sum(np.multiply(RZS, RZS), axis=0))


def spatial_shape(shape):
    """
    Drop trailing singleton dimensions beyond the third so that (x, y, z, 1) images compare equal to (x, y, z).
    :param shape: image shape
    :return: tuple of the spatial dimensions
    """
    shape = tuple(int(s) for s in shape)
    while len(shape) > 3 and shape[-1] == 1:
        shape = shape[:-1]
    return shape


def check_grid(shape, affine, reference_shape, reference_affine, label="volume", atol=1e-4):
    """
    Check that a volume lies on the reference grid.
    :param shape: shape of the volume to check.
    :param affine: affine of the volume to check.
    :param reference_shape: shape of the reference grid.
    :param reference_affine: affine of the reference grid.
    :param label: description of the volume used in the error message.
    :param atol: absolute tolerance for comparing affines and voxel spacing.
    :raises ShapeMismatchError: if the shape, voxel spacing or affine differ from the reference.
    """
    shape = spatial_shape(shape)
    reference_shape = spatial_shape(reference_shape)
    if shape != reference_shape:
        raise ShapeMismatchError(f"{label}: shape {shape} does not match reference shape {reference_shape}")

    affine = np.asarray(affine, dtype=float)
    reference_affine = np.asarray(reference_affine, dtype=float)
    spacing = get_spacing_from_affine(affine)
    reference_spacing = get_spacing_from_affine(reference_affine)
    if not np.allclose(spacing, reference_spacing, atol=atol):
        raise ShapeMismatchError(f"{label}: voxel spacing {tuple(np.round(spacing, 4))} does not match "
                                 f"reference spacing {tuple(np.round(reference_spacing, 4))}")
    if not np.allclose(affine, reference_affine, atol=atol):
        raise ShapeMismatchError(f"{label}: affine does not match the reference affine\n"
                                 f"{affine}\n!=\n{reference_affine}")
