class ShapeMismatchError(ValueError):
    """Raised when a volume does not sit on the cohort's reference grid."""


class EmptySkeletonError(ValueError):
    """Raised when the thresholded skeleton contains no voxels."""


class DegenerateDivisionWarning(RuntimeWarning):
    """Emitted when normalized-convolution filling divides by a zero weight."""


class FSLCommandError(RuntimeError):
    """Raised when an FSL command exits with a non-zero status."""
