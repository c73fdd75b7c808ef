import itertools
import time
from dataclasses import dataclass

import numpy as np
from scipy import ndimage

from gbss import fsl
from gbss.affine import get_spacing_from_affine
from gbss.exceptions import EmptySkeletonError, ShapeMismatchError
from gbss.gaussian import gaussian_smoothing
from gbss.maths import binarize, threshold, subject_mean
from gbss.utils import logger

# One offset per antipodal pair of the 26-neighbourhood (13 search directions).
NEIGHBOUR_OFFSETS = np.array([offset for offset in itertools.product((-1, 0, 1), repeat=3) if offset > (0, 0, 0)])
_UNIT_OFFSETS = NEIGHBOUR_OFFSETS / np.linalg.norm(NEIGHBOUR_OFFSETS, axis=1)[:, None]


@dataclass(frozen=True)
class SkeletonContext:
    """
    Group level skeleton artifacts shared, read-only, by the projection and lesion detection stages.
    """
    mean_gm: np.ndarray
    gm_mask: np.ndarray
    skeleton: np.ndarray
    skeleton_mask: np.ndarray
    skeleton_thresh: np.ndarray
    skeleton_thresh_inv: np.ndarray
    distance_seed: np.ndarray
    distance_map: np.ndarray
    search_guide: np.ndarray
    affine: np.ndarray
    thresh: float = 0.65
    perc: float = 0.7

    @property
    def n_skeleton_voxels(self):
        return int(np.count_nonzero(self.skeleton_thresh))


def perpendicular_directions(data, sigma=1.0, mask=None):
    """
    Estimate, for each selected voxel, the direction perpendicular to the local ridge of a scalar map.
    Where the map curves downwards the direction is the Hessian eigenvector with the most negative eigenvalue;
    elsewhere (slopes, plateaus) it is the gradient direction. The direction is snapped to the closest of the 13
    antipodal neighbour offsets.
    :param data: 3D scalar map. Every axis needs at least 2 voxels.
    :param sigma: sigma in voxels of the smoothing applied before differentiation. 0 disables smoothing.
    :param mask: boolean array selecting the voxels to evaluate. Defaults to voxels with a positive value.
    :return: (indices, offsets) two (n, 3) integer arrays with the voxel indices and their perpendicular offsets.
    """
    data = np.asarray(data, dtype=float)
    if mask is None:
        mask = data > 0
    mask = np.asarray(mask, dtype=bool)
    indices = np.argwhere(mask)
    if len(indices) == 0:
        return indices, np.zeros((0, 3), dtype=int)

    smoothed = gaussian_smoothing(data, sigma, mode="nearest") if sigma > 0 else data

    gradient = np.empty((len(indices), 3))
    hessian = np.empty((len(indices), 3, 3))
    for i, first_derivative in enumerate(np.gradient(smoothed)):
        gradient[:, i] = first_derivative[mask]
        for j, second_derivative in enumerate(np.gradient(first_derivative)):
            hessian[:, i, j] = second_derivative[mask]
    hessian = (hessian + hessian.transpose(0, 2, 1)) / 2

    # eigh returns eigenvalues in ascending order; column 0 is the direction of strongest negative curvature
    eigenvalues, eigenvectors = np.linalg.eigh(hessian)
    principal = np.where((eigenvalues[:, 0] < 0)[:, None], eigenvectors[:, :, 0], gradient)
    direction_index = np.argmax(np.abs(principal @ _UNIT_OFFSETS.T), axis=1)
    return indices, NEIGHBOUR_OFFSETS[direction_index]


def skeletonize(data, sigma=1.0):
    """
    Extract the ridge (skeleton) of a scalar map.
    A voxel with a positive value is on the skeleton when its value is not lower than either neighbour along its
    perpendicular direction. Skeleton voxels keep their value; all other voxels are 0.
    :param data: 3D scalar map, e.g. the mean grey matter map.
    :param sigma: smoothing sigma in voxels used to estimate the perpendicular directions.
    :return: skeleton as a float array with the shape of data.
    """
    start = time.time()
    data = np.asarray(data, dtype=float)
    skeleton = np.zeros(data.shape, dtype=float)
    indices, offsets = perpendicular_directions(data, sigma=sigma)
    if len(indices) == 0:
        return skeleton

    padded = np.pad(data, 1)
    center = data[tuple(indices.T)]
    forward = padded[tuple((indices + 1 + offsets).T)]
    backward = padded[tuple((indices + 1 - offsets).T)]
    on_ridge = (center >= forward) & (center >= backward)

    skeleton[tuple(indices[on_ridge].T)] = center[on_ridge]
    logger.debug(f"Skeletonized {len(indices)} voxels into {int(on_ridge.sum())} skeleton voxels "
                 f"in {time.time() - start:.2f} seconds")
    return skeleton


def distance_map(seed, spacing=(1.0, 1.0, 1.0)):
    """
    Euclidean distance from every voxel to the nearest nonzero seed voxel (FSL distancemap).
    Nonzero seed voxels get a distance of 0.
    :param seed: 3D array.
    :param spacing: voxel spacing used to express distances in mm.
    :return: float array of distances.
    """
    seed = np.asarray(seed)
    if not np.any(seed != 0):
        logger.warning("Distance map seed has no nonzero voxels; every distance is infinite.")
        return np.full(seed.shape, np.inf)
    return ndimage.distance_transform_edt(seed == 0, sampling=spacing)


def compute_skeleton(mean_map, affine, sigma=1.0, backend="native"):
    if backend == "fsl":
        return fsl.tbss_skeleton(mean_map, affine)
    return skeletonize(mean_map, sigma=sigma)


def compute_distance_map(seed, affine, backend="native"):
    if backend == "fsl":
        return fsl.distancemap(seed, affine)
    return distance_map(seed, spacing=get_spacing_from_affine(affine))


def build_skeleton(gm_stack, parameters, search_guide=None):
    """
    Build the group grey matter skeleton from the GM cohort stack.
    :param gm_stack: CohortStack of grey matter maps.
    :param parameters: GBSSParameters.
    :param search_guide: optional zero volume on the cohort grid. Defaults to zeros.
    :raises ShapeMismatchError: if any spatial axis of the cohort grid has fewer than 2 voxels.
    :raises EmptySkeletonError: if no skeleton voxel survives the grey matter threshold.
    :return: SkeletonContext
    """
    if min(gm_stack.shape) < 2:
        raise ShapeMismatchError(f"Skeleton construction: every spatial axis needs at least 2 voxels to estimate "
                                 f"skeleton directions, got grid shape {gm_stack.shape}")
    thresh = parameters.thresh
    if parameters.binarize_mean_gm:
        mean_gm = subject_mean(binarize(threshold(gm_stack.data, thresh)))
    else:
        mean_gm = subject_mean(gm_stack.data)
    gm_mask = binarize(threshold(mean_gm, parameters.gm_mask_threshold))
    logger.info(f"GM mask: {int(gm_mask.sum())} voxels with mean GM >= {parameters.gm_mask_threshold}")

    skeleton = compute_skeleton(mean_gm, gm_stack.affine, sigma=parameters.skeleton_smoothing,
                                backend=parameters.backend)
    skeleton_mask = binarize(skeleton)
    skeleton_thresh = binarize(threshold(skeleton, thresh))
    n_skeleton = int(np.count_nonzero(skeleton_thresh))
    if n_skeleton == 0:
        raise EmptySkeletonError(f"Skeleton construction: no skeleton voxel has a mean GM value >= {thresh} "
                                 f"({int(np.count_nonzero(skeleton_mask))} voxels before thresholding)")
    skeleton_thresh_inv = skeleton_mask - skeleton_thresh
    logger.info(f"Skeleton: {int(np.count_nonzero(skeleton_mask))} voxels, {n_skeleton} at threshold {thresh}")

    distance_seed = (-gm_mask - 1) + skeleton_thresh
    distances = compute_distance_map(distance_seed, gm_stack.affine, backend=parameters.backend)

    if search_guide is None:
        search_guide = np.zeros(gm_stack.shape, dtype=float)

    return SkeletonContext(mean_gm=mean_gm,
                           gm_mask=gm_mask,
                           skeleton=skeleton,
                           skeleton_mask=skeleton_mask,
                           skeleton_thresh=skeleton_thresh,
                           skeleton_thresh_inv=skeleton_thresh_inv,
                           distance_seed=distance_seed,
                           distance_map=distances,
                           search_guide=np.asarray(search_guide, dtype=float),
                           affine=gm_stack.affine,
                           thresh=thresh,
                           perc=parameters.perc)
