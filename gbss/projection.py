import time

import numpy as np
from tqdm import tqdm

from gbss import fsl
from gbss.exceptions import ShapeMismatchError
from gbss.skeleton import perpendicular_directions, skeletonize
from gbss.utils import logger


def _search_candidates(indices, offsets, distance_map, search_guide, search_limit):
    """
    Enumerate the admissible search positions along the perpendicular of each skeleton voxel.
    Walking outwards from the skeleton, a step stays admissible while it is inside the volume, the search guide is
    zero there and the distance map does not decrease compared to the previous step.
    :return: list of (admissible, positions) pairs ordered from the skeleton voxel outwards.
    """
    shape = np.asarray(distance_map.shape)
    candidates = [(0, np.ones(len(indices), dtype=bool), indices)]
    for sign in (1, -1):
        admissible = np.ones(len(indices), dtype=bool)
        previous = indices
        for step in range(1, search_limit + 1):
            positions = indices + sign * step * offsets
            admissible = admissible & np.all((positions >= 0) & (positions < shape), axis=1)
            positions = np.clip(positions, 0, shape - 1)
            admissible &= search_guide[tuple(positions.T)] == 0
            admissible &= distance_map[tuple(positions.T)] >= distance_map[tuple(previous.T)]
            candidates.append((sign * step, admissible, positions))
            previous = positions
    # nearer positions win ties
    candidates.sort(key=lambda candidate: (abs(candidate[0]), -candidate[0]))
    return [(admissible, positions) for _, admissible, positions in candidates]


def project_to_skeleton(mean_map, thresh, distance_map, search_guide, ridge_stack, value_stack=None,
                        search_limit=4, sigma=1.0, skeleton=None, label=None):
    """
    Project a 4D stack onto the skeleton of a mean map (tbss_skeleton -p).
    For every subject and every skeleton voxel, the position along the perpendicular with the highest ridge_stack value
    is found and the value_stack value at that position is written to the skeleton voxel. Non-skeleton voxels are 0.
    :param mean_map: 3D map defining the skeleton (mean GM).
    :param thresh: skeleton voxels are those with a skeleton value >= thresh.
    :param distance_map: 3D distance field steering the search.
    :param search_guide: 3D search rule volume; nonzero voxels stop the search.
    :param ridge_stack: 4D stack searched for the local maximum (all GM).
    :param value_stack: 4D stack sampled at the selected positions. Defaults to ridge_stack (self projection).
    :param search_limit: maximum number of voxels searched on each side of the skeleton.
    :param sigma: smoothing sigma in voxels used to estimate the perpendicular directions.
    :param skeleton: optional precomputed skeleton of mean_map.
    :param label: name of the projected modality, used in messages.
    :return: projected 4D array with the shape of value_stack.
    """
    label = label or "projection"
    mean_map = np.asarray(mean_map, dtype=float)
    ridge_stack = np.asarray(ridge_stack, dtype=float)
    value_stack = ridge_stack if value_stack is None else np.asarray(value_stack, dtype=float)
    distance_map = np.asarray(distance_map, dtype=float)
    search_guide = np.asarray(search_guide, dtype=float)
    for name, array in (("ridge stack", ridge_stack), ("value stack", value_stack)):
        if array.ndim != 4 or array.shape[:3] != mean_map.shape:
            raise ShapeMismatchError(f"{label}: {name} shape {array.shape} does not match skeleton grid "
                                     f"{mean_map.shape}")
    if value_stack.shape != ridge_stack.shape:
        raise ShapeMismatchError(f"{label}: value stack shape {value_stack.shape} does not match ridge stack shape "
                                 f"{ridge_stack.shape}")
    for name, array in (("distance map", distance_map), ("search guide", search_guide)):
        if array.shape != mean_map.shape:
            raise ShapeMismatchError(f"{label}: {name} shape {array.shape} does not match skeleton grid "
                                     f"{mean_map.shape}")

    start = time.time()
    if skeleton is None:
        skeleton = skeletonize(mean_map, sigma=sigma)
    skeleton_voxels = (skeleton != 0) & (skeleton >= thresh)
    indices, offsets = perpendicular_directions(mean_map, sigma=sigma, mask=skeleton_voxels)
    candidates = _search_candidates(indices, offsets, distance_map, search_guide, int(search_limit))

    projected = np.zeros(value_stack.shape, dtype=float)
    for subject in tqdm(range(value_stack.shape[3]), desc=f"Projecting {label}", unit="subject"):
        ridge = ridge_stack[..., subject]
        values = value_stack[..., subject]
        best_ridge = np.full(len(indices), -np.inf)
        best_value = np.zeros(len(indices))
        for admissible, positions in candidates:
            _ridge = ridge[tuple(positions.T)]
            better = admissible & (_ridge > best_ridge)
            best_ridge[better] = _ridge[better]
            best_value[better] = values[tuple(positions.T)][better]
        projected[..., subject][tuple(indices.T)] = best_value

    logger.debug(f"Projected {label} onto {len(indices)} skeleton voxels in {time.time() - start:.2f} seconds")
    return projected


def project_cohort(stacks, context, parameters):
    """
    Project every modality onto the group skeleton.
    GM is projected onto itself; the other modalities use GM as the ridge stack and sample their own values
    (tbss_skeleton ... all_GM output -a all_X).
    :param stacks: dictionary mapping modality to CohortStack.
    :param context: SkeletonContext.
    :param parameters: GBSSParameters.
    :return: dictionary mapping modality to the projected CohortStack.
    """
    gm_stack = stacks["GM"]
    projections = dict()
    for modality in ("GM", "ODI", "ICVF", "FA"):
        if modality not in stacks:
            continue
        value_stack = None if modality == "GM" else stacks[modality].data
        if parameters.backend == "fsl":
            projected = fsl.tbss_skeleton_project(context.mean_gm, context.thresh, context.distance_map,
                                                  context.search_guide, gm_stack.data, context.affine,
                                                  value_stack=value_stack)
        else:
            projected = project_to_skeleton(context.mean_gm, context.thresh, context.distance_map,
                                            context.search_guide, gm_stack.data, value_stack=value_stack,
                                            search_limit=parameters.projection_search_limit,
                                            sigma=parameters.skeleton_smoothing,
                                            skeleton=context.skeleton,
                                            label=modality)
        projections[modality] = stacks[modality].with_data(projected)
        logger.info(f"Projected {modality} onto the GM skeleton")
    return projections
