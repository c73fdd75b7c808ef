from dataclasses import dataclass
from typing import Optional

import numpy as np

from gbss.maths import at_or_below, below, binarize, subject_mean, threshold
from gbss.utils import logger


@dataclass(frozen=True)
class LesionResult:
    """
    Lesion masks derived from the skeleton projections.
    4D masks have one volume per subject; consistency_mask, skeleton_thresh_inv and lesion_mean are 3D.
    """
    consistency_mask: np.ndarray
    gm_lesion: np.ndarray
    skeleton_thresh_inv: np.ndarray
    all_lesion: np.ndarray
    lesion_mean: np.ndarray
    icvf_lesion: Optional[np.ndarray] = None
    fa_lesion: Optional[np.ndarray] = None


def group_consistency_mask(gm_projection, thresh=0.65, perc=0.7):
    """
    Voxels where at least ``perc`` of the subjects have a projected GM value >= ``thresh``.
    :param gm_projection: 4D GM skeleton projection.
    :return: 3D binary mask.
    """
    above = binarize(threshold(gm_projection, thresh))
    return binarize(threshold(subject_mean(above), perc))


def lesion_mask(projection, consistency_mask, cutoff, inclusive=True):
    """
    Flag the voxels whose projection, restricted to the consistency mask, is at or below ``cutoff``
    (strictly below when ``inclusive`` is False).
    Voxels outside the consistency mask are zeroed first and are therefore always flagged.
    :param projection: 4D skeleton projection.
    :param consistency_mask: 3D group consistency mask.
    :param cutoff: lesion cutoff.
    :param inclusive: whether a value equal to ``cutoff`` is flagged.
    :return: 4D binary mask.
    """
    masked = np.asarray(projection, dtype=float) * np.asarray(consistency_mask)[..., None]
    if inclusive:
        return at_or_below(masked, cutoff)
    return below(masked, cutoff)


def detect_lesions(projections, context, parameters):
    """
    Derive the lesion masks used for filling.
    :param projections: dictionary mapping modality to projected CohortStack. Must contain GM.
    :param context: SkeletonContext.
    :param parameters: GBSSParameters.
    :return: LesionResult
    """
    gm_projection = projections["GM"].data
    consistency_mask = group_consistency_mask(gm_projection, thresh=parameters.thresh, perc=parameters.perc)
    logger.info(f"Group consistency mask: {int(consistency_mask.sum())} voxels where >= {parameters.perc:.0%} of "
                f"subjects have GM >= {parameters.thresh}")

    gm_lesion = lesion_mask(gm_projection, consistency_mask, parameters.thresh)

    diffusion_lesions = dict()
    for modality in ("ICVF", "FA"):
        if modality in projections:
            diffusion_lesions[modality] = lesion_mask(projections[modality].data, consistency_mask,
                                                      parameters.diffusion_lesion_threshold, inclusive=False)

    skeleton_thresh_inv = context.skeleton_mask - context.skeleton_thresh
    all_lesion = binarize(gm_lesion + skeleton_thresh_inv[..., None])
    lesion_mean = subject_mean(all_lesion)

    skeleton_voxels = context.skeleton_mask > 0
    n_skeleton = max(int(skeleton_voxels.sum()), 1)
    subject_ids = projections["GM"].subject_ids
    for subject, subject_id in enumerate(subject_ids):
        fraction = all_lesion[..., subject][skeleton_voxels].sum() / n_skeleton
        logger.debug(f"Subject {subject_id}: {fraction:.1%} of skeleton voxels flagged as lesion")
    logger.info(f"Combined lesion mask: mean skeleton lesion fraction "
                f"{lesion_mean[skeleton_voxels].sum() / n_skeleton:.1%} over {len(subject_ids)} subjects")

    return LesionResult(consistency_mask=consistency_mask,
                        gm_lesion=gm_lesion,
                        skeleton_thresh_inv=skeleton_thresh_inv,
                        all_lesion=all_lesion,
                        lesion_mean=lesion_mean,
                        icvf_lesion=diffusion_lesions.get("ICVF"),
                        fa_lesion=diffusion_lesions.get("FA"))
