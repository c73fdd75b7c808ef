import warnings
from dataclasses import dataclass
from functools import partial

import numpy as np
from tqdm.contrib.concurrent import thread_map

from gbss.exceptions import DegenerateDivisionWarning
from gbss.gaussian import gaussian_smoothing, sigma_to_fwhm
from gbss.maths import binarize, divide, threshold
from gbss.utils import logger


@dataclass(frozen=True)
class FilledProjection:
    """
    Terms of the normalized convolution fill of one modality. Every array has the shape of the projection.
    """
    non_lesion: np.ndarray
    smoothed_data: np.ndarray
    smoothed_weight: np.ndarray
    filler: np.ndarray
    filled_in_lesion: np.ndarray
    reliable_fill_mask: np.ndarray
    filled: np.ndarray
    n_degenerate: int = 0


def fill_lesions(projection, all_lesion, sigma=2.0, coverage_threshold=0.05, guard_division=True,
                 composite="reference", label=None):
    """
    Replace lesion voxels of a skeleton projection by a locally weighted average of the non-lesion neighbours
    (normalized convolution).

    The reference composite is

        filled = reliable_fill_mask * filler + non_lesion + all_lesion * filler

    where reliable_fill_mask keeps the lesion voxels whose smoothed non-lesion weight is >= coverage_threshold.
    Reliably covered lesion voxels therefore receive the filler twice, and poorly covered ones receive it once. The
    "simplified" composite drops the last term.

    :param projection: 4D skeleton projection.
    :param all_lesion: 4D binary lesion mask.
    :param sigma: Gaussian sigma in voxels.
    :param coverage_threshold: minimum smoothed weight for a reliable fill.
    :param guard_division: if True a zero smoothed weight gives a filler of 0 (fslmaths), otherwise NaN/Inf.
    :param composite: "reference" or "simplified".
    :param label: name of the filled modality, used in messages.
    :return: FilledProjection
    """
    label = label or "projection"
    projection = np.asarray(projection, dtype=float)
    all_lesion = np.asarray(all_lesion, dtype=float)
    if projection.shape != all_lesion.shape:
        raise ValueError(f"{label}: lesion mask shape {all_lesion.shape} does not match projection shape "
                         f"{projection.shape}")

    non_lesion = threshold((1 - all_lesion) * projection, 0)
    smoothed_data = gaussian_smoothing(non_lesion, sigma)
    smoothed_weight = gaussian_smoothing(binarize(non_lesion), sigma)
    filler, n_zero = divide(smoothed_data, smoothed_weight, guard=guard_division)

    n_degenerate = int(np.count_nonzero((smoothed_weight == 0) & (all_lesion > 0)))
    if n_degenerate:
        outcome = "set to 0" if guard_division else "left as NaN/Inf"
        warnings.warn(f"{label}: {n_degenerate} lesion voxels ({n_zero} voxels in total) have no non-lesion "
                      f"neighbours within the smoothing kernel; their fill values were {outcome}",
                      DegenerateDivisionWarning)

    # undefined fill values must stay inside the lesion mask
    filled_in_lesion = np.where(all_lesion > 0, filler, 0.0)
    reliable_fill_mask = binarize(threshold(smoothed_weight, coverage_threshold)) * all_lesion
    reliable_fill = np.where(reliable_fill_mask > 0, filler, 0.0)
    if composite == "reference":
        filled = reliable_fill + non_lesion + filled_in_lesion
    elif composite == "simplified":
        filled = reliable_fill + non_lesion
    else:
        raise ValueError(f"Unknown composite {composite!r}")

    logger.debug(f"{label}: {int(reliable_fill_mask.sum())} of {int(all_lesion.sum())} lesion voxels reliably filled")
    return FilledProjection(non_lesion=non_lesion,
                            smoothed_data=smoothed_data,
                            smoothed_weight=smoothed_weight,
                            filler=filler,
                            filled_in_lesion=filled_in_lesion,
                            reliable_fill_mask=reliable_fill_mask,
                            filled=filled,
                            n_degenerate=n_degenerate)


def _fill_modality(modality, projections, all_lesion, parameters):
    return fill_lesions(projections[modality].data, all_lesion,
                        sigma=parameters.smoothing_sigma,
                        coverage_threshold=parameters.coverage_threshold,
                        guard_division=parameters.guard_division,
                        composite=parameters.composite,
                        label=modality)


def fill_cohort(projections, lesions, parameters):
    """
    Fill the lesions of every modality listed in parameters.fill_modalities using the combined lesion mask.
    Modalities are independent and are filled in parallel threads when parameters.n_jobs > 1.
    :param projections: dictionary mapping modality to projected CohortStack.
    :param lesions: LesionResult.
    :param parameters: GBSSParameters.
    :return: dictionary mapping modality to its FilledProjection.
    """
    modalities = [m for m in parameters.fill_modalities if m in projections]
    missing = [m for m in parameters.fill_modalities if m not in projections]
    if missing:
        raise KeyError(f"No projection available for modality(ies): {', '.join(missing)}")

    logger.info(f"Filling lesions of {', '.join(modalities)} (sigma={parameters.smoothing_sigma} voxels, "
                f"FWHM={sigma_to_fwhm(parameters.smoothing_sigma):.2f} voxels, composite={parameters.composite})")
    _fill = partial(_fill_modality, projections=projections, all_lesion=lesions.all_lesion, parameters=parameters)
    if parameters.n_jobs > 1:
        filled = thread_map(_fill, modalities, max_workers=parameters.n_jobs, desc="Filling lesions",
                            unit="modality")
    else:
        filled = [_fill(modality) for modality in modalities]
    return dict(zip(modalities, filled))
