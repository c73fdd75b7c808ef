import glob
import os
import re

from gbss.utils import logger

# Filename patterns produced by the registration step; the "*" is the subject identifier.
DEFAULT_PATTERNS = {
    "GM": "c1t1_2_MNI_nlsubject_*.nii.gz",
    "FA": "FA_2_MNI_nlsubject_*.nii.gz",
    "ODI": "ODI_2_MNI_nlsubject_*.nii.gz",
    "ICVF": "ICVF_2_MNI_nlsubject_*.nii.gz",
}

# Output basenames of the FSL GBSS pipeline.
FILLED_BASENAMES = {
    "GM": "all_GM_filled",
    "FA": "all_FA_filled",
    "ODI": "all_ODI_filled",
    "ICVF": "all_fIC_filled",
}

# Prefix of the per-modality filling QA volumes.
FILL_PREFIXES = {
    "GM": "GM",
    "FA": "FA",
    "ODI": "ODI",
    "ICVF": "fIC",
}

SKELETONISED_BASENAMES = {
    "GM": "all_GM_skeletonise",
    "FA": "all_FA_skeletonised",
    "ODI": "all_ODI_skeletonised",
    "ICVF": "all_ICVF_skeletonised",
}


def pattern_to_regex(pattern):
    """
    Convert a glob pattern with a single "*" into a regular expression capturing the subject identifier.
    :param pattern: glob pattern, e.g. "FA_2_MNI_nlsubject_*.nii.gz"
    :return: compiled regular expression
    """
    if pattern.count("*") != 1:
        raise ValueError(f"Pattern must contain exactly one '*' marking the subject identifier: {pattern}")
    prefix, suffix = pattern.split("*")
    return re.compile("^" + re.escape(prefix) + r"(.+?)" + re.escape(suffix) + "$")


def find_modality_files(input_dir, pattern):
    """
    Find the files of one modality and key them by subject identifier.
    :param input_dir: directory containing the registered subject images.
    :param pattern: glob pattern with a single "*" for the subject identifier.
    :return: dictionary mapping subject identifier to file path.
    """
    regex = pattern_to_regex(pattern)
    files = dict()
    for filename in sorted(glob.glob(os.path.join(input_dir, pattern))):
        match = regex.match(os.path.basename(filename))
        if match:
            files[match.group(1)] = filename
    return files


def find_cohort_files(input_dir, patterns=None, modalities=("GM", "FA", "ODI", "ICVF")):
    """
    Find the per-subject images of every modality and check that each subject has all modalities.
    :param input_dir: directory containing the registered subject images.
    :param patterns: optional dictionary overriding DEFAULT_PATTERNS for some modalities.
    :param modalities: modalities to search for.
    :return: (subject_ids, files) where subject_ids is the sorted list of subjects and files maps each modality to
    the list of file paths in subject order.
    """
    if not os.path.isdir(input_dir):
        raise FileNotFoundError(f"Input directory does not exist: {input_dir}")

    _patterns = dict(DEFAULT_PATTERNS)
    if patterns is not None:
        _patterns.update(patterns)

    found = dict()
    for modality in modalities:
        found[modality] = find_modality_files(input_dir, _patterns[modality])
        if not found[modality]:
            raise FileNotFoundError(f"No {modality} files matching '{_patterns[modality]}' found in {input_dir}")
        logger.info(f"Found {len(found[modality])} {modality} files in {input_dir}")

    subject_ids = sorted(set().union(*[set(f.keys()) for f in found.values()]))
    for modality in modalities:
        missing = [s for s in subject_ids if s not in found[modality]]
        if missing:
            raise FileNotFoundError(f"Missing {modality} files for subjects: {', '.join(missing)}")

    files = {modality: [found[modality][s] for s in subject_ids] for modality in modalities}
    return subject_ids, files


def derive_output_filenames(output_dir, thresh=0.65, fill_modalities=("ICVF", "ODI", "FA"), sigma=2.0):
    """
    Derive the filenames of the intermediate and final GBSS outputs.
    :param output_dir: output directory; files are written to <output_dir>/GBSS and <output_dir>/GBSS/filling
    :param thresh: grey matter threshold, embedded in the thresholded skeleton filename (GM_skel_0.65).
    :param fill_modalities: modalities that will be lesion filled.
    :param sigma: filling sigma in voxels, embedded in the smoothed QA filenames (e.g. fIC_non_lesion_s_2).
    :return: dictionary mapping artifact names to file paths.
    """
    gbss_dir = os.path.join(output_dir, "GBSS")
    filling_dir = os.path.join(gbss_dir, "filling")

    def _gbss(name):
        return os.path.join(gbss_dir, name + ".nii.gz")

    def _filling(name):
        return os.path.join(filling_dir, name + ".nii.gz")

    thresh_str = f"{thresh:g}"
    filenames = {
        "subjects": os.path.join(gbss_dir, "subjects.txt"),
        "mean_gm": _gbss("mean_GM"),
        "gm_mask": _gbss("GM_mask"),
        "skeleton": _gbss("GM_skel"),
        "skeleton_mask": _gbss("GM_skel_mask"),
        "skeleton_thresh": _gbss(f"GM_skel_{thresh_str}"),
        "distance_map": _gbss("GM_mean_skeleton_mask_dst"),
        "search_guide": _gbss("zero"),
        "consistency_mask": _gbss("mean_GM_skeleton_mask_general"),
        "gm_lesion": _gbss("all_lesion_GM"),
        "icvf_lesion": _gbss("all_lesion_ICVF"),
        "fa_lesion": _gbss("all_lesion_FA"),
        "skeleton_thresh_inv": _gbss("GM_skel_thresh_inv"),
        "all_lesion": _gbss("all_lesion"),
        "lesion_mean": _gbss("lesion_mean"),
    }
    for modality in ("GM", "FA", "ODI", "ICVF"):
        filenames[f"all_{modality}"] = _gbss(f"all_{modality}")
        filenames[f"skeletonised_{modality}"] = _gbss(SKELETONISED_BASENAMES[modality])

    sigma_str = f"{sigma:g}"
    for modality in fill_modalities:
        prefix = FILL_PREFIXES[modality]
        filenames[f"filled_{modality}"] = _filling(FILLED_BASENAMES[modality])
        filenames[f"non_lesion_{modality}"] = _filling(f"{prefix}_non_lesion")
        filenames[f"smoothed_data_{modality}"] = _filling(f"{prefix}_non_lesion_s_{sigma_str}")
        filenames[f"smoothed_weight_{modality}"] = _filling(f"{prefix}_non_lesion_bin_s_{sigma_str}")
        filenames[f"filler_{modality}"] = _filling(f"{prefix}_filler")
        filenames[f"filled_in_lesion_{modality}"] = _filling(f"all_lesion_filled_{prefix}")
        filenames[f"reliable_fill_mask_{modality}"] = _filling(f"{prefix}_reliable_fill_mask")
    return filenames
