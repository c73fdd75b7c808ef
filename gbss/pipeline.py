import os
import time
import warnings
from dataclasses import dataclass

from gbss.cohort import aggregate_cohort
from gbss.files import derive_output_filenames, find_cohort_files
from gbss.filling import fill_cohort
from gbss.gaussian import fwhm_to_sigma
from gbss.io import load_search_guide, write_image
from gbss.lesion import detect_lesions
from gbss.parameters import GBSSParameters, MODALITIES
from gbss.projection import project_cohort
from gbss.skeleton import build_skeleton
from gbss.utils import logger, set_log_level


@dataclass(frozen=True)
class GBSSResult:
    stacks: dict
    context: object
    projections: dict
    lesions: object
    filled: dict
    fill_terms: dict


def run_gbss_on_stacks(stacks, parameters=None, search_guide=None):
    """
    Run the GBSS stages on stacks that are already in memory.
    :param stacks: dictionary mapping modality to CohortStack. GM is required, as is every modality to be filled.
    :param parameters: GBSSParameters. Defaults to GBSSParameters().
    :param search_guide: optional zero volume on the cohort grid.
    :return: GBSSResult
    """
    if parameters is None:
        parameters = GBSSParameters()
    if "GM" not in stacks:
        raise KeyError("A GM cohort stack is required")
    subject_ids = stacks["GM"].subject_ids
    for modality, stack in stacks.items():
        if stack.subject_ids != subject_ids:
            raise ValueError(f"{modality} subject order {stack.subject_ids} does not match GM order {subject_ids}")

    start = time.time()
    logger.info("Building the group grey matter skeleton")
    context = build_skeleton(stacks["GM"], parameters, search_guide=search_guide)
    logger.info("Projecting subjects onto the skeleton")
    projections = project_cohort(stacks, context, parameters)
    logger.info("Detecting lesions")
    lesions = detect_lesions(projections, context, parameters)
    fill_terms = fill_cohort(projections, lesions, parameters)
    filled = {modality: projections[modality].with_data(terms.filled) for modality, terms in fill_terms.items()}
    logger.debug(f"GBSS stages took {(time.time() - start) / 60:.2f} minutes")
    return GBSSResult(stacks=stacks, context=context, projections=projections, lesions=lesions, filled=filled,
                      fill_terms=fill_terms)


def save_results(result, filenames):
    """
    Write every GBSS artifact to disk.
    :param result: GBSSResult.
    :param filenames: dictionary from gbss.files.derive_output_filenames.
    :return: list of written filenames.
    """
    affine = result.context.affine
    subject_ids = result.stacks["GM"].subject_ids
    arrays = {
        "mean_gm": result.context.mean_gm,
        "gm_mask": result.context.gm_mask,
        "skeleton": result.context.skeleton,
        "skeleton_mask": result.context.skeleton_mask,
        "skeleton_thresh": result.context.skeleton_thresh,
        "distance_map": result.context.distance_map,
        "search_guide": result.context.search_guide,
        "consistency_mask": result.lesions.consistency_mask,
        "gm_lesion": result.lesions.gm_lesion,
        "icvf_lesion": result.lesions.icvf_lesion,
        "fa_lesion": result.lesions.fa_lesion,
        "skeleton_thresh_inv": result.lesions.skeleton_thresh_inv,
        "all_lesion": result.lesions.all_lesion,
        "lesion_mean": result.lesions.lesion_mean,
    }
    for modality, stack in result.stacks.items():
        arrays[f"all_{modality}"] = stack.data
    for modality, stack in result.projections.items():
        arrays[f"skeletonised_{modality}"] = stack.data
    for modality, stack in result.filled.items():
        arrays[f"filled_{modality}"] = stack.data
    for modality, terms in result.fill_terms.items():
        for name in ("non_lesion", "smoothed_data", "smoothed_weight", "filler", "filled_in_lesion",
                     "reliable_fill_mask"):
            arrays[f"{name}_{modality}"] = getattr(terms, name)

    written = list()
    for name, data in arrays.items():
        if data is None or name not in filenames:
            continue
        written.append(write_image(data, affine, filenames[name]))

    os.makedirs(os.path.dirname(filenames["subjects"]), exist_ok=True)
    with open(filenames["subjects"], "w") as f:
        f.write("\n".join(subject_ids) + "\n")
    written.append(filenames["subjects"])
    logger.info(f"Saved {len(written)} GBSS outputs to {os.path.dirname(filenames['subjects'])}")
    return written


def run_gbss(input_dir, output_dir, parameters=None, search_rule_mask=None, patterns=None, overwrite=False):
    """
    Run the full GBSS pipeline on a directory of registered subject images.
    :param input_dir: directory containing the GM, FA, ODI and ICVF images of every subject.
    :param output_dir: directory where the GBSS folder is written.
    :param parameters: GBSSParameters. Defaults to GBSSParameters().
    :param search_rule_mask: optional search rule mask defining the grid of the zero search guide.
    :param patterns: optional dictionary overriding the input filename patterns.
    :param overwrite: if False and the filled outputs already exist, nothing is done.
    :return: dictionary of output filenames, or None if the run was skipped.
    """
    if parameters is None:
        parameters = GBSSParameters()
    filenames = derive_output_filenames(output_dir, thresh=parameters.thresh,
                                        fill_modalities=parameters.fill_modalities,
                                        sigma=parameters.smoothing_sigma)
    final_outputs = [filenames[f"filled_{m}"] for m in parameters.fill_modalities]
    if final_outputs and all(os.path.exists(f) for f in final_outputs):
        if overwrite:
            warnings.warn(f"Overwriting existing GBSS outputs in {output_dir}.")
        else:
            logger.warning(f"Filled outputs already exist in {output_dir}; skipping. Use --overwrite to rerun.")
            return None

    logger.info(f"GBSS parameters: {parameters.to_dict()}")
    subject_ids, files = find_cohort_files(input_dir, patterns=patterns, modalities=MODALITIES)
    logger.info(f"Processing {len(subject_ids)} subjects: {', '.join(subject_ids)}")
    stacks = aggregate_cohort(files, subject_ids, modalities=MODALITIES)

    gm_stack = stacks["GM"]
    search_guide = load_search_guide(search_rule_mask, gm_stack.shape, gm_stack.affine)
    result = run_gbss_on_stacks(stacks, parameters, search_guide=search_guide)
    save_results(result, filenames)
    return filenames


def add_file_args(parser):
    parser.add_argument("input_dir", type=str,
                        help="Directory containing the registered subject images "
                             "(c1t1_2_MNI_nlsubject_*, FA_2_MNI_nlsubject_*, ODI_2_MNI_nlsubject_* and "
                             "ICVF_2_MNI_nlsubject_* .nii.gz files). All images must share one voxel grid.")
    parser.add_argument("output_dir", type=str,
                        help="Output directory. Results are written to <output_dir>/GBSS and the filled images, "
                             "ready for randomise, to <output_dir>/GBSS/filling.")
    parser.add_argument("--search_rule_mask", type=str, default=None,
                        help="Optional search rule mask (e.g. $FSLDIR/data/standard/LowerCingulum_1mm). Only its "
                             "grid is used: it is resampled to the cohort grid and zeroed. "
                             "By default a zero volume of the cohort grid is used.")
    return parser


def add_parameter_args(parser):
    parser.add_argument("--thresh", type=float, default=0.65,
                        help="Grey matter threshold for the skeleton, the projection and the GM lesion mask. "
                             "Default is 0.65.")
    parser.add_argument("--perc", type=float, default=0.7,
                        help="Fraction of subjects that must exceed --thresh for a voxel to enter the group "
                             "consistency mask. Default is 0.7.")
    parser.add_argument("--gm_mask_threshold", type=float, default=0.2,
                        help="Threshold applied to the mean GM map to build the GM mask. Default is 0.2.")
    parser.add_argument("--diffusion_lesion_threshold", type=float, default=0.65,
                        help="Cutoff for the ICVF and FA lesion masks. Default is 0.65.")
    parser.add_argument("--sigma", type=float,
                        help="Gaussian sigma in voxels used to fill lesions. Default is 2. "
                             "Only one of --sigma or --fwhm can be provided.")
    parser.add_argument("--fwhm", type=float,
                        help="Gaussian FWHM in voxels used to fill lesions, as an alternative to --sigma.")
    parser.add_argument("--coverage_threshold", type=float, default=0.05,
                        help="Minimum smoothed non-lesion weight for a lesion voxel to be reliably filled. "
                             "Default is 0.05.")
    parser.add_argument("--fill_modalities", type=str, nargs="+", default=["ICVF", "ODI", "FA"],
                        choices=MODALITIES,
                        help="Modalities to lesion fill. Default is ICVF ODI FA.")
    parser.add_argument("--simplified_composite", action="store_true",
                        help="If set, drop the unguarded lesion fill term from the final composite. "
                             "Default is to keep all three terms, as the FSL GBSS pipeline does.")
    parser.add_argument("--no_guard_division", action="store_true",
                        help="If set, divisions by a zero smoothed weight produce NaN/Inf instead of 0.")
    parser.add_argument("--binarize_mean_gm", action="store_true",
                        help="If set, the mean GM map is the fraction of subjects with GM >= --thresh.")
    parser.add_argument("--skeleton_smoothing", type=float, default=1.0,
                        help="Sigma in voxels of the smoothing used to estimate skeleton directions (native backend). "
                             "0 disables smoothing. Default is 1.0.")
    parser.add_argument("--search_limit", type=int, default=4,
                        help="Maximum number of voxels searched on each side of the skeleton during projection "
                             "(native backend). Default is 4.")
    parser.add_argument("--backend", type=str, default="native", choices=("native", "fsl"),
                        help="Implementation of the skeleton primitives. 'fsl' runs tbss_skeleton and distancemap. "
                             "Default is native.")
    parser.add_argument("--multiproc", type=int, default=1,
                        help="Number of modalities filled in parallel.")
    parser.add_argument("--overwrite", action="store_true",
                        help="If set, overwrite existing output files. Default is to not overwrite.")
    parser.add_argument("--debug", action="store_true",
                        help="If set, enable debug logging. Default is to use info level logging.")
    return parser


def check_parameters(args, parser):
    if args.sigma is not None and args.fwhm is not None:
        parser.error("Only one of --sigma or --fwhm can be provided, not both.")
    if args.fwhm is not None and args.fwhm <= 0:
        parser.error("--fwhm must be positive.")
    set_log_level(args.debug)


def parse_args(argv=None):
    import argparse

    parser = argparse.ArgumentParser(description="Grey-matter-based spatial statistics (GBSS): skeletonize, "
                                                 "detect lesions and fill GM, FA, ODI and ICVF maps.")
    add_file_args(parser)
    add_parameter_args(parser)
    args = parser.parse_args(argv)
    check_parameters(args, parser)
    return args


def build_parameters(args):
    if args.fwhm is not None:
        sigma = fwhm_to_sigma(args.fwhm)
    elif args.sigma is not None:
        sigma = args.sigma
    else:
        sigma = 2.0
    return GBSSParameters(thresh=args.thresh,
                          perc=args.perc,
                          gm_mask_threshold=args.gm_mask_threshold,
                          smoothing_sigma=sigma,
                          coverage_threshold=args.coverage_threshold,
                          diffusion_lesion_threshold=args.diffusion_lesion_threshold,
                          binarize_mean_gm=args.binarize_mean_gm,
                          skeleton_smoothing=args.skeleton_smoothing,
                          projection_search_limit=args.search_limit,
                          guard_division=not args.no_guard_division,
                          composite="simplified" if args.simplified_composite else "reference",
                          fill_modalities=tuple(args.fill_modalities),
                          backend=args.backend,
                          n_jobs=args.multiproc)


def main(argv=None):
    args = parse_args(argv)
    parameters = build_parameters(args)

    outputs = run_gbss(args.input_dir, args.output_dir,
                       parameters=parameters,
                       search_rule_mask=args.search_rule_mask,
                       overwrite=args.overwrite)
    if outputs is not None:
        logger.info("GBSS complete.")


if __name__ == "__main__":
    main()
