"""
FSL implementations of the skeleton primitives.

Each function writes its inputs to a temporary directory, runs the FSL tool with the argument order used by the
GBSS shell pipeline and reads the result back, so callers only see numpy arrays.
"""
import os
import shutil
import subprocess
import tempfile

import nibabel as nib
import numpy as np

from gbss.exceptions import FSLCommandError
from gbss.io import write_image
from gbss.utils import logger


def check_fsl_available(commands=("tbss_skeleton", "distancemap")):
    """
    Check that the FSL commands are on the PATH.
    :raises FileNotFoundError: if any command is missing.
    """
    missing = [command for command in commands if shutil.which(command) is None]
    if missing:
        raise FileNotFoundError(f"FSL command(s) not found: {', '.join(missing)}. "
                                f"Ensure FSL is installed and $FSLDIR/bin is on the PATH.")


def run_fsl_command(cmd):
    """
    Run an FSL command.
    :param cmd: command as a list of strings.
    :raises FSLCommandError: if the command exits with a non-zero status.
    """
    logger.debug(f"Running: {' '.join(cmd)}")
    result = subprocess.run(cmd, capture_output=True, text=True)
    if result.returncode != 0:
        logger.error(f"{cmd[0]} failed: {result.stderr}")
        logger.error(f"Command: {' '.join(cmd)}")
        raise FSLCommandError(f"{cmd[0]} exited with status {result.returncode}")
    return result


def _read(filename):
    return np.asarray(nib.load(filename).get_fdata(), dtype=float)


def tbss_skeleton(mean_map, affine):
    """
    tbss_skeleton -i mean_map -o skeleton
    :return: skeleton array
    """
    check_fsl_available(("tbss_skeleton",))
    with tempfile.TemporaryDirectory(prefix="gbss_") as work_dir:
        mean_file = write_image(mean_map, affine, os.path.join(work_dir, "mean_GM.nii.gz"))
        skeleton_file = os.path.join(work_dir, "GM_skel.nii.gz")
        run_fsl_command(["tbss_skeleton", "-i", mean_file, "-o", skeleton_file])
        return _read(skeleton_file)


def distancemap(seed, affine):
    """
    distancemap -i seed -o distance
    :return: distance array
    """
    check_fsl_available(("distancemap",))
    with tempfile.TemporaryDirectory(prefix="gbss_") as work_dir:
        seed_file = write_image(seed, affine, os.path.join(work_dir, "GM_mean_skeleton_mask_dst.nii.gz"))
        distance_file = os.path.join(work_dir, "GM_mean_skeleton_mask_dst_out.nii.gz")
        run_fsl_command(["distancemap", "-i", seed_file, "-o", distance_file])
        return _read(distance_file)


def tbss_skeleton_project(mean_map, thresh, distance_map, search_guide, ridge_stack, affine, value_stack=None):
    """
    tbss_skeleton -i mean_map -p thresh distance_map search_guide ridge_stack output [-a value_stack]
    :return: projected 4D array
    """
    check_fsl_available(("tbss_skeleton",))
    with tempfile.TemporaryDirectory(prefix="gbss_") as work_dir:
        mean_file = write_image(mean_map, affine, os.path.join(work_dir, "mean_GM.nii.gz"))
        distance_file = write_image(distance_map, affine, os.path.join(work_dir, "GM_mean_skeleton_mask_dst.nii.gz"))
        guide_file = write_image(search_guide, affine, os.path.join(work_dir, "zero.nii.gz"))
        ridge_file = write_image(ridge_stack, affine, os.path.join(work_dir, "all_GM.nii.gz"))
        output_file = os.path.join(work_dir, "all_skeletonised.nii.gz")
        cmd = ["tbss_skeleton", "-i", mean_file, "-p", str(thresh), distance_file, guide_file, ridge_file,
               output_file]
        if value_stack is not None:
            value_file = write_image(value_stack, affine, os.path.join(work_dir, "all_values.nii.gz"))
            cmd.extend(["-a", value_file])
        run_fsl_command(cmd)
        projected = _read(output_file)
    if projected.ndim == 3:
        projected = projected[..., None]
    return projected
