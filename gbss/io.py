import os

import nibabel as nib
import nilearn.image
import numpy as np

from gbss.utils import logger


def load_image(in_file):
    """
    Load a NIfTI image.
    :param in_file: path to the image file.
    :return: nibabel image.
    """
    logger.debug(f"Loading image: {in_file}")
    return nib.load(in_file)


def write_image(data, affine, out_file, dtype=np.float32):
    """
    Write a 3D or 4D array to a NIfTI file, creating the output directory if needed.
    :param data: numpy array to save.
    :param affine: affine of the reference grid.
    :param out_file: output filename.
    :param dtype: data type stored on disk.
    :return: out_file
    """
    os.makedirs(os.path.dirname(os.path.abspath(out_file)), exist_ok=True)
    image = nib.Nifti1Image(np.asarray(data, dtype=dtype), affine)
    image.header.set_xyzt_units("mm")
    logger.debug(f"Saving image {np.shape(data)} to {out_file}")
    image.to_filename(out_file)
    return out_file


def load_search_guide(search_rule_file, shape, affine):
    """
    Build the zero "search guide" volume on the cohort grid.
    If a search rule mask is given (e.g. FSL's LowerCingulum_1mm) it is resampled onto the cohort grid and multiplied
    by zero, as the FSL GBSS pipeline does; otherwise a zero volume of the cohort shape is returned.
    :param search_rule_file: optional path to a search rule mask.
    :param shape: shape of the cohort grid.
    :param affine: affine of the cohort grid.
    :return: zero-filled float array of the cohort grid shape.
    """
    shape = tuple(shape[:3])
    if search_rule_file is None:
        return np.zeros(shape, dtype=float)

    reference_image = nib.Nifti1Image(np.zeros(shape, dtype=np.uint8), affine)
    search_rule_image = nilearn.image.resample_to_img(nib.load(search_rule_file), reference_image,
                                                      interpolation="nearest",
                                                      force_resample=True,
                                                      copy_header=True)
    logger.debug(f"Resampled search rule mask {search_rule_file} to shape {search_rule_image.shape[:3]}")
    return np.asarray(search_rule_image.get_fdata(), dtype=float).reshape(shape) * 0
