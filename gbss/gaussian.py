import time

import numpy as np
from scipy import ndimage

from gbss.utils import logger


def fwhm_to_sigma(fwhm):
    return fwhm / np.sqrt(8 * np.log(2))


def sigma_to_fwhm(sigma):
    return sigma * np.sqrt(8 * np.log(2))


def gaussian_smoothing(data, sigma, mode="constant"):
    """
    Smooth a 3D volume or a 4D stack of volumes with an isotropic Gaussian kernel.
    Only the three spatial axes are smoothed; a fourth (subject) axis is left untouched.
    :param data: numpy array of shape (x, y, z) or (x, y, z, n_subjects).
    :param sigma: standard deviation of the Gaussian kernel in voxels.
    :param mode: how the volume is extended beyond its borders (see scipy.ndimage.gaussian_filter).
    Zero padding ("constant") matches fslmaths -s.
    :return: smoothed data as float64 with the same shape as the input.
    """
    data = np.asarray(data, dtype=float)
    if data.ndim == 3:
        _sigma = (sigma, sigma, sigma)
    elif data.ndim == 4:
        _sigma = (sigma, sigma, sigma, 0)
    else:
        raise ValueError(f"Expected a 3D or 4D array, got {data.ndim} dimensions")

    start = time.time()
    smoothed_data = ndimage.gaussian_filter(data, sigma=_sigma, mode=mode, cval=0.0)
    logger.debug(f"Gaussian smoothing (sigma={sigma} voxels) of array {data.shape} "
                 f"took {time.time() - start:.2f} seconds")
    return smoothed_data
