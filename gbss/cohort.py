from dataclasses import dataclass

import numpy as np
from tqdm import tqdm

from gbss.affine import check_grid, get_spacing_from_affine, spatial_shape
from gbss.exceptions import ShapeMismatchError
from gbss.io import load_image
from gbss.utils import logger


@dataclass(frozen=True)
class CohortStack:
    """
    Per-subject volumes of one modality stacked along the last axis.
    :param modality: modality name (GM, FA, ODI or ICVF).
    :param data: numpy array of shape (x, y, z, n_subjects).
    :param affine: affine shared by every volume of the cohort.
    :param subject_ids: subject identifiers in stack order.
    """
    modality: str
    data: np.ndarray
    affine: np.ndarray
    subject_ids: tuple

    @property
    def shape(self):
        return self.data.shape[:3]

    @property
    def n_subjects(self):
        return self.data.shape[3]

    @property
    def spacing(self):
        return get_spacing_from_affine(self.affine)

    def with_data(self, data, modality=None):
        """Return a new stack on the same grid and subjects holding different data."""
        data = np.asarray(data)
        if data.shape != self.data.shape:
            raise ShapeMismatchError(f"{modality or self.modality}: data shape {data.shape} does not match "
                                     f"cohort shape {self.data.shape}")
        return CohortStack(modality=modality or self.modality, data=data, affine=self.affine,
                           subject_ids=self.subject_ids)


def _volume_data(image, label):
    data = np.asarray(image.get_fdata(), dtype=float)
    if data.ndim == 4 and data.shape[3] == 1:
        data = data[..., 0]
    if data.ndim != 3:
        raise ShapeMismatchError(f"{label}: expected a 3D volume, got shape {data.shape}")
    return data


def stack_volumes(modality, images, subject_ids, reference_shape=None, reference_affine=None):
    """
    Stack per-subject images of one modality into a CohortStack.
    :param modality: modality name.
    :param images: nibabel images (or anything with get_fdata, shape and affine), one per subject.
    :param subject_ids: subject identifiers in the same order as images.
    :param reference_shape: shape of the reference grid. Defaults to the first image.
    :param reference_affine: affine of the reference grid. Defaults to the first image.
    :raises ShapeMismatchError: if any image is not on the reference grid.
    :return: CohortStack
    """
    images = list(images)
    subject_ids = tuple(subject_ids)
    if not images:
        raise ValueError(f"No {modality} images to stack")
    if len(images) != len(subject_ids):
        raise ValueError(f"Got {len(images)} {modality} images for {len(subject_ids)} subjects")
    if reference_shape is None:
        reference_shape = spatial_shape(images[0].shape)
    if reference_affine is None:
        reference_affine = images[0].affine

    volumes = list()
    for image, subject_id in zip(images, subject_ids):
        label = f"cohort aggregation, {modality} volume of subject {subject_id}"
        check_grid(image.shape, image.affine, reference_shape, reference_affine, label=label)
        volumes.append(_volume_data(image, label))

    return CohortStack(modality=modality,
                       data=np.stack(volumes, axis=-1),
                       affine=np.asarray(reference_affine, dtype=float),
                       subject_ids=subject_ids)


def aggregate_cohort(files, subject_ids, modalities=("GM", "FA", "ODI", "ICVF")):
    """
    Load every modality of every subject and stack them on one reference grid (the first GM image).
    :param files: dictionary mapping modality to the list of file paths in subject order.
    :param subject_ids: subject identifiers in stack order.
    :param modalities: modalities to load. The first one defines the reference grid.
    :return: dictionary mapping modality to CohortStack, all with the same subject order.
    """
    reference_image = load_image(files[modalities[0]][0])
    reference_shape = spatial_shape(reference_image.shape)
    reference_affine = reference_image.affine
    logger.info(f"Reference grid: shape {reference_shape}, "
                f"voxel size {tuple(np.round(get_spacing_from_affine(reference_affine), 3))}")

    stacks = dict()
    for modality in modalities:
        images = [load_image(f) for f in tqdm(files[modality], desc=f"Loading {modality}", unit="subject")]
        stacks[modality] = stack_volumes(modality, images, subject_ids,
                                         reference_shape=reference_shape,
                                         reference_affine=reference_affine)
        logger.info(f"Stacked {stacks[modality].n_subjects} {modality} volumes")
    return stacks
