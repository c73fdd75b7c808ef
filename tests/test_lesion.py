import numpy as np

from gbss.cohort import CohortStack
from gbss.lesion import detect_lesions, group_consistency_mask, lesion_mask
from gbss.parameters import GBSSParameters
from gbss.skeleton import SkeletonContext

SHAPE = (4, 4, 4)


def _context(skeleton_mask=None, skeleton_thresh=None):
    if skeleton_mask is None:
        skeleton_mask = np.ones(SHAPE)
    if skeleton_thresh is None:
        skeleton_thresh = np.ones(SHAPE)
    zeros = np.zeros(SHAPE)
    return SkeletonContext(mean_gm=zeros, gm_mask=zeros, skeleton=skeleton_mask, skeleton_mask=skeleton_mask,
                           skeleton_thresh=skeleton_thresh, skeleton_thresh_inv=skeleton_mask - skeleton_thresh,
                           distance_seed=zeros, distance_map=zeros, search_guide=zeros, affine=np.eye(4))


def _projections(**data):
    n = next(iter(data.values())).shape[3]
    subject_ids = tuple(str(i) for i in range(n))
    return {m: CohortStack(modality=m, data=d, affine=np.eye(4), subject_ids=subject_ids) for m, d in data.items()}


def test_healthy_cohort_has_no_lesions():
    gm = np.ones(SHAPE + (3,))
    lesions = detect_lesions(_projections(GM=gm), _context(), GBSSParameters())
    assert np.all(lesions.consistency_mask == 1)
    assert np.all(lesions.gm_lesion == 0)
    assert np.all(lesions.skeleton_thresh_inv == 0)
    assert np.all(lesions.all_lesion == 0)
    assert np.all(lesions.lesion_mean == 0)


def test_zero_projection_is_all_lesion():
    gm = np.zeros(SHAPE + (2,))
    lesions = detect_lesions(_projections(GM=gm), _context(), GBSSParameters())
    assert np.all(lesions.gm_lesion == 1)
    assert np.all(lesions.all_lesion == 1)
    assert np.all(lesions.lesion_mean == 1)


def test_single_subject_consistency_is_subject_threshold():
    gm = np.random.default_rng(0).uniform(size=SHAPE + (1,))
    mask = group_consistency_mask(gm, thresh=0.65, perc=0.7)
    assert np.array_equal(mask, (gm[..., 0] >= 0.65).astype(float))


def test_consistency_mask_shrinks_with_perc():
    gm = np.random.default_rng(1).uniform(size=SHAPE + (10,))
    masks = [group_consistency_mask(gm, thresh=0.5, perc=perc) for perc in (0.2, 0.5, 0.8)]
    for loose, strict in zip(masks[:-1], masks[1:]):
        assert np.all(strict <= loose)


def test_lesion_mask_flags_values_at_cutoff():
    projection = np.array([0.65, 0.66, 0.9, 0.1]).reshape((1, 1, 4, 1))
    consistency = np.array([1, 1, 0, 1]).reshape((1, 1, 4))
    assert lesion_mask(projection, consistency, 0.65).ravel().tolist() == [1.0, 0.0, 1.0, 1.0]


def test_all_lesion_includes_weak_skeleton():
    gm = np.ones(SHAPE + (4,))
    gm[0, 0, 0, 1] = 0.3
    skeleton_thresh = np.ones(SHAPE)
    skeleton_thresh[3, 3, 3] = 0
    lesions = detect_lesions(_projections(GM=gm, FA=np.full(SHAPE + (4,), 0.5)),
                             _context(skeleton_thresh=skeleton_thresh), GBSSParameters())
    assert lesions.all_lesion[0, 0, 0].tolist() == [0.0, 1.0, 0.0, 0.0]
    assert lesions.all_lesion[3, 3, 3].tolist() == [1.0, 1.0, 1.0, 1.0]
    assert np.count_nonzero(lesions.all_lesion) == 5
    assert lesions.lesion_mean[0, 0, 0] == 0.25
    assert np.all(lesions.fa_lesion == 1)
    assert lesions.icvf_lesion is None
    for mask in (lesions.gm_lesion, lesions.all_lesion, lesions.fa_lesion, lesions.consistency_mask):
        assert set(np.unique(mask).tolist()) <= {0.0, 1.0}


def test_diffusion_lesions_are_strictly_below_cutoff():
    gm = np.ones(SHAPE + (1,))
    fa = np.full(SHAPE + (1,), 0.65)
    fa[0, 0, 0, 0] = 0.64
    lesions = detect_lesions(_projections(GM=gm, FA=fa, ICVF=fa.copy()), _context(), GBSSParameters())
    assert lesions.fa_lesion[0, 0, 0, 0] == 1
    assert np.count_nonzero(lesions.fa_lesion) == 1
    assert np.array_equal(lesions.icvf_lesion, lesions.fa_lesion)
    # the grey matter mask stays inclusive at its cutoff
    assert lesion_mask(np.full((1, 1, 1, 1), 0.65), np.ones((1, 1, 1)), 0.65).item() == 1
