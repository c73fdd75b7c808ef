from dataclasses import dataclass, field, asdict

MODALITIES = ("GM", "FA", "ODI", "ICVF")
COMPOSITES = ("reference", "simplified")
BACKENDS = ("native", "fsl")


@dataclass(frozen=True)
class GBSSParameters:
    """
    Numeric thresholds and switches of a GBSS run.

    Thresholds that happen to share a value (``thresh`` and ``diffusion_lesion_threshold`` are both 0.65)
    are kept as separate fields so that they can be tuned independently.

    :param thresh: grey matter threshold used for the skeleton, the projection and the GM lesion mask.
    :param perc: fraction of subjects that must exceed ``thresh`` for a voxel to enter the group consistency mask.
    :param gm_mask_threshold: threshold applied to the mean GM map to build the GM mask.
    :param smoothing_sigma: Gaussian sigma in voxels used when filling lesions.
    :param coverage_threshold: minimum smoothed non-lesion weight for a lesion voxel to count as reliably filled.
    :param diffusion_lesion_threshold: cutoff for the ICVF and FA lesion masks.
    :param binarize_mean_gm: average ``GM >= thresh`` instead of the raw GM maps when computing the mean GM.
    :param skeleton_smoothing: sigma in voxels of the smoothing used to estimate skeleton directions.
    :param projection_search_limit: maximum number of voxels searched on each side of the skeleton.
    :param guard_division: return 0 where the smoothed weight is 0 (fslmaths -div) instead of NaN/Inf.
    :param composite: "reference" sums the three fill terms, "simplified" drops the unguarded lesion term.
    :param fill_modalities: projections that are lesion filled.
    :param backend: "native" (numpy/scipy) or "fsl" (tbss_skeleton/distancemap) primitives.
    :param n_jobs: number of modalities filled in parallel.
    """
    thresh: float = 0.65
    perc: float = 0.7
    gm_mask_threshold: float = 0.2
    smoothing_sigma: float = 2.0
    coverage_threshold: float = 0.05
    diffusion_lesion_threshold: float = 0.65
    binarize_mean_gm: bool = False
    skeleton_smoothing: float = 1.0
    projection_search_limit: int = 4
    guard_division: bool = True
    composite: str = "reference"
    fill_modalities: tuple = field(default=("ICVF", "ODI", "FA"))
    backend: str = "native"
    n_jobs: int = 1

    def __post_init__(self):
        for name in ("thresh", "perc", "gm_mask_threshold", "coverage_threshold", "diffusion_lesion_threshold"):
            value = getattr(self, name)
            if not 0 <= value <= 1:
                raise ValueError(f"{name} must be between 0 and 1, got {value}")
        if self.smoothing_sigma <= 0:
            raise ValueError(f"smoothing_sigma must be positive, got {self.smoothing_sigma}")
        if self.skeleton_smoothing < 0:
            raise ValueError(f"skeleton_smoothing must be non-negative, got {self.skeleton_smoothing}")
        if int(self.projection_search_limit) < 0:
            raise ValueError(f"projection_search_limit must be non-negative, got {self.projection_search_limit}")
        if self.composite not in COMPOSITES:
            raise ValueError(f"composite must be one of {COMPOSITES}, got {self.composite!r}")
        if self.backend not in BACKENDS:
            raise ValueError(f"backend must be one of {BACKENDS}, got {self.backend!r}")
        if self.n_jobs < 1:
            raise ValueError(f"n_jobs must be at least 1, got {self.n_jobs}")
        # normalise lists coming from argparse
        object.__setattr__(self, "fill_modalities", tuple(self.fill_modalities))
        for modality in self.fill_modalities:
            if modality not in MODALITIES:
                raise ValueError(f"Unknown modality {modality!r}; expected one of {MODALITIES}")

    def to_dict(self):
        return asdict(self)
