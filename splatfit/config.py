from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

MAX_SH_DEGREE = 3


@dataclass
class ModelConfig:
    """
    Schedule constants and learning rates read by GaussianModel.

    Defaults follow the usual 3D Gaussian splatting training recipe.
    """

    # Spherical harmonics
    sh_degree: int = 3  # Highest SH degree ever evaluated
    sh_degree_interval: int = 1000  # Steps between SH degree increases

    # Resolution schedule
    num_downscales: int = 2  # Start at 1 / 2**num_downscales resolution
    resolution_schedule: int = 3000  # Steps between resolution doublings

    # Density control
    refine_every: int = 100
    warmup_length: int = 500
    reset_alpha_every: int = 30  # In units of refine_every
    stop_split_at: int = 15000

    # Rendering
    background: Tuple[float, float, float] = (0.6130, 0.0101, 0.3984)
    near: float = 0.001
    far: float = 1000.0
    backend: str = "torch"

    # Per-group learning rates
    means_lr: float = 0.00016
    scales_lr: float = 0.005
    quats_lr: float = 0.001
    features_dc_lr: float = 0.0025
    features_rest_lr: float = 0.0025 / 20.0
    opacities_lr: float = 0.05
    adam_eps: float = 1e-15

    def __post_init__(self):
        if not (0 <= self.sh_degree <= MAX_SH_DEGREE):
            raise ValueError(
                f"sh_degree must be in [0, {MAX_SH_DEGREE}], got {self.sh_degree}"
            )
        for name in (
            "sh_degree_interval",
            "resolution_schedule",
            "refine_every",
            "reset_alpha_every",
        ):
            value = getattr(self, name)
            if value <= 0:
                raise ValueError(f"{name} must be positive, got {value}")
        for name in ("num_downscales", "warmup_length", "stop_split_at"):
            value = getattr(self, name)
            if value < 0:
                raise ValueError(f"{name} must be non-negative, got {value}")
        if len(self.background) != 3:
            raise ValueError(
                f"background must have 3 components, got {len(self.background)}"
            )
        if not (0.0 < self.near < self.far):
            raise ValueError(
                f"Expected 0 < near < far, got near={self.near}, far={self.far}"
            )
        self.background = tuple(float(c) for c in self.background)

    @property
    def reset_interval(self) -> int:
        """Length of one opacity-reset cycle in steps."""
        return self.reset_alpha_every * self.refine_every
