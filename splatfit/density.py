"""
Density-control bookkeeping.

Accumulates, per Gaussian, how often it was visible, the running sum of its
screen-space gradient norm, and its largest projected size relative to the
image. The split / clone / prune stage reads these statistics; this module
only tracks them and decides when a densification pass is due.
"""

from __future__ import annotations

import enum
import logging
from typing import Optional

import torch

from splatfit.config import ModelConfig

logger = logging.getLogger(__name__)


class PopulationMismatchError(RuntimeError):
    """Per-Gaussian arrays disagree on the number of Gaussians."""


class TrackerState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    TRACKING = "tracking"


class DensityController:
    """
    Owns the running statistics that drive densification.

    The first `update` seeds the statistics over the whole population;
    later updates only touch Gaussians that were visible in that frame.
    """

    def __init__(self, config: ModelConfig, num_cameras: int):
        if num_cameras < 0:
            raise ValueError(f"num_cameras must be non-negative, got {num_cameras}")
        self.config = config
        self.num_cameras = int(num_cameras)
        self.reset()

    def reset(self) -> None:
        """Drop all statistics. Call after any change to the population size."""
        self.state = TrackerState.UNINITIALIZED
        self.xys_grad_norm: Optional[torch.Tensor] = None
        self.vis_counts: Optional[torch.Tensor] = None
        self.max_2d_size: Optional[torch.Tensor] = None

    @property
    def num_gaussians(self) -> int:
        if self.state is TrackerState.UNINITIALIZED:
            return 0
        return self.xys_grad_norm.shape[0]

    def _check_population(self, n: int, what: str) -> None:
        if self.state is TrackerState.TRACKING and n != self.num_gaussians:
            raise PopulationMismatchError(
                f"{what} has {n} entries but density statistics track "
                f"{self.num_gaussians} Gaussians; statistics must be reset or "
                f"selected whenever the population changes"
            )

    @torch.no_grad()
    def update(
        self,
        radii: torch.Tensor,
        xys_grad: Optional[torch.Tensor],
        last_height: int,
        last_width: int,
    ) -> None:
        """
        Fold one frame's visibility and screen-space gradients into the statistics.

        Args:
            radii: (N,) projected radii from the last forward pass.
            xys_grad: (N, 2) gradient of the projected centers, or None when
                no gradient reached them.
            last_height: Rendered image height for that pass.
            last_width: Rendered image width for that pass.
        """
        radii = radii.detach()
        n = radii.shape[0]
        self._check_population(n, "radii")

        visible = (radii > 0).flatten()
        if xys_grad is None:
            grads = torch.zeros(n, dtype=torch.float32, device=radii.device)
        else:
            if xys_grad.shape[0] != n:
                raise PopulationMismatchError(
                    f"xys gradient has {xys_grad.shape[0]} entries, radii has {n}"
                )
            grads = torch.linalg.vector_norm(
                xys_grad.detach(), ord=2, dim=-1, dtype=torch.float32
            )

        if self.state is TrackerState.UNINITIALIZED:
            self.xys_grad_norm = grads.clone()
            self.vis_counts = torch.ones_like(self.xys_grad_norm)
            self.max_2d_size = torch.zeros(n, dtype=torch.float32, device=radii.device)
            self.state = TrackerState.TRACKING
        else:
            self.vis_counts[visible] += 1
            self.xys_grad_norm[visible] += grads[visible]

        new_sizes = radii[visible].float() / float(max(last_height, last_width))
        self.max_2d_size[visible] = torch.maximum(self.max_2d_size[visible], new_sizes)

        logger.debug(
            "density update: %d / %d Gaussians visible", int(visible.sum()), n
        )

    def should_densify(self, step: int) -> bool:
        """Whether a densification pass should run after this step."""
        cfg = self.config
        if step % cfg.refine_every != 0 or step <= cfg.warmup_length:
            return False
        # Skip the window right after an opacity reset
        return (
            step < cfg.stop_split_at
            and step % cfg.reset_interval > self.num_cameras + cfg.refine_every
        )

    def average_grad_norm(self) -> torch.Tensor:
        """Mean screen-space gradient norm per Gaussian over its visible frames."""
        if self.state is TrackerState.UNINITIALIZED:
            raise RuntimeError("No density statistics have been accumulated yet.")
        return self.xys_grad_norm / self.vis_counts

    @torch.no_grad()
    def select(self, mask: torch.Tensor) -> None:
        """Keep only the statistics of Gaussians where `mask` is True."""
        if self.state is TrackerState.UNINITIALIZED:
            return
        mask = mask.flatten().bool()
        self._check_population(mask.shape[0], "selection mask")
        self.xys_grad_norm = self.xys_grad_norm[mask]
        self.vis_counts = self.vis_counts[mask]
        self.max_2d_size = self.max_2d_size[mask]

    def __repr__(self) -> str:
        return (
            f"DensityController(state={self.state.value}, "
            f"num_gaussians={self.num_gaussians}, num_cameras={self.num_cameras})"
        )
