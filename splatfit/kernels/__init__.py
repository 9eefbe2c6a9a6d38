"""
Differentiable numeric kernels: projection, SH shading, rasterization.

Every backend implements `KernelBackend`. Gradients flow back to the tensor
inputs by whatever mechanism the backend uses; the rest of the pipeline only
relies on the interface.

Backends:
    "torch"  - pure PyTorch, autograd gradients, CPU or GPU.
    "gsplat" - gsplat CUDA kernels (requires a CUDA device and `gsplat`).
"""

from abc import ABC, abstractmethod
from typing import NamedTuple

import torch

from splatfit.tiles import TileBounds


class ProjectionResult(NamedTuple):
    xys: torch.Tensor  # (N, 2) screen-space centers
    depths: torch.Tensor  # (N,) camera-space z
    radii: torch.Tensor  # (N,) int, 0 when culled
    conics: torch.Tensor  # (N, 3) inverse 2D covariance (a, b, c)
    num_tiles_hit: torch.Tensor  # (N,) int


class KernelBackend(ABC):
    name = ""

    @abstractmethod
    def project(
        self,
        means: torch.Tensor,
        scales: torch.Tensor,
        glob_scale: float,
        quats: torch.Tensor,
        viewmat: torch.Tensor,
        projmat: torch.Tensor,
        fx: float,
        fy: float,
        cx: float,
        cy: float,
        img_height: int,
        img_width: int,
        tile_bounds: TileBounds,
    ) -> ProjectionResult:
        ...

    @abstractmethod
    def eval_sh(
        self, degree: int, viewdirs: torch.Tensor, coeffs: torch.Tensor
    ) -> torch.Tensor:
        ...

    @abstractmethod
    def rasterize(
        self,
        xys: torch.Tensor,
        depths: torch.Tensor,
        radii: torch.Tensor,
        conics: torch.Tensor,
        num_tiles_hit: torch.Tensor,
        colors: torch.Tensor,
        opacity: torch.Tensor,
        img_height: int,
        img_width: int,
        background: torch.Tensor,
    ) -> torch.Tensor:
        ...


def get_backend(name: str) -> KernelBackend:
    """Instantiate a kernel backend by name."""
    if name == "torch":
        from splatfit.kernels.torch_backend import TorchBackend

        return TorchBackend()
    if name == "gsplat":
        from splatfit.kernels.gsplat_backend import GsplatBackend

        return GsplatBackend()
    raise ValueError(f"Unknown kernel backend '{name}'. Expected 'torch' or 'gsplat'.")


__all__ = [
    "KernelBackend",
    "ProjectionResult",
    "get_backend",
]
