"""
CUDA kernels from gsplat (0.1.x API: project_gaussians / spherical_harmonics /
rasterize_gaussians).

Install with: pip install "splatfit[gsplat]"
"""

import torch
import gsplat

from splatfit.kernels import KernelBackend, ProjectionResult
from splatfit.kernels.torch_backend import CLIP_THRESH
from splatfit.tiles import BLOCK_X, BLOCK_Y


class GsplatBackend(KernelBackend):
    name = "gsplat"

    def __init__(self):
        if not torch.cuda.is_available():
            raise RuntimeError(
                "The gsplat backend requires a CUDA device. Use backend='torch' on CPU."
            )
        if BLOCK_X != BLOCK_Y:
            raise RuntimeError("gsplat only supports square tiles")

    def project(
        self,
        means,
        scales,
        glob_scale,
        quats,
        viewmat,
        projmat,
        fx,
        fy,
        cx,
        cy,
        img_height,
        img_width,
        tile_bounds,
    ) -> ProjectionResult:
        # gsplat derives the projection from viewmat and the intrinsics; the
        # full projection matrix is not needed.
        xys, depths, radii, conics, _compensation, num_tiles_hit, _cov3d = (
            gsplat.project_gaussians(
                means3d=means,
                scales=scales,
                glob_scale=glob_scale,
                quats=quats,
                viewmat=viewmat,
                fx=fx,
                fy=fy,
                cx=cx,
                cy=cy,
                img_height=img_height,
                img_width=img_width,
                block_width=BLOCK_X,
                clip_thresh=CLIP_THRESH,
            )
        )
        return ProjectionResult(
            xys=xys,
            depths=depths,
            radii=radii,
            conics=conics,
            num_tiles_hit=num_tiles_hit,
        )

    def eval_sh(self, degree, viewdirs, coeffs) -> torch.Tensor:
        return gsplat.spherical_harmonics(degree, viewdirs, coeffs)

    def rasterize(
        self,
        xys,
        depths,
        radii,
        conics,
        num_tiles_hit,
        colors,
        opacity,
        img_height,
        img_width,
        background,
    ) -> torch.Tensor:
        return gsplat.rasterize_gaussians(
            xys=xys,
            depths=depths,
            radii=radii,
            conics=conics,
            num_tiles_hit=num_tiles_hit,
            colors=colors,
            opacity=opacity,
            img_height=img_height,
            img_width=img_width,
            block_width=BLOCK_X,
            background=background,
        )
