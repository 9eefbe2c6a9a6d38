"""
Pure PyTorch kernels.

Follows the semantics of the tile-based CUDA rasterizer: EWA projection with
a 0.3 px low-pass, 3-sigma radii, 16x16 tiles, front-to-back compositing with
early termination. Gradients come from autograd.
"""

from typing import Tuple

import torch

from splatfit.kernels import KernelBackend, ProjectionResult
from splatfit.rotations import quats_to_rotmats
from splatfit.sh import eval_sh
from splatfit.tiles import BLOCK_X, BLOCK_Y, TileBounds

CLIP_THRESH = 0.01
COV2D_BLUR = 0.3
FOV_CLAMP = 1.3
ALPHA_MIN = 1.0 / 255.0
ALPHA_MAX = 0.999
TRANSMITTANCE_MIN = 1e-4


def tile_rects(
    xys: torch.Tensor, radii: torch.Tensor, tile_bounds: TileBounds
) -> Tuple[torch.Tensor, torch.Tensor]:
    """
    Tile-space bounding rectangle [min, max) of each projected Gaussian.

    Returns:
        (rect_min, rect_max), each (N, 2) int64, clamped to the grid.
    """
    r = radii.to(xys.dtype)[:, None]
    block = torch.tensor([BLOCK_X, BLOCK_Y], dtype=xys.dtype, device=xys.device)
    upper = torch.tensor(
        [tile_bounds.x, tile_bounds.y], dtype=torch.long, device=xys.device
    )
    rect_min = torch.floor((xys - r) / block).long()
    rect_max = torch.floor((xys + r + block - 1) / block).long()
    rect_min = torch.minimum(rect_min.clamp_min(0), upper)
    rect_max = torch.minimum(rect_max.clamp_min(0), upper)
    return rect_min, rect_max


class TorchBackend(KernelBackend):
    name = "torch"

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
        # The symmetric frustum in `projmat` fixes the principal point at the
        # image center; cx / cy are part of the kernel signature only.
        n = means.shape[0]
        ones = torch.ones((n, 1), dtype=means.dtype, device=means.device)
        p_hom = torch.cat([means, ones], dim=-1)

        p_view = p_hom @ viewmat.T
        z = p_view[:, 2]
        in_front = z > CLIP_THRESH
        z_safe = torch.where(in_front, z, torch.ones_like(z))

        # 3D covariance R S S^T R^T
        M = quats_to_rotmats(quats) * (glob_scale * scales)[:, None, :]
        cov3d = M @ M.transpose(1, 2)

        # EWA: J W cov3d W^T J^T, with the view ray clamped to the padded frustum
        lim_x = FOV_CLAMP * 0.5 * img_width / fx
        lim_y = FOV_CLAMP * 0.5 * img_height / fy
        tx = z_safe * torch.clamp(p_view[:, 0] / z_safe, -lim_x, lim_x)
        ty = z_safe * torch.clamp(p_view[:, 1] / z_safe, -lim_y, lim_y)
        zeros = torch.zeros_like(z_safe)
        J = torch.stack(
            [
                torch.stack([fx / z_safe, zeros, -fx * tx / (z_safe * z_safe)], dim=-1),
                torch.stack([zeros, fy / z_safe, -fy * ty / (z_safe * z_safe)], dim=-1),
            ],
            dim=-2,
        )
        T = J @ viewmat[:3, :3]
        cov2d = T @ cov3d @ T.transpose(1, 2)

        a = cov2d[:, 0, 0] + COV2D_BLUR
        b = cov2d[:, 0, 1]
        c = cov2d[:, 1, 1] + COV2D_BLUR
        det = a * c - b * b
        invertible = det > 0
        det_safe = torch.where(invertible, det, torch.ones_like(det))
        conics = torch.stack([c / det_safe, -b / det_safe, a / det_safe], dim=-1)

        # Screen-space center from the full projection
        p_proj = p_hom @ projmat.T
        w = torch.where(in_front, p_proj[:, 3], torch.ones_like(z))
        ndc = p_proj[:, :2] / (w[:, None] + 1e-6)
        size = torch.tensor([img_width, img_height], dtype=means.dtype, device=means.device)
        xys = 0.5 * ((ndc + 1.0) * size - 1.0)

        with torch.no_grad():
            mid = 0.5 * (a + c)
            lambda1 = mid + torch.sqrt(torch.clamp_min(mid * mid - det, 0.1))
            radius = torch.ceil(3.0 * torch.sqrt(lambda1))
            radius = torch.where(invertible & in_front, radius, torch.zeros_like(radius))

            rect_min, rect_max = tile_rects(xys.detach(), radius, tile_bounds)
            extent = rect_max - rect_min
            tiles_hit = extent[:, 0] * extent[:, 1]

            visible = in_front & invertible & (tiles_hit > 0)
            radii = torch.where(visible, radius, torch.zeros_like(radius)).int()
            num_tiles_hit = torch.where(visible, tiles_hit, torch.zeros_like(tiles_hit)).int()

        return ProjectionResult(
            xys=xys,
            depths=z,
            radii=radii,
            conics=conics,
            num_tiles_hit=num_tiles_hit,
        )

    def eval_sh(self, degree, viewdirs, coeffs) -> torch.Tensor:
        return eval_sh(degree, viewdirs, coeffs)

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
        tile_bounds = TileBounds.for_image(img_width, img_height)
        device = xys.device
        background = background.to(device=device, dtype=colors.dtype)
        opacity = opacity.reshape(-1)

        image = background.repeat(img_height, img_width, 1)

        visible = torch.nonzero((radii > 0) & (num_tiles_hit > 0)).squeeze(1)
        if visible.numel() == 0:
            return image

        # Front to back
        order = visible[torch.argsort(depths[visible].detach(), stable=True)]
        xys = xys[order]
        conics = conics[order]
        colors = colors[order]
        opacity = opacity[order]
        rect_min, rect_max = tile_rects(xys.detach(), radii[order], tile_bounds)

        for ty in range(tile_bounds.y):
            y0 = ty * BLOCK_Y
            y1 = min(y0 + BLOCK_Y, img_height)
            in_row = (rect_min[:, 1] <= ty) & (ty < rect_max[:, 1])
            for tx in range(tile_bounds.x):
                hits = in_row & (rect_min[:, 0] <= tx) & (tx < rect_max[:, 0])
                sel = torch.nonzero(hits).squeeze(1)
                if sel.numel() == 0:
                    continue
                x0 = tx * BLOCK_X
                x1 = min(x0 + BLOCK_X, img_width)
                image[y0:y1, x0:x1] = self._composite_tile(
                    x0, x1, y0, y1,
                    xys[sel], conics[sel], colors[sel], opacity[sel],
                    background,
                )
        return image

    @staticmethod
    def _composite_tile(x0, x1, y0, y1, xys, conics, colors, opacity, background):
        """Alpha-composite depth-sorted Gaussians over one tile of pixels."""
        dtype, device = xys.dtype, xys.device
        py, px = torch.meshgrid(
            torch.arange(y0, y1, dtype=dtype, device=device),
            torch.arange(x0, x1, dtype=dtype, device=device),
            indexing="ij",
        )
        pixels = torch.stack([px, py], dim=-1).reshape(-1, 2)

        delta = xys[None, :, :] - pixels[:, None, :]
        dx, dy = delta[..., 0], delta[..., 1]
        a, b, c = conics[:, 0], conics[:, 1], conics[:, 2]
        sigma = 0.5 * (a * dx * dx + c * dy * dy) + b * dx * dy

        alpha = torch.clamp_max(opacity * torch.exp(-sigma.clamp_min(0.0)), ALPHA_MAX)
        valid = (sigma >= 0) & (alpha >= ALPHA_MIN)
        alpha = torch.where(valid, alpha, torch.zeros_like(alpha))

        one_minus = 1.0 - alpha
        transmittance = torch.cumprod(one_minus, dim=1)
        # Stop before the Gaussian that would saturate the pixel
        keep = transmittance > TRANSMITTANCE_MIN
        t_before = torch.cat(
            [torch.ones_like(transmittance[:, :1]), transmittance[:, :-1]], dim=1
        )
        weights = torch.where(keep, alpha * t_before, torch.zeros_like(alpha))
        t_final = torch.where(keep, one_minus, torch.ones_like(one_minus)).prod(dim=1)

        rgb = weights @ colors + t_final[:, None] * background
        return rgb.reshape(y1 - y0, x1 - x0, 3)
