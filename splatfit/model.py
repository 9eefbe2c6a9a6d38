"""
GaussianModel: the differentiable forward render pass and its training hooks.

Per call: scale the camera to the scheduled resolution, project the
Gaussians, evaluate their view-dependent colors, rasterize front to back.
After the external backward pass and optimizer step, `after_train` folds the
screen-space gradients of that pass into the density statistics.
"""

import logging
from typing import Dict, Optional, Union

import torch

from splatfit.camera import Camera, resolution_scaled
from splatfit.config import ModelConfig
from splatfit.density import DensityController, PopulationMismatchError
from splatfit.kernels import get_backend
from splatfit.optim import PARAM_GROUPS, OptimizerSet
from splatfit.params import GaussianParameters
from splatfit.projection import focal_to_fov, projection_matrix, view_matrix
from splatfit.rotations import normalize_quats
from splatfit.sh import sh_degree_for_step
from splatfit.tiles import TileBounds

logger = logging.getLogger(__name__)

VIEWDIR_EPS = 1e-12


class GaussianModel:
    """
    A population of 3D Gaussians with its optimizers and density statistics.

    Parameters are leaf tensors with requires_grad=True, one per group in
    PARAM_GROUPS. The model caches the projected centers (`xys`), radii and
    rendered resolution of the last forward call for `after_train`.
    """

    def __init__(
        self,
        means: torch.Tensor,
        scales: torch.Tensor,
        quats: torch.Tensor,
        features_dc: torch.Tensor,
        features_rest: torch.Tensor,
        opacities: torch.Tensor,
        num_cameras: int,
        config: Optional[ModelConfig] = None,
        device: Union[str, torch.device] = "cpu",
    ):
        self.config = config if config is not None else ModelConfig()
        self.device = torch.device(device)
        self.backend = get_backend(self.config.backend)

        def leaf(t):
            t = torch.as_tensor(t, dtype=torch.float32, device=self.device)
            return t.detach().clone().requires_grad_(True)

        self.means = leaf(means)
        self.scales = leaf(scales)
        self.quats = leaf(quats)
        self.features_dc = leaf(features_dc)
        self.features_rest = leaf(features_rest)
        self.opacities = leaf(opacities)
        self._check_population()

        self.background = torch.tensor(
            self.config.background, dtype=torch.float32, device=self.device
        )
        self.optimizers = OptimizerSet(self.parameters(), self.config)
        self.density = DensityController(self.config, num_cameras)

        self.xys: Optional[torch.Tensor] = None
        self.radii: Optional[torch.Tensor] = None
        self.last_height = 0
        self.last_width = 0

        logger.info(
            "GaussianModel: %d Gaussians, SH degree %d, %d cameras, backend=%s, device=%s",
            self.num_gaussians,
            self.config.sh_degree,
            num_cameras,
            self.backend.name,
            self.device,
        )

    @classmethod
    def from_parameters(
        cls,
        params: GaussianParameters,
        num_cameras: int,
        config: Optional[ModelConfig] = None,
        device: Union[str, torch.device] = "cpu",
    ) -> "GaussianModel":
        return cls(
            means=torch.from_numpy(params.means),
            scales=torch.from_numpy(params.scales),
            quats=torch.from_numpy(params.quats),
            features_dc=torch.from_numpy(params.features_dc),
            features_rest=torch.from_numpy(params.features_rest),
            opacities=torch.from_numpy(params.opacities),
            num_cameras=num_cameras,
            config=config,
            device=device,
        )

    def to_parameters(self) -> GaussianParameters:
        arrays = {
            name: tensor.detach().cpu().numpy().copy()
            for name, tensor in self.parameters().items()
        }
        return GaussianParameters(**arrays)

    def parameters(self) -> Dict[str, torch.Tensor]:
        return {name: getattr(self, name) for name in PARAM_GROUPS}

    @property
    def num_gaussians(self) -> int:
        return self.means.shape[0]

    @property
    def num_cameras(self) -> int:
        return self.density.num_cameras

    @property
    def max_sh_degree(self) -> int:
        """Highest SH degree the stored coefficients and the config both allow."""
        stored = int(round((self.features_rest.shape[1] + 1) ** 0.5)) - 1
        return min(self.config.sh_degree, stored)

    def _check_population(self) -> None:
        n = self.means.shape[0]
        for name in PARAM_GROUPS:
            size = getattr(self, name).shape[0]
            if size != n:
                raise PopulationMismatchError(
                    f"{name} has {size} entries but means has {n}"
                )

    # ------------------------------------------------------------------
    # Schedules
    # ------------------------------------------------------------------
    def get_downscale_factor(self, step: int) -> int:
        cfg = self.config
        return 2 ** max(cfg.num_downscales - step // cfg.resolution_schedule, 0)

    def get_sh_degree(self, step: int) -> int:
        return sh_degree_for_step(step, self.config.sh_degree_interval, self.max_sh_degree)

    # ------------------------------------------------------------------
    # Forward pass
    # ------------------------------------------------------------------
    def forward(self, camera: Camera, step: int) -> torch.Tensor:
        """
        Render the population from `camera` at the resolution scheduled for `step`.

        Args:
            camera: View to render. Its resolution is scaled for the call and
                restored before returning.
            step: Training step; drives the resolution and SH schedules.

        Returns:
            (H, W, 3) image in [0, 1] at the downscaled resolution.
        """
        self._check_population()
        downscale = self.get_downscale_factor(step)

        with resolution_scaled(camera, 1.0 / downscale):
            width, height = camera.width, camera.height
            self.last_height = height
            self.last_width = width

            viewmat, T = view_matrix(camera.cam_to_world_tensor(self.device))
            fov_x = focal_to_fov(camera.fx, width)
            fov_y = focal_to_fov(camera.fy, height)
            projmat = projection_matrix(
                self.config.near, self.config.far, fov_x, fov_y, device=self.device
            )
            tile_bounds = TileBounds.for_image(width, height)

            xys, depths, radii, conics, num_tiles_hit = self.backend.project(
                self.means,
                torch.exp(self.scales),
                1.0,
                normalize_quats(self.quats),
                viewmat,
                projmat @ viewmat,
                camera.fx,
                camera.fy,
                camera.cx,
                camera.cy,
                height,
                width,
                tile_bounds,
            )
            self.xys = xys
            self.radii = radii

            if int(radii.sum()) == 0:
                logger.debug("No Gaussian visible at step %d, returning background", step)
                # Sized like camera.get_image(downscale) so losses line up at any step
                return self.background.repeat(height, width, 1)

            if xys.requires_grad:
                xys.retain_grad()

            viewdirs = self.means.detach() - T.T
            viewdirs = viewdirs / viewdirs.norm(dim=-1, keepdim=True).clamp_min(VIEWDIR_EPS)
            colors = torch.cat([self.features_dc[:, None, :], self.features_rest], dim=1)
            rgbs = self.backend.eval_sh(self.get_sh_degree(step), viewdirs, colors)
            rgbs = torch.clamp_min(rgbs + 0.5, 0.0)

            rgb = self.backend.rasterize(
                xys,
                depths,
                radii,
                conics,
                num_tiles_hit,
                rgbs,
                torch.sigmoid(self.opacities),
                height,
                width,
                self.background,
            )
        return torch.clamp_max(rgb, 1.0)

    __call__ = forward

    # ------------------------------------------------------------------
    # Training hooks
    # ------------------------------------------------------------------
    def optimizers_zero_grad(self) -> None:
        self.optimizers.zero_grad()

    def optimizers_step(self) -> None:
        self.optimizers.step()

    @torch.no_grad()
    def after_train(self, step: int) -> bool:
        """
        Update the density statistics from the last forward/backward pass.

        Returns:
            True when a densification pass should run after this step.
        """
        if self.radii is None:
            raise RuntimeError("after_train called before any forward pass")

        if step < self.config.stop_split_at:
            xys_grad = self.xys.grad if self.xys.retains_grad else None
            self.density.update(self.radii, xys_grad, self.last_height, self.last_width)

        densify = self.density.should_densify(step)
        if densify:
            logger.info(
                "Step %d: densification due (%d Gaussians tracked)",
                step,
                self.density.num_gaussians,
            )
        return densify

    def __repr__(self) -> str:
        return (
            f"GaussianModel(num_gaussians={self.num_gaussians}, "
            f"sh_degree={self.config.sh_degree}, backend={self.backend.name!r}, "
            f"device={self.device})"
        )
