"""
Host-side Gaussian parameters and scene factories.

GaussianParameters is the exchange format between point-cloud
initialization, PLY files and GaussianModel. Values are stored the way the
model optimizes them: log-scales, raw quaternions, SH coefficients and
opacity logits.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
from scipy.spatial import cKDTree
import torch

from splatfit.rotations import random_quat_tensor
from splatfit.sh import num_sh_bases, rgb_to_sh

DEFAULT_OPACITY = 0.1


def inverse_sigmoid(x):
    return np.log(x / (1.0 - x))


@dataclass
class GaussianParameters:
    """Parameters for a population of Gaussians."""

    means: np.ndarray  # (N, 3) - 3D positions
    scales: np.ndarray  # (N, 3) - log-scales
    quats: np.ndarray  # (N, 4) - quaternions [w, x, y, z], not normalized
    features_dc: np.ndarray  # (N, 3) - SH degree-0 coefficients
    features_rest: np.ndarray  # (N, K - 1, 3) - higher SH bands
    opacities: np.ndarray  # (N, 1) - opacity logits

    def __post_init__(self):
        """Validate shapes."""
        n = len(self.means)
        if self.means.shape != (n, 3):
            raise ValueError(f"means shape {self.means.shape} != ({n}, 3)")
        if self.scales.shape != (n, 3):
            raise ValueError(f"scales shape {self.scales.shape} != ({n}, 3)")
        if self.quats.shape != (n, 4):
            raise ValueError(f"quats shape {self.quats.shape} != ({n}, 4)")
        if self.features_dc.shape != (n, 3):
            raise ValueError(f"features_dc shape {self.features_dc.shape} != ({n}, 3)")
        if self.features_rest.ndim != 3 or self.features_rest.shape[0] != n or (
            self.features_rest.shape[2] != 3
        ):
            raise ValueError(
                f"features_rest shape {self.features_rest.shape} != ({n}, K - 1, 3)"
            )
        if self.opacities.shape != (n, 1):
            raise ValueError(f"opacities shape {self.opacities.shape} != ({n}, 1)")

        # Validates the coefficient count as well
        self.sh_degree

    @property
    def num_gaussians(self) -> int:
        return len(self.means)

    @property
    def sh_degree(self) -> int:
        num_coeffs = self.features_rest.shape[1] + 1
        degree = int(round(np.sqrt(num_coeffs))) - 1
        if num_sh_bases(degree) != num_coeffs:
            raise ValueError(
                f"{num_coeffs} SH coefficients per channel is not a full SH band set"
            )
        return degree

    @classmethod
    def from_points(
        cls,
        points: np.ndarray,
        colors: Optional[np.ndarray] = None,
        sh_degree: int = 3,
        seed: Optional[int] = None,
    ) -> "GaussianParameters":
        """
        Initialize one Gaussian per point.

        Scales start at the mean distance to the three nearest neighbours,
        rotations are random, colors go into the DC band and opacity starts
        at 0.1.

        Args:
            points: (N, 3) positions.
            colors: (N, 3) RGB in [0, 1] or uint8; defaults to mid grey.
            sh_degree: SH degree of the color representation.
            seed: Seed for the random rotations.
        """
        points = np.asarray(points, dtype=np.float32)
        if points.ndim != 2 or points.shape[1] != 3 or len(points) == 0:
            raise ValueError(f"points must have shape (N, 3) with N > 0, got {points.shape}")
        n = len(points)

        if colors is None:
            colors = np.full((n, 3), 0.5, dtype=np.float32)
        colors = np.asarray(colors)
        if colors.shape != (n, 3):
            raise ValueError(f"colors shape {colors.shape} != ({n}, 3)")
        if colors.dtype == np.uint8:
            colors = colors.astype(np.float32) / 255.0

        if n > 1:
            k = min(4, n)
            dists, _ = cKDTree(points).query(points, k=k)
            avg = np.clip(dists[:, 1:].mean(axis=1), 1e-7, None)
        else:
            avg = np.full(1, 0.01)
        scales = np.repeat(np.log(avg)[:, None], 3, axis=1)

        generator = None
        if seed is not None:
            generator = torch.Generator().manual_seed(seed)
        quats = random_quat_tensor(n, generator=generator).numpy()

        return cls(
            means=points,
            scales=scales.astype(np.float32),
            quats=quats.astype(np.float32),
            features_dc=rgb_to_sh(colors.astype(np.float32)),
            features_rest=np.zeros((n, num_sh_bases(sh_degree) - 1, 3), dtype=np.float32),
            opacities=np.full((n, 1), inverse_sigmoid(DEFAULT_OPACITY), dtype=np.float32),
        )


# Utility functions for creating test scenes


def create_random_scene(
    num_gaussians: int = 100,
    center: Tuple[float, float, float] = (0, 0, 0),
    radius: float = 1.0,
    sh_degree: int = 3,
    seed: Optional[int] = 42,
) -> GaussianParameters:
    """
    Create a scene of randomly positioned, randomly colored Gaussians.

    Args:
        num_gaussians: Number of Gaussians to create
        center: Center position of the scene
        radius: Radius of the ball the Gaussians are sampled in
        sh_degree: SH degree of the color representation
        seed: Random seed for reproducibility

    Returns:
        GaussianParameters object
    """
    rng = np.random.default_rng(seed)

    # Random positions within sphere
    theta = rng.uniform(0, 2 * np.pi, num_gaussians)
    phi = rng.uniform(0, np.pi, num_gaussians)
    r = rng.uniform(0, radius, num_gaussians)

    x = center[0] + r * np.sin(phi) * np.cos(theta)
    y = center[1] + r * np.sin(phi) * np.sin(theta)
    z = center[2] + r * np.cos(phi)
    means = np.stack([x, y, z], axis=1).astype(np.float32)

    colors = rng.uniform(0, 1, (num_gaussians, 3)).astype(np.float32)
    params = GaussianParameters.from_points(
        means, colors, sh_degree=sh_degree, seed=seed
    )

    # Visible, mostly opaque blobs rather than the sparse training init
    params.scales = np.log(
        rng.uniform(0.03, 0.08, (num_gaussians, 3)) * radius
    ).astype(np.float32)
    params.opacities = inverse_sigmoid(
        rng.uniform(0.6, 0.95, (num_gaussians, 1))
    ).astype(np.float32)
    return params


def create_single_gaussian_scene(
    position: Tuple[float, float, float] = (0.0, 0.0, 0.0),
    scale: float = 0.05,
    color: Tuple[float, float, float] = (1.0, 1.0, 1.0),
    opacity_logit: float = 10.0,
    sh_degree: int = 0,
) -> GaussianParameters:
    """One isotropic Gaussian with identity rotation."""
    return GaussianParameters(
        means=np.array([position], dtype=np.float32),
        scales=np.full((1, 3), np.log(scale), dtype=np.float32),
        quats=np.array([[1.0, 0.0, 0.0, 0.0]], dtype=np.float32),
        features_dc=rgb_to_sh(np.array([color], dtype=np.float32)),
        features_rest=np.zeros((1, num_sh_bases(sh_degree) - 1, 3), dtype=np.float32),
        opacities=np.array([[opacity_logit]], dtype=np.float32),
    )
