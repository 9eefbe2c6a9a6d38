"""
Camera matrices for the projection stage.

The camera-to-world transform is in OpenGL convention; the kernels expect
OpenCV convention (+Y down, +Z forward), so the local Y and Z axes are
flipped before inverting.
"""

import math
from typing import Tuple

import torch

# Below this |det(R)| the rotation block is treated as non-invertible.
MIN_ROTATION_DET = 1e-6


def view_matrix(cam_to_world: torch.Tensor) -> Tuple[torch.Tensor, torch.Tensor]:
    """
    Build the 4x4 world-to-camera matrix.

    Args:
        cam_to_world: (4, 4) camera-to-world transform.

    Returns:
        (view matrix (4, 4), camera translation T (3, 1)).
    """
    if cam_to_world.shape != (4, 4):
        raise ValueError(f"cam_to_world must be 4x4, got {tuple(cam_to_world.shape)}")

    R = cam_to_world[:3, :3]
    T = cam_to_world[:3, 3:4]

    det = torch.linalg.det(R)
    if not torch.isfinite(det) or abs(float(det)) < MIN_ROTATION_DET:
        raise ValueError(
            f"Camera rotation block is not invertible (det={float(det):.3e})"
        )

    # Flip the z and y axes to align with the kernel conventions
    R = R @ torch.diag(torch.tensor([1.0, -1.0, -1.0], dtype=R.dtype, device=R.device))

    R_inv = R.transpose(0, 1)
    T_inv = -R_inv @ T

    view = torch.eye(4, dtype=cam_to_world.dtype, device=cam_to_world.device)
    view[:3, :3] = R_inv
    view[:3, 3:4] = T_inv
    return view, T


def focal_to_fov(focal: float, pixels: int) -> float:
    return 2.0 * math.atan(pixels / (2.0 * focal))


def projection_matrix(
    z_near: float,
    z_far: float,
    fov_x: float,
    fov_y: float,
    device: torch.device = "cpu",
) -> torch.Tensor:
    """OpenGL perspective projection matrix for a symmetric frustum."""
    t = z_near * math.tan(0.5 * fov_y)
    b = -t
    r = z_near * math.tan(0.5 * fov_x)
    l = -r
    return torch.tensor(
        [
            [2.0 * z_near / (r - l), 0.0, (r + l) / (r - l), 0.0],
            [0.0, 2.0 * z_near / (t - b), (t + b) / (t - b), 0.0],
            [
                0.0,
                0.0,
                (z_far + z_near) / (z_far - z_near),
                -1.0 * z_far * z_near / (z_far - z_near),
            ],
            [0.0, 0.0, 1.0, 0.0],
        ],
        dtype=torch.float32,
        device=device,
    )
