import math

import torch

QUAT_EPS = 1e-12


def normalize_quats(quats: torch.Tensor) -> torch.Tensor:
    """
    Normalize quaternions along the last axis.

    The norm is floored at QUAT_EPS so a zero quaternion maps to zero
    instead of NaN.
    """
    return quats / quats.norm(dim=-1, keepdim=True).clamp_min(QUAT_EPS)


def quats_to_rotmats(quats: torch.Tensor) -> torch.Tensor:
    """
    Batched quaternion [w, x, y, z] -> rotation matrix.

    Args:
        quats: (N, 4) quaternions, normalized on the way in.

    Returns:
        (N, 3, 3) rotation matrices.
    """
    w, x, y, z = normalize_quats(quats).unbind(-1)
    return torch.stack(
        [
            1 - 2 * (y * y + z * z),
            2 * (x * y - w * z),
            2 * (x * z + w * y),
            2 * (x * y + w * z),
            1 - 2 * (x * x + z * z),
            2 * (y * z - w * x),
            2 * (x * z - w * y),
            2 * (y * z + w * x),
            1 - 2 * (x * x + y * y),
        ],
        dim=-1,
    ).reshape(quats.shape[:-1] + (3, 3))


def random_quat_tensor(n: int, generator: torch.Generator = None) -> torch.Tensor:
    """
    Sample n rotations uniformly from SO(3) as unit quaternions.

    Args:
        n: Number of quaternions.
        generator: Optional torch RNG for reproducibility.

    Returns:
        (n, 4) float32 tensor.
    """
    u = torch.rand(n, generator=generator)
    v = torch.rand(n, generator=generator)
    w = torch.rand(n, generator=generator)
    return torch.stack(
        [
            torch.sqrt(1 - u) * torch.sin(2 * math.pi * v),
            torch.sqrt(1 - u) * torch.cos(2 * math.pi * v),
            torch.sqrt(u) * torch.sin(2 * math.pi * w),
            torch.sqrt(u) * torch.cos(2 * math.pi * w),
        ],
        dim=-1,
    )
