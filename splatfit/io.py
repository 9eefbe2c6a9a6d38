"""
PLY I/O in the standard 3D Gaussian splatting vertex layout:

    x y z nx ny nz f_dc_0..2 f_rest_0..M opacity scale_0..2 rot_0..3

Scales are log-scales, opacity is a logit, rot_* is [w, x, y, z] and the
f_rest_* coefficients are stored channel-major (all R, then G, then B).
"""

import logging
from pathlib import Path
from typing import List, Union

import numpy as np
from plyfile import PlyData, PlyElement

from splatfit.params import GaussianParameters

logger = logging.getLogger(__name__)


def _attribute_names(num_rest: int) -> List[str]:
    names = ["x", "y", "z", "nx", "ny", "nz"]
    names += [f"f_dc_{i}" for i in range(3)]
    names += [f"f_rest_{i}" for i in range(num_rest)]
    names += ["opacity"]
    names += [f"scale_{i}" for i in range(3)]
    names += [f"rot_{i}" for i in range(4)]
    return names


def save_ply(params: GaussianParameters, path: Union[str, Path]) -> Path:
    """
    Write all Gaussians to a binary PLY file.

    Args:
        params: Population to write.
        path: Output file; parent directories are created.

    Returns:
        The path written.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    n = params.num_gaussians
    # (N, K - 1, 3) -> (N, 3 * (K - 1)), channel-major
    f_rest = params.features_rest.transpose(0, 2, 1).reshape(n, -1)
    columns = np.concatenate(
        [
            params.means,
            np.zeros((n, 3), dtype=np.float32),
            params.features_dc,
            f_rest,
            params.opacities,
            params.scales,
            params.quats,
        ],
        axis=1,
    ).astype(np.float32)

    names = _attribute_names(f_rest.shape[1])
    vertices = np.empty(n, dtype=[(name, "f4") for name in names])
    vertices[:] = list(map(tuple, columns))

    PlyData([PlyElement.describe(vertices, "vertex")]).write(str(path))
    logger.info("Saved %d Gaussians to %s", n, path)
    return path


def load_ply(path: Union[str, Path]) -> GaussianParameters:
    """
    Load Gaussians written in the standard 3D Gaussian splatting layout.

    Raises:
        FileNotFoundError: The file does not exist.
        ValueError: The file has no vertices or lacks a required field.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"PLY file not found: {path}")

    ply = PlyData.read(str(path))
    if "vertex" not in ply:
        raise ValueError(f'PLY file has no "vertex" element: {path}')

    vertex = ply["vertex"].data
    names = set(vertex.dtype.names or [])
    n = len(vertex)
    if n == 0:
        raise ValueError(f"PLY file contains no vertices: {path}")

    def stack(*fields: str) -> np.ndarray:
        missing = [f for f in fields if f not in names]
        if missing:
            raise ValueError(f"PLY is missing fields {missing}: {path}")
        return np.stack([vertex[f] for f in fields], axis=1).astype(np.float32)

    rest_fields = sorted(
        (f for f in names if f.startswith("f_rest_")),
        key=lambda f: int(f.split("_")[-1]),
    )
    if len(rest_fields) % 3 != 0:
        raise ValueError(
            f"PLY has {len(rest_fields)} f_rest fields, expected a multiple of 3: {path}"
        )
    if rest_fields:
        features_rest = stack(*rest_fields).reshape(n, 3, -1).transpose(0, 2, 1)
    else:
        features_rest = np.zeros((n, 0, 3), dtype=np.float32)

    params = GaussianParameters(
        means=stack("x", "y", "z"),
        scales=stack("scale_0", "scale_1", "scale_2"),
        quats=stack("rot_0", "rot_1", "rot_2", "rot_3"),
        features_dc=stack("f_dc_0", "f_dc_1", "f_dc_2"),
        features_rest=np.ascontiguousarray(features_rest),
        opacities=stack("opacity"),
    )
    logger.info(
        "Loaded %d Gaussians (SH degree %d) from %s", n, params.sh_degree, path
    )
    return params
