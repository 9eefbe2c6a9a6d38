"""
Pinhole camera for Gaussian splatting.

Holds a camera-to-world pose (OpenGL convention: the camera looks down its
local -Z axis with +Y up), pinhole intrinsics, an optional ground-truth
image, and a reversible output-resolution scale used by the coarse-to-fine
training schedule.
"""

import contextlib
from dataclasses import dataclass, field
from fractions import Fraction
from typing import Dict, Iterator, Optional, Union

import cv2
import numpy as np
import torch


def _as_vector(x: np.ndarray, size: int, name: str) -> np.ndarray:
    """Convert input to a flat vector with a fixed number of elements."""
    x_arr = np.asarray(x, dtype=float)
    if x_arr.size != size:
        raise ValueError(f"{name} must have {size} elements, got shape {x_arr.shape}")
    return x_arr.reshape(size)


def _as_fraction(factor: float) -> Fraction:
    # 1/7 and 7.0 map to exact reciprocals
    return Fraction(factor).limit_denominator(10**6)


def _scaled_dim(dim: int, scale: Fraction) -> int:
    return max(1, int(dim * scale))


@dataclass
class CameraIntrinsics:
    """
    Camera intrinsic parameters for the pinhole camera model, in pixels.

        K = [[fx,  0, cx],
             [ 0, fy, cy],
             [ 0,  0,  1]]
    """

    width: int  # Image width (pixels)
    height: int  # Image height (pixels)
    K: np.ndarray = field(default=None)  # 3x3 intrinsic matrix

    def __post_init__(self):
        if self.width <= 0 or self.height <= 0:
            raise ValueError(
                f"Image size must be positive, got {self.width}x{self.height}"
            )
        if self.K is None:
            self.K = np.array(
                [
                    [1.0, 0.0, self.width / 2.0],
                    [0.0, 1.0, self.height / 2.0],
                    [0.0, 0.0, 1.0],
                ]
            )
        else:
            self.K = self._validated_K(self.K)

    @staticmethod
    def _validated_K(K: np.ndarray) -> np.ndarray:
        K = np.asarray(K, dtype=float)
        if K.shape != (3, 3):
            raise ValueError(f"Intrinsic matrix K must be 3x3, got {K.shape}")
        if not np.isclose(K[2, 2], 1.0):
            raise ValueError(f"K[2,2] must be 1, got {K[2, 2]}")
        if K[0, 0] <= 0 or K[1, 1] <= 0:
            raise ValueError(
                f"Focal lengths must be positive, got fx={K[0, 0]}, fy={K[1, 1]}"
            )
        return K.copy()

    @property
    def fx(self) -> float:
        return float(self.K[0, 0])

    @property
    def fy(self) -> float:
        return float(self.K[1, 1])

    @property
    def cx(self) -> float:
        return float(self.K[0, 2])

    @property
    def cy(self) -> float:
        return float(self.K[1, 2])

    @classmethod
    def from_fov(cls, width: int, height: int, fov_deg: float = 60.0) -> "CameraIntrinsics":
        """
        Create square-pixel CameraIntrinsics from a vertical field-of-view angle.

        Args:
            width:   Image width in pixels.
            height:  Image height in pixels.
            fov_deg: Vertical field-of-view angle in degrees.
        """
        if not 0.0 < fov_deg < 180.0:
            raise ValueError(f"fov_deg must be in (0, 180), got {fov_deg}")
        fy = height / (2.0 * np.tan(np.deg2rad(fov_deg) / 2.0))
        fx = fy

        K = np.array(
            [
                [fx, 0.0, width / 2.0],
                [0.0, fy, height / 2.0],
                [0.0, 0.0, 1.0],
            ]
        )
        return cls(width=width, height=height, K=K)


class Camera:
    """
    A training view: pose, intrinsics, and optionally its ground-truth image.

    Intrinsics are stored at full resolution. `scale_output_resolution`
    multiplies a running scale, and the working width/height/fx/fy/cx/cy are
    derived from the full-resolution values, so scaling by f and then by 1/f
    restores the original resolution exactly.
    """

    def __init__(
        self,
        intrinsics: CameraIntrinsics,
        cam_to_world: Optional[np.ndarray] = None,
        image: Optional[np.ndarray] = None,
        name: str = "",
    ):
        self.intrinsics = intrinsics
        self.name = name
        self._scale = Fraction(1)
        self._image = None
        self._image_cache: Dict[int, torch.Tensor] = {}

        if cam_to_world is None:
            cam_to_world = np.eye(4)
        self.set_cam_to_world(cam_to_world)

        if image is not None:
            self.set_image(image)

    @classmethod
    def from_fov(
        cls,
        width: int = 640,
        height: int = 480,
        fov_deg: float = 60.0,
        cam_to_world: Optional[np.ndarray] = None,
    ) -> "Camera":
        intrinsics = CameraIntrinsics.from_fov(width=width, height=height, fov_deg=fov_deg)
        return cls(intrinsics, cam_to_world=cam_to_world)

    # ------------------------------------------------------------------
    # Working-resolution intrinsics
    # ------------------------------------------------------------------
    @property
    def resolution_scale(self) -> float:
        return float(self._scale)

    @property
    def width(self) -> int:
        return _scaled_dim(self.intrinsics.width, self._scale)

    @property
    def height(self) -> int:
        return _scaled_dim(self.intrinsics.height, self._scale)

    @property
    def fx(self) -> float:
        return self.intrinsics.fx * self.resolution_scale

    @property
    def fy(self) -> float:
        return self.intrinsics.fy * self.resolution_scale

    @property
    def cx(self) -> float:
        return self.intrinsics.cx * self.resolution_scale

    @property
    def cy(self) -> float:
        return self.intrinsics.cy * self.resolution_scale

    def scale_output_resolution(self, factor: float) -> None:
        """
        Scale the working resolution and intrinsics by `factor`.

        The running scale is kept as an exact fraction, so calling again with
        1 / factor undoes the change exactly from any starting scale.
        """
        if not factor > 0:
            raise ValueError(f"Resolution scale factor must be positive, got {factor}")
        self._scale *= _as_fraction(factor)

    # ------------------------------------------------------------------
    # Pose
    # ------------------------------------------------------------------
    def set_cam_to_world(self, cam_to_world: Union[np.ndarray, torch.Tensor]) -> None:
        if isinstance(cam_to_world, torch.Tensor):
            cam_to_world = cam_to_world.detach().cpu().numpy()
        T = np.asarray(cam_to_world, dtype=np.float64)
        if T.shape == (3, 4):
            T = np.vstack([T, [0.0, 0.0, 0.0, 1.0]])
        if T.shape != (4, 4):
            raise ValueError(f"cam_to_world must be 4x4 or 3x4, got {T.shape}")
        self._cam_to_world = T

    @property
    def cam_to_world(self) -> np.ndarray:
        """Camera-to-world transform (4x4), OpenGL axis convention."""
        return self._cam_to_world.copy()

    @property
    def position(self) -> np.ndarray:
        return self._cam_to_world[:3, 3].copy()

    def cam_to_world_tensor(self, device: Union[str, torch.device] = "cpu") -> torch.Tensor:
        return torch.as_tensor(self._cam_to_world, dtype=torch.float32, device=device)

    def look_at(
        self,
        position: np.ndarray,
        target: np.ndarray,
        up: np.ndarray = (0.0, 1.0, 0.0),
    ) -> None:
        """
        Place the camera at `position` looking at `target`.

        Args:
            position: Camera center [x, y, z] in world coordinates.
            target:   Point to look at.
            up:       Approximate world up direction.
        """
        position = _as_vector(position, 3, "position")
        target = _as_vector(target, 3, "target")
        up = _as_vector(up, 3, "up")

        forward = target - position
        norm = np.linalg.norm(forward)
        if norm < 1e-12:
            raise ValueError("look_at target coincides with the camera position")
        forward /= norm

        right = np.cross(forward, up)
        if np.linalg.norm(right) < 1e-12:
            raise ValueError("look_at up vector is parallel to the viewing direction")
        right /= np.linalg.norm(right)
        true_up = np.cross(right, forward)

        T = np.eye(4)
        T[:3, 0] = right
        T[:3, 1] = true_up
        T[:3, 2] = -forward
        T[:3, 3] = position
        self._cam_to_world = T

    # ------------------------------------------------------------------
    # Ground-truth image
    # ------------------------------------------------------------------
    def set_image(self, image: np.ndarray) -> None:
        """Attach an (H, W, 3) RGB image, uint8 or float in [0, 1]."""
        image = np.asarray(image)
        expected = (self.intrinsics.height, self.intrinsics.width, 3)
        if image.shape != expected:
            raise ValueError(f"image must have shape {expected}, got {image.shape}")
        if image.dtype == np.uint8:
            image = image.astype(np.float32) / 255.0
        self._image = image.astype(np.float32)
        self._image_cache.clear()

    @property
    def has_image(self) -> bool:
        return self._image is not None

    def get_image(
        self, downscale_factor: int = 1, device: Union[str, torch.device] = "cpu"
    ) -> torch.Tensor:
        """
        Return the ground-truth image at 1 / downscale_factor resolution.

        The size matches what the camera renders after
        `scale_output_resolution(1 / downscale_factor)`.
        """
        if self._image is None:
            raise RuntimeError(f"Camera '{self.name}' has no image attached.")
        downscale_factor = int(downscale_factor)
        if downscale_factor not in self._image_cache:
            if downscale_factor > 1:
                scale = Fraction(1, downscale_factor)
                size = (
                    _scaled_dim(self.intrinsics.width, scale),
                    _scaled_dim(self.intrinsics.height, scale),
                )
                image = cv2.resize(self._image, size, interpolation=cv2.INTER_AREA)
            else:
                image = self._image
            self._image_cache[downscale_factor] = torch.from_numpy(
                np.ascontiguousarray(image)
            )
        return self._image_cache[downscale_factor].to(device)

    def __repr__(self) -> str:
        pos = self.position
        return (
            f"Camera(\n"
            f"  Name:        {self.name!r}\n"
            f"  Position:    [{pos[0]:.3f}, {pos[1]:.3f}, {pos[2]:.3f}]\n"
            f"  Resolution:  {self.width}x{self.height} (scale {self.resolution_scale:g})\n"
            f"  Focal:       fx={self.fx:.1f}, fy={self.fy:.1f}\n"
            f"  Principal:   cx={self.cx:.1f}, cy={self.cy:.1f}\n"
            f")"
        )


@contextlib.contextmanager
def resolution_scaled(camera: Camera, factor: float) -> Iterator[Camera]:
    """
    Scale the camera's output resolution for the duration of the block.

    The original resolution is restored on every exit path.
    """
    camera.scale_output_resolution(factor)
    try:
        yield camera
    finally:
        camera.scale_output_resolution(1.0 / factor)


def create_orbit_camera(
    target: np.ndarray = (0.0, 0.0, 0.0),
    distance: float = 4.0,
    azimuth_deg: float = 0.0,
    elevation_deg: float = 0.0,
    width: int = 640,
    height: int = 480,
    fov_deg: float = 60.0,
) -> Camera:
    """
    Create a camera on a sphere around `target`, looking at it.

    Azimuth rotates about the world +Y axis starting from +Z; elevation
    lifts the camera towards +Y.
    """
    target = _as_vector(target, 3, "target")
    az = np.deg2rad(azimuth_deg)
    el = np.deg2rad(elevation_deg)
    offset = distance * np.array(
        [np.cos(el) * np.sin(az), np.sin(el), np.cos(el) * np.cos(az)]
    )
    camera = Camera.from_fov(width=width, height=height, fov_deg=fov_deg)
    camera.look_at(position=target + offset, target=target)
    return camera
