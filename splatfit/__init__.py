from splatfit.camera import Camera, CameraIntrinsics, create_orbit_camera, resolution_scaled
from splatfit.config import ModelConfig
from splatfit.density import DensityController, PopulationMismatchError, TrackerState
from splatfit.io import load_ply, save_ply
from splatfit.losses import l1, psnr
from splatfit.model import GaussianModel
from splatfit.optim import OptimizerSet
from splatfit.params import (
    GaussianParameters,
    create_random_scene,
    create_single_gaussian_scene,
)

__all__ = [
    "Camera",
    "CameraIntrinsics",
    "create_orbit_camera",
    "resolution_scaled",
    "ModelConfig",
    "DensityController",
    "PopulationMismatchError",
    "TrackerState",
    "load_ply",
    "save_ply",
    "l1",
    "psnr",
    "GaussianModel",
    "OptimizerSet",
    "GaussianParameters",
    "create_random_scene",
    "create_single_gaussian_scene",
]
