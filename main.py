import argparse
import logging
from pathlib import Path
from typing import List

import cv2
import numpy as np
import torch

from splatfit.camera import Camera, create_orbit_camera
from splatfit.config import ModelConfig
from splatfit.io import load_ply
from splatfit.losses import l1, psnr
from splatfit.model import GaussianModel
from splatfit.params import create_random_scene

logger = logging.getLogger("splatfit")


def full_resolution_step(config: ModelConfig) -> int:
    """First step at which the resolution schedule renders at full size."""
    return config.num_downscales * config.resolution_schedule


def write_image(path: Path, image: torch.Tensor) -> None:
    """Write an (H, W, 3) RGB tensor in [0, 1] as an 8-bit image."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    rgb = (image.detach().clamp(0.0, 1.0).cpu().numpy() * 255.0).round().astype(np.uint8)
    if not cv2.imwrite(str(path), cv2.cvtColor(rgb, cv2.COLOR_RGB2BGR)):
        raise IOError(f"Failed to write image: {path}")


def render(args) -> None:
    params = load_ply(args.ply)
    config = ModelConfig(sh_degree=params.sh_degree, backend=args.backend)
    model = GaussianModel.from_parameters(params, num_cameras=1, config=config, device=args.device)

    center = params.means.mean(axis=0)
    camera = create_orbit_camera(
        target=center,
        distance=args.distance,
        azimuth_deg=args.azimuth,
        elevation_deg=args.elevation,
        width=args.width,
        height=args.height,
        fov_deg=args.fov,
    )

    with torch.no_grad():
        image = model.forward(camera, step=full_resolution_step(config))
    write_image(args.output, image)

    visible = int((model.radii > 0).sum())
    print(f"[render] {params.num_gaussians} Gaussians, {visible} visible")
    print(f"[render] wrote {image.shape[1]}x{image.shape[0]} image to {args.output}")


def make_training_cameras(num_cameras: int, width: int, height: int) -> List[Camera]:
    cameras = []
    for i in range(num_cameras):
        camera = create_orbit_camera(
            distance=3.0,
            azimuth_deg=360.0 * i / num_cameras,
            elevation_deg=20.0 if i % 2 == 0 else -10.0,
            width=width,
            height=height,
            fov_deg=50.0,
        )
        camera.name = f"view_{i:02d}"
        cameras.append(camera)
    return cameras


def demo(args) -> None:
    """Fit a perturbed synthetic scene to renders of the original."""
    if args.steps <= 0 or args.cameras <= 0:
        raise ValueError("--steps and --cameras must be positive")
    target = create_random_scene(num_gaussians=args.num_gaussians, sh_degree=1, seed=args.seed)
    cameras = make_training_cameras(args.cameras, args.width, args.height)

    config = ModelConfig(
        sh_degree=1,
        sh_degree_interval=max(1, args.steps // 2),
        num_downscales=1,
        resolution_schedule=max(1, args.steps // 2),
        refine_every=10,
        warmup_length=20,
        reset_alpha_every=10,
        stop_split_at=args.steps,
        backend=args.backend,
    )

    reference = GaussianModel.from_parameters(target, len(cameras), config, args.device)
    with torch.no_grad():
        for camera in cameras:
            image = reference.forward(camera, step=full_resolution_step(config))
            camera.set_image(image.cpu().numpy())

    rng = np.random.default_rng(args.seed + 1)
    start = create_random_scene(num_gaussians=args.num_gaussians, sh_degree=1, seed=args.seed)
    start.means = start.means + rng.normal(0.0, 0.05, start.means.shape).astype(np.float32)
    start.features_dc = rng.normal(0.0, 0.5, start.features_dc.shape).astype(np.float32)
    model = GaussianModel.from_parameters(start, len(cameras), config, args.device)

    densify_steps = []
    for step in range(args.steps):
        camera = cameras[step % len(cameras)]
        model.optimizers_zero_grad()
        rendered = model.forward(camera, step)
        gt = camera.get_image(model.get_downscale_factor(step), device=model.device)
        loss = l1(rendered, gt)
        loss.backward()
        model.optimizers_step()
        if model.after_train(step):
            densify_steps.append(step)

        if step % args.log_every == 0 or step == args.steps - 1:
            logger.info(
                "step %4d | %s | %dx%d | l1 %.4f | psnr %.2f dB",
                step,
                camera.name,
                rendered.shape[1],
                rendered.shape[0],
                float(loss),
                float(psnr(rendered.detach(), gt)),
            )

    print("\n=== Demo Summary ===")
    print(f"gaussians: {model.num_gaussians}")
    print(f"steps: {args.steps}")
    print(f"densification due at steps: {densify_steps}")
    print(f"mean screen-space grad: {float(model.density.average_grad_norm().mean()):.3e}")

    if args.output is not None:
        with torch.no_grad():
            image = model.forward(cameras[0], step=full_resolution_step(config))
        write_image(args.output, image)
        print(f"final render: {args.output}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="3D Gaussian splatting renderer.")
    parser.add_argument(
        "--device",
        default="cpu",
        help="Torch device, e.g. cpu or cuda.",
    )
    parser.add_argument(
        "--backend",
        default="torch",
        choices=("torch", "gsplat"),
        help="Numeric kernel backend.",
    )
    parser.add_argument("--verbose", action="store_true", help="Log at DEBUG level.")
    sub = parser.add_subparsers(dest="command", required=True)

    p_render = sub.add_parser("render", help="Render a Gaussian PLY to an image.")
    p_render.add_argument("--ply", type=Path, required=True, help="Gaussian splat PLY file.")
    p_render.add_argument("--output", type=Path, default=Path("render.png"))
    p_render.add_argument("--width", type=int, default=640)
    p_render.add_argument("--height", type=int, default=480)
    p_render.add_argument("--fov", type=float, default=60.0, help="Vertical FOV in degrees.")
    p_render.add_argument(
        "--distance",
        type=float,
        default=4.0,
        help="Camera distance from the scene center.",
    )
    p_render.add_argument("--azimuth", type=float, default=0.0)
    p_render.add_argument("--elevation", type=float, default=0.0)
    p_render.set_defaults(func=render)

    p_demo = sub.add_parser("demo", help="Fit a perturbed synthetic scene for a few steps.")
    p_demo.add_argument("--steps", type=int, default=60)
    p_demo.add_argument("--cameras", type=int, default=4)
    p_demo.add_argument("--num-gaussians", type=int, default=200)
    p_demo.add_argument("--width", type=int, default=96)
    p_demo.add_argument("--height", type=int, default=64)
    p_demo.add_argument("--seed", type=int, default=0)
    p_demo.add_argument("--log-every", type=int, default=10)
    p_demo.add_argument("--output", type=Path, default=None, help="Save the final render.")
    p_demo.set_defaults(func=demo)
    return parser


if __name__ == "__main__":
    args = build_parser().parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    args.func(args)
