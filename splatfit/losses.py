import torch


def l1(rendered: torch.Tensor, gt: torch.Tensor) -> torch.Tensor:
    return torch.abs(gt - rendered).mean()


def psnr(rendered: torch.Tensor, gt: torch.Tensor) -> torch.Tensor:
    """Peak signal-to-noise ratio in dB for images in [0, 1]."""
    mse = torch.mean((rendered - gt) ** 2)
    return 10.0 * torch.log10(1.0 / mse)
