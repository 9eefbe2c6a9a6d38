import numpy as np
import pytest
import torch

from splatfit.sh import (
    C0,
    C1,
    eval_sh,
    num_sh_bases,
    rgb_to_sh,
    sh_degree_for_step,
    sh_to_rgb,
)


@pytest.mark.parametrize("degree,expected", [(0, 1), (1, 4), (2, 9), (3, 16)])
def test_num_sh_bases(degree, expected):
    assert num_sh_bases(degree) == expected


@pytest.mark.parametrize("degree", [-1, 4])
def test_num_sh_bases_out_of_range_raises(degree):
    with pytest.raises(ValueError):
        num_sh_bases(degree)


@pytest.mark.parametrize(
    "step,expected",
    [(0, 0), (999, 0), (1000, 1), (2500, 2), (3000, 3), (10 ** 6, 3)],
)
def test_sh_degree_for_step(step, expected):
    assert sh_degree_for_step(step, 1000, 3) == expected


@pytest.mark.parametrize("interval,max_degree", [(1, 3), (7, 2), (1000, 3), (50, 0)])
def test_sh_degree_schedule_monotone_and_capped(interval, max_degree):
    degrees = [sh_degree_for_step(s, interval, max_degree) for s in range(0, 5000, 3)]
    assert all(a <= b for a, b in zip(degrees, degrees[1:]))
    assert max(degrees) <= max_degree
    assert degrees[0] == 0


def test_rgb_sh_conversion_inverse():
    rgb = np.array([[0.0, 0.5, 1.0]], dtype=np.float32)
    np.testing.assert_allclose(sh_to_rgb(rgb_to_sh(rgb)), rgb, atol=1e-6)
    assert rgb_to_sh(0.5) == 0.0


def test_eval_sh_degree_zero_is_view_independent():
    coeffs = torch.randn(5, 16, 3, generator=torch.Generator().manual_seed(0))
    dirs_a = torch.nn.functional.normalize(torch.randn(5, 3), dim=-1)
    dirs_b = torch.nn.functional.normalize(torch.randn(5, 3), dim=-1)

    out_a = eval_sh(0, dirs_a, coeffs)
    out_b = eval_sh(0, dirs_b, coeffs)

    torch.testing.assert_close(out_a, C0 * coeffs[:, 0, :])
    torch.testing.assert_close(out_a, out_b)


def test_eval_sh_degree_one_z_term():
    coeffs = torch.zeros(1, 4, 3)
    coeffs[0, 2] = torch.tensor([1.0, 2.0, 3.0])
    dirs = torch.tensor([[0.0, 0.0, 1.0]])

    out = eval_sh(1, dirs, coeffs)

    torch.testing.assert_close(out, C1 * torch.tensor([[1.0, 2.0, 3.0]]))


def test_eval_sh_ignores_higher_bands():
    coeffs = torch.randn(3, 16, 3, generator=torch.Generator().manual_seed(2))
    dirs = torch.nn.functional.normalize(torch.randn(3, 3), dim=-1)

    truncated = coeffs.clone()
    truncated[:, 4:] = 0.0

    torch.testing.assert_close(eval_sh(1, dirs, coeffs), eval_sh(1, dirs, truncated))
    torch.testing.assert_close(eval_sh(3, dirs, truncated), eval_sh(1, dirs, coeffs))


def test_eval_sh_too_few_coefficients_raises():
    with pytest.raises(ValueError):
        eval_sh(2, torch.zeros(1, 3), torch.zeros(1, 4, 3))


def test_eval_sh_degree_above_three_raises():
    with pytest.raises(ValueError):
        eval_sh(4, torch.zeros(1, 3), torch.zeros(1, 25, 3))


def test_eval_sh_differentiable():
    coeffs = torch.randn(4, 16, 3, requires_grad=True)
    dirs = torch.nn.functional.normalize(torch.randn(4, 3), dim=-1)

    eval_sh(3, dirs, coeffs).sum().backward()

    assert coeffs.grad is not None
    assert torch.isfinite(coeffs.grad).all()
    assert coeffs.grad.abs().sum() > 0
