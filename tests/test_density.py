import numpy as np
import pytest
import torch

from splatfit.config import ModelConfig
from splatfit.density import DensityController, PopulationMismatchError, TrackerState


@pytest.fixture
def controller():
    return DensityController(ModelConfig(), num_cameras=3)


def grads_with_norms(norms):
    """(N, 2) gradients whose row norms are `norms`."""
    return torch.tensor([[0.0, n] for n in norms])


class TestUpdate:
    def test_starts_uninitialized(self, controller):
        assert controller.state is TrackerState.UNINITIALIZED
        assert controller.num_gaussians == 0
        with pytest.raises(RuntimeError):
            controller.average_grad_norm()

    def test_first_update_seeds_whole_population(self, controller):
        radii = torch.tensor([0, 4, 0, 8], dtype=torch.int32)
        grads = torch.tensor([[3.0, 4.0], [0.0, 0.0], [1.0, 0.0], [0.0, 2.0]])

        controller.update(radii, grads, last_height=50, last_width=100)

        assert controller.state is TrackerState.TRACKING
        assert controller.num_gaussians == 4
        np.testing.assert_allclose(controller.xys_grad_norm.numpy(), [5.0, 0.0, 1.0, 2.0])
        np.testing.assert_allclose(controller.vis_counts.numpy(), [1.0, 1.0, 1.0, 1.0])
        np.testing.assert_allclose(controller.max_2d_size.numpy(), [0.0, 0.04, 0.0, 0.08])

    def test_second_update_touches_only_visible(self, controller):
        controller.update(
            torch.tensor([0, 4, 0, 8]),
            grads_with_norms([5.0, 0.0, 1.0, 2.0]),
            last_height=50,
            last_width=100,
        )
        controller.update(
            torch.tensor([2, 0, 0, 1]),
            grads_with_norms([1.0, 1.0, 1.0, 1.0]),
            last_height=50,
            last_width=100,
        )

        np.testing.assert_allclose(controller.vis_counts.numpy(), [2.0, 1.0, 1.0, 2.0])
        np.testing.assert_allclose(controller.xys_grad_norm.numpy(), [6.0, 0.0, 1.0, 3.0])
        np.testing.assert_allclose(controller.max_2d_size.numpy(), [0.02, 0.04, 0.0, 0.08])

    def test_missing_gradient_counts_as_zero(self, controller):
        controller.update(torch.tensor([3, 0]), None, last_height=10, last_width=10)

        np.testing.assert_allclose(controller.xys_grad_norm.numpy(), [0.0, 0.0])
        np.testing.assert_allclose(controller.vis_counts.numpy(), [1.0, 1.0])
        np.testing.assert_allclose(controller.max_2d_size.numpy(), [0.3, 0.0])

    def test_max_2d_size_is_running_max(self, controller):
        gen = torch.Generator().manual_seed(0)
        n = 32
        previous = None
        for _ in range(20):
            radii = torch.randint(0, 30, (n,), generator=gen)
            radii[torch.rand(n, generator=gen) < 0.3] = 0
            controller.update(radii, torch.randn(n, 2, generator=gen), 64, 48)

            current = controller.max_2d_size.clone()
            if previous is not None:
                assert (current >= previous).all()
            previous = current

    def test_size_uses_larger_dimension(self, controller):
        controller.update(torch.tensor([10]), None, last_height=200, last_width=50)
        assert controller.max_2d_size[0].item() == pytest.approx(0.05)

    def test_population_mismatch_raises(self, controller):
        controller.update(torch.tensor([1, 1, 1]), None, 10, 10)
        with pytest.raises(PopulationMismatchError):
            controller.update(torch.tensor([1, 1, 1, 1]), None, 10, 10)

    def test_gradient_length_mismatch_raises(self, controller):
        with pytest.raises(PopulationMismatchError):
            controller.update(torch.tensor([1, 1]), torch.zeros(3, 2), 10, 10)

    def test_mismatch_is_a_runtime_error(self):
        assert issubclass(PopulationMismatchError, RuntimeError)

    def test_average_grad_norm(self, controller):
        controller.update(torch.tensor([1, 1]), grads_with_norms([2.0, 4.0]), 10, 10)
        controller.update(torch.tensor([1, 0]), grads_with_norms([4.0, 100.0]), 10, 10)

        np.testing.assert_allclose(controller.average_grad_norm().numpy(), [3.0, 4.0])


class TestShouldDensify:
    # Defaults: refine_every=100, warmup_length=500, reset cycle 3000 steps,
    # stop_split_at=15000; three cameras
    @pytest.mark.parametrize(
        "step,expected",
        [
            (0, False),
            (500, False),  # not past warmup
            (550, False),  # not a refine step
            (600, True),
            (3000, False),  # right after an opacity reset
            (3100, False),
            (3200, True),
            (14900, True),
            (15000, False),  # splitting stopped
            (20000, False),
        ],
    )
    def test_defaults(self, controller, step, expected):
        assert controller.should_densify(step) is expected

    def test_camera_count_extends_reset_window(self):
        config = ModelConfig(refine_every=10, warmup_length=0, reset_alpha_every=10)
        few = DensityController(config, num_cameras=1)
        many = DensityController(config, num_cameras=50)

        assert few.should_densify(20)
        assert not many.should_densify(20)
        assert many.should_densify(70)


class TestPopulationChanges:
    def test_reset(self, controller):
        controller.update(torch.tensor([1, 2]), None, 10, 10)
        controller.reset()

        assert controller.state is TrackerState.UNINITIALIZED
        assert controller.xys_grad_norm is None

        # A new population of a different size seeds again
        controller.update(torch.tensor([1, 2, 3]), None, 10, 10)
        assert controller.num_gaussians == 3

    def test_select(self, controller):
        controller.update(torch.tensor([1, 2, 3]), grads_with_norms([1.0, 2.0, 3.0]), 10, 10)
        controller.select(torch.tensor([True, False, True]))

        assert controller.num_gaussians == 2
        np.testing.assert_allclose(controller.xys_grad_norm.numpy(), [1.0, 3.0])
        np.testing.assert_allclose(controller.max_2d_size.numpy(), [0.1, 0.3])

    def test_select_wrong_length_raises(self, controller):
        controller.update(torch.tensor([1, 2, 3]), None, 10, 10)
        with pytest.raises(PopulationMismatchError):
            controller.select(torch.tensor([True, False]))

    def test_select_before_tracking_is_noop(self, controller):
        controller.select(torch.tensor([True]))
        assert controller.state is TrackerState.UNINITIALIZED


def test_negative_camera_count_raises():
    with pytest.raises(ValueError):
        DensityController(ModelConfig(), num_cameras=-1)
