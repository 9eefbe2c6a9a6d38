import math

import numpy as np
import pytest
import torch

from splatfit.projection import focal_to_fov, projection_matrix, view_matrix
from splatfit.tiles import BLOCK_X, BLOCK_Y, TileBounds

FLIP = torch.diag(torch.tensor([1.0, -1.0, -1.0, 1.0]))


def test_view_matrix_identity_pose():
    view, T = view_matrix(torch.eye(4))

    torch.testing.assert_close(view, FLIP)
    torch.testing.assert_close(T, torch.zeros(3, 1))


def test_view_matrix_inverts_flipped_pose():
    c2w = torch.eye(4)
    c2w[:3, :3] = torch.tensor([
        [0.0, -1.0, 0.0],
        [1.0,  0.0, 0.0],
        [0.0,  0.0, 1.0],
    ])
    c2w[:3, 3] = torch.tensor([1.0, -2.0, 3.0])

    view, T = view_matrix(c2w)

    torch.testing.assert_close(view @ c2w @ FLIP, torch.eye(4), atol=1e-6, rtol=0)
    torch.testing.assert_close(T[:, 0], c2w[:3, 3])


def test_point_in_front_has_positive_depth():
    # OpenGL camera at z=5 looking down -Z towards the origin
    c2w = torch.eye(4)
    c2w[2, 3] = 5.0

    view, _ = view_matrix(c2w)
    p = view @ torch.tensor([0.0, 0.0, 0.0, 1.0])

    torch.testing.assert_close(p, torch.tensor([0.0, 0.0, 5.0, 1.0]))


@pytest.mark.parametrize(
    "bad",
    [
        torch.zeros(4, 4),
        torch.diag(torch.tensor([1e-4, 1e-4, 1e-4, 1.0])),
    ],
)
def test_view_matrix_degenerate_rotation_raises(bad):
    with pytest.raises(ValueError):
        view_matrix(bad)


def test_view_matrix_bad_shape_raises():
    with pytest.raises(ValueError):
        view_matrix(torch.eye(3))


def test_focal_to_fov():
    assert focal_to_fov(320.0, 640) == pytest.approx(math.pi / 2)
    assert focal_to_fov(1e9, 640) == pytest.approx(0.0, abs=1e-6)


def test_projection_matrix_values():
    near, far = 0.001, 1000.0
    P = projection_matrix(near, far, math.pi / 2, math.pi / 2)

    assert P.shape == (4, 4)
    assert P.dtype == torch.float32
    assert P[0, 0].item() == pytest.approx(1.0, rel=1e-6)
    assert P[1, 1].item() == pytest.approx(1.0, rel=1e-6)
    assert P[0, 2].item() == 0.0
    assert P[2, 2].item() == pytest.approx((far + near) / (far - near), rel=1e-6)
    assert P[2, 3].item() == pytest.approx(-far * near / (far - near), rel=1e-6)
    assert P[3, 2].item() == 1.0
    assert P[3, 3].item() == 0.0


def test_projection_matrix_center_maps_to_ndc_origin():
    P = projection_matrix(0.001, 1000.0, 1.0, 0.8)
    p = P @ torch.tensor([0.0, 0.0, 4.0, 1.0])
    ndc = p[:2] / p[3]
    torch.testing.assert_close(ndc, torch.zeros(2))


# ===========================================================================
# Tile bounds
# ===========================================================================

def test_block_size():
    assert BLOCK_X == 16
    assert BLOCK_Y == 16


@pytest.mark.parametrize(
    "width,height,expected",
    [
        (640, 480, (40, 30, 1)),
        (16, 16, (1, 1, 1)),
        (17, 1, (2, 1, 1)),
        (1, 33, (1, 3, 1)),
    ],
)
def test_tile_bounds_for_image(width, height, expected):
    bounds = TileBounds.for_image(width, height)
    assert tuple(bounds) == expected
    assert bounds.num_tiles == expected[0] * expected[1]


def test_tile_bounds_invalid_size_raises():
    with pytest.raises(ValueError):
        TileBounds.for_image(0, 10)


def test_tile_bounds_cover_image():
    for width, height in [(100, 37), (5, 250)]:
        bounds = TileBounds.for_image(width, height)
        assert bounds.x * BLOCK_X >= width > (bounds.x - 1) * BLOCK_X
        assert bounds.y * BLOCK_Y >= height > (bounds.y - 1) * BLOCK_Y
        assert np.ceil(width / 16) == bounds.x
