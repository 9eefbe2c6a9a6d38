import numpy as np
import pytest
import torch

from splatfit.rotations import normalize_quats, quats_to_rotmats, random_quat_tensor


def test_normalize_quats_unit_norm():
    # Arrange
    quats = torch.randn(256, 4, generator=torch.Generator().manual_seed(0)) * 7.0

    # Act
    normalized = normalize_quats(quats)

    # Assert
    norms = normalized.norm(dim=-1)
    np.testing.assert_allclose(norms.numpy(), np.ones(256), atol=1e-5)


def test_normalize_quats_zero_is_finite():
    # Arrange
    quats = torch.zeros(2, 4)

    # Act
    normalized = normalize_quats(quats)

    # Assert
    assert torch.isfinite(normalized).all()


def test_quats_to_rotmats_identity():
    # Arrange
    quats = torch.tensor([[1.0, 0.0, 0.0, 0.0]])

    # Act
    R = quats_to_rotmats(quats)

    # Assert
    np.testing.assert_allclose(R[0].numpy(), np.eye(3), atol=1e-7)


def test_quats_to_rotmats_90_z():
    # Arrange
    # 90 degrees around Z axis: [cos(45), 0, 0, sin(45)]
    angle = np.pi / 2
    quats = torch.tensor([[np.cos(angle / 2), 0.0, 0.0, np.sin(angle / 2)]])

    # Act
    R = quats_to_rotmats(quats)

    # Assert
    expected = np.array([
        [0, -1, 0],
        [1,  0, 0],
        [0,  0, 1]
    ], dtype=np.float32)
    np.testing.assert_allclose(R[0].numpy(), expected, atol=1e-6)


def test_quats_to_rotmats_ignores_quaternion_scale():
    # Arrange
    q = torch.tensor([[0.3, -0.2, 0.5, 0.1]])

    # Act
    R1 = quats_to_rotmats(q)
    R2 = quats_to_rotmats(q * 4.0)

    # Assert
    np.testing.assert_allclose(R1.numpy(), R2.numpy(), atol=1e-6)


def test_quats_to_rotmats_orthonormal():
    # Arrange
    quats = torch.randn(64, 4, generator=torch.Generator().manual_seed(1))

    # Act
    R = quats_to_rotmats(quats)

    # Assert
    eye = torch.eye(3).expand(64, 3, 3)
    np.testing.assert_allclose((R @ R.transpose(1, 2)).numpy(), eye.numpy(), atol=1e-5)
    np.testing.assert_allclose(torch.linalg.det(R).numpy(), np.ones(64), atol=1e-5)


@pytest.mark.parametrize("n", [1, 10, 1000])
def test_random_quat_tensor_unit_norm(n):
    quats = random_quat_tensor(n)

    assert quats.shape == (n, 4)
    np.testing.assert_allclose(quats.norm(dim=-1).numpy(), np.ones(n), atol=1e-5)


def test_random_quat_tensor_reproducible_with_generator():
    a = random_quat_tensor(8, generator=torch.Generator().manual_seed(3))
    b = random_quat_tensor(8, generator=torch.Generator().manual_seed(3))

    torch.testing.assert_close(a, b)
