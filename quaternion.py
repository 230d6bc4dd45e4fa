"""Unit quaternion helpers, scalar first: q = [eta, epsilon_x, epsilon_y, epsilon_z] (Hamilton convention)."""
import numpy as np
import scipy.linalg as la

from utils import cross_product_matrix

# Below this rotation angle [rad] the axis of a rotation vector is undefined
SMALL_ANGLE_EPS = 1e-12

IDENTITY_QUATERNION = np.array([1.0, 0.0, 0.0, 0.0])


def quaternion_product(ql: np.ndarray, qr: np.ndarray) -> np.ndarray:
    """Quaternion product ql * qr.

    Args:
        ql (np.ndarray): Left quaternion, shape (4,) or (3,) for a pure quaternion
        qr (np.ndarray): Right quaternion, shape (4,) or (3,) for a pure quaternion

    Raises:
        RuntimeError: Left or right quaternion are of the wrong shape

    Returns:
        np.ndarray: The product, shape (4,)
    """
    if ql.shape == (4,):
        eta_left = ql[0]
        epsilon_left = ql[1:]
    elif ql.shape == (3,):
        eta_left = 0.0
        epsilon_left = ql
    else:
        raise RuntimeError(
            f"quaternion.quaternion_product: left quaternion shape incorrect: {ql.shape}"
        )

    if qr.shape == (4,):
        q_right = qr.astype(float)
    elif qr.shape == (3,):
        q_right = np.concatenate(([0.0], qr))
    else:
        raise RuntimeError(
            f"quaternion.quaternion_product: right quaternion shape incorrect: {qr.shape}"
        )

    left_matrix = eta_left * np.eye(4)
    left_matrix[0, 1:] -= epsilon_left
    left_matrix[1:, 0] += epsilon_left
    left_matrix[1:, 1:] += cross_product_matrix(epsilon_left, debug=False)

    quaternion = left_matrix @ q_right
    assert quaternion.shape == (
        4,
    ), f"quaternion.quaternion_product: result quaternion wrong shape: {quaternion.shape}"
    return quaternion


def quaternion_normalize(quaternion: np.ndarray) -> np.ndarray:
    """Scale to unit norm with non-negative scalar part."""
    norm = la.norm(quaternion)
    if norm < SMALL_ANGLE_EPS:
        raise RuntimeError(
            f"quaternion.quaternion_normalize: cannot normalize {quaternion}"
        )
    quaternion = quaternion / norm
    if quaternion[0] < 0:
        quaternion = -quaternion
    return quaternion


def rotation_vector_to_quaternion(rotation_vector: np.ndarray) -> np.ndarray:
    """Quaternion of a rotation of |rotation_vector| about its direction.

    A (near) zero vector has no direction and maps to the identity quaternion.
    """
    assert rotation_vector.shape == (
        3,
    ), f"quaternion.rotation_vector_to_quaternion: shape incorrect {rotation_vector.shape}"

    angle = la.norm(rotation_vector)
    if angle < SMALL_ANGLE_EPS:
        return IDENTITY_QUATERNION.copy()

    axis = rotation_vector / angle
    return np.array([np.cos(angle / 2), *(np.sin(angle / 2) * axis)])


def quaternion_to_rotation_matrix(
    quaternion: np.ndarray, debug: bool = True
) -> np.ndarray:
    """Convert a quaternion to a rotation matrix

    Args:
        quaternion (np.ndarray): Quaternion of either shape (3,) (pure quaternion) or (4,)
        debug (bool, optional): Debug flag, could speed up by setting to False. Defaults to True.

    Raises:
        RuntimeError: Quaternion is of the wrong shape
        AssertionError: Debug assert fails, rotation matrix is not element of SO(3)

    Returns:
        np.ndarray: Rotation matrix of shape (3, 3)
    """
    if quaternion.shape == (4,):
        eta = quaternion[0]
        epsilon = quaternion[1:]
    elif quaternion.shape == (3,):
        eta = 0.0
        epsilon = quaternion
    else:
        raise RuntimeError(
            f"quaternion.quaternion_to_rotation_matrix: quaternion shape incorrect: {quaternion.shape}"
        )

    S = cross_product_matrix(epsilon, debug=False)
    R = np.eye(3) + 2 * eta * S + 2 * S @ S

    if debug:
        assert np.allclose(
            np.linalg.det(R), 1
        ), "quaternion.quaternion_to_rotation_matrix: Determinant of rotation matrix not close to 1"
        assert np.allclose(
            R.T, np.linalg.inv(R)
        ), "quaternion.quaternion_to_rotation_matrix: Transpose of rotation matrix not close to inverse"

    return R


def rotation_matrix_to_quaternion(R: np.ndarray) -> np.ndarray:
    """Unit quaternion of a rotation matrix (Shepperd's method), shape (4,), eta >= 0."""
    assert R.shape == (
        3,
        3,
    ), f"quaternion.rotation_matrix_to_quaternion: R shape incorrect {R.shape}"

    trace = np.trace(R)
    if trace > 0:
        s = 2 * np.sqrt(1 + trace)
        quaternion = np.array(
            [s / 4, (R[2, 1] - R[1, 2]) / s, (R[0, 2] - R[2, 0]) / s, (R[1, 0] - R[0, 1]) / s]
        )
    elif R[0, 0] > R[1, 1] and R[0, 0] > R[2, 2]:
        s = 2 * np.sqrt(1 + R[0, 0] - R[1, 1] - R[2, 2])
        quaternion = np.array(
            [(R[2, 1] - R[1, 2]) / s, s / 4, (R[0, 1] + R[1, 0]) / s, (R[0, 2] + R[2, 0]) / s]
        )
    elif R[1, 1] > R[2, 2]:
        s = 2 * np.sqrt(1 + R[1, 1] - R[0, 0] - R[2, 2])
        quaternion = np.array(
            [(R[0, 2] - R[2, 0]) / s, (R[0, 1] + R[1, 0]) / s, s / 4, (R[1, 2] + R[2, 1]) / s]
        )
    else:
        s = 2 * np.sqrt(1 + R[2, 2] - R[0, 0] - R[1, 1])
        quaternion = np.array(
            [(R[1, 0] - R[0, 1]) / s, (R[0, 2] + R[2, 0]) / s, (R[1, 2] + R[2, 1]) / s, s / 4]
        )

    return quaternion_normalize(quaternion)


def orthonormalize(R: np.ndarray) -> np.ndarray:
    """Project a near-rotation matrix back onto SO(3) through its unit quaternion."""
    return quaternion_to_rotation_matrix(rotation_matrix_to_quaternion(R), debug=False)


def quaternion_to_euler(quaternion: np.ndarray) -> np.ndarray:
    """Convert quaternion into roll, pitch, yaw

    Args:
        quaternion (np.ndarray): Quaternion of shape (4,)

    Returns:
        np.ndarray: Euler angles [phi, theta, psi] of shape (3,)
    """

    assert quaternion.shape == (
        4,
    ), f"quaternion.quaternion_to_euler: Quaternion shape incorrect {quaternion.shape}"

    eta, e1, e2, e3 = quaternion
    phi = np.arctan2(2 * (eta * e1 + e2 * e3), 1 - 2 * (e1 ** 2 + e2 ** 2))
    theta = np.arcsin(np.clip(2 * (eta * e2 - e3 * e1), -1.0, 1.0))
    psi = np.arctan2(2 * (eta * e3 + e1 * e2), 1 - 2 * (e2 ** 2 + e3 ** 2))

    return np.array([phi, theta, psi])
