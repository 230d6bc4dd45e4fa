import numpy as np
from mytypes import ArrayLike


def cross_product_matrix(n: ArrayLike, debug: bool = True) -> np.ndarray:
    """The hat operator: map a 3-vector to its skew-symmetric matrix, so that S(n) @ m == n x m."""
    assert len(n) == 3, f"utils.cross_product_matrix: Vector not of length 3: {n}"
    vector = np.array(n, dtype=float).reshape(3)

    S = np.array(
        [
            [0.0, -vector[2], vector[1]],
            [vector[2], 0.0, -vector[0]],
            [-vector[1], vector[0], 0.0],
        ]
    )

    if debug:
        assert np.allclose(
            S.T, -S
        ), f"utils.cross_product_matrix: Result is not skew-symmetric: {S}"

    return S


def vee(S: np.ndarray, debug: bool = False) -> np.ndarray:
    """The vee operator, inverse of cross_product_matrix.

    Only the antisymmetric part of S is read, so it can be applied directly to
    I - C for a rotation C close to identity.
    """
    assert S.shape == (3, 3), f"utils.vee: Matrix not 3x3: {S.shape}"
    if debug:
        assert np.allclose(S.T, -S), f"utils.vee: Matrix is not skew-symmetric: {S}"

    return 0.5 * np.array([S[2, 1] - S[1, 2], S[0, 2] - S[2, 0], S[1, 0] - S[0, 1]])


def small_angle_rotation(delta_theta: ArrayLike) -> np.ndarray:
    """First order rotation correction I - S(delta_theta)."""
    return np.eye(3) - cross_product_matrix(delta_theta, debug=False)


def is_rotation_matrix(R: np.ndarray, atol: float = 1e-9) -> bool:
    return (
        R.shape == (3, 3)
        and np.allclose(R @ R.T, np.eye(3), rtol=0, atol=atol)
        and np.isclose(np.linalg.det(R), 1, rtol=0, atol=atol)
    )
