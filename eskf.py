# %% imports
import logging
from typing import Optional, Tuple
from dataclasses import dataclass, field

import numpy as np
import scipy.linalg as la

from cat_slice import CatSlice
from config import FilterParams
from imu import IMUBuffer, IMUData
from quaternion import (
    orthonormalize,
    quaternion_normalize,
    quaternion_product,
    quaternion_to_rotation_matrix,
    rotation_matrix_to_quaternion,
    rotation_vector_to_quaternion,
)
from utils import cross_product_matrix, is_rotation_matrix, small_angle_rotation, vee

logger = logging.getLogger(__name__)


# %% indices
# error state
POS_IDX = CatSlice(start=0, stop=3)
VEL_IDX = CatSlice(start=3, stop=6)
ERR_ATT_IDX = CatSlice(start=6, stop=9)
ERR_GYRO_BIAS_IDX = CatSlice(start=9, stop=12)
ERR_ACC_BIAS_IDX = CatSlice(start=12, stop=15)

# error components zeroed after every correction, the biases persist
RESET_IDX = POS_IDX + VEL_IDX + ERR_ATT_IDX

# process noise
GYRO_NOISE_IDX = CatSlice(start=0, stop=3)
ACC_NOISE_IDX = CatSlice(start=3, stop=6)

# lidar pose observation
OBS_POS_IDX = CatSlice(start=0, stop=3)
OBS_ATT_IDX = CatSlice(start=3, stop=6)

ERR_DIM = 15
NOISE_DIM = 6
OBS_DIM = 6


class SingularInnovationError(la.LinAlgError):
    """The innovation covariance cannot be inverted, the noise configuration is degenerate."""


# %% The class
@dataclass
class ESKF:
    """Error-state Kalman filter fusing IMU samples with lidar odometry poses.

    The nominal pose (4x4, body to navigation) and velocity are dead reckoned
    from the IMU. The error state X holds [dp, dv, dtheta, d_gyro_bias,
    d_acc_bias], defined as nominal minus true, so it is subtracted on
    injection.
    """

    params: FilterParams
    debug: bool = True
    joseph_form: bool = False

    pose: np.ndarray = field(init=False, repr=False)
    vel: np.ndarray = field(init=False, repr=False)
    X: np.ndarray = field(init=False, repr=False)
    P: np.ndarray = field(init=False, repr=False)

    F: np.ndarray = field(init=False, repr=False)
    B: np.ndarray = field(init=False, repr=False)
    Q: np.ndarray = field(init=False, repr=False)
    R: np.ndarray = field(init=False, repr=False)
    G: np.ndarray = field(init=False, repr=False)
    C: np.ndarray = field(init=False, repr=False)

    g: np.ndarray = field(init=False, repr=False)
    w: np.ndarray = field(init=False, repr=False)

    time: Optional[float] = field(init=False, default=None)
    imu_buffer: IMUBuffer = field(init=False, repr=False, default_factory=IMUBuffer)
    last_NIS: Optional[float] = field(init=False, default=None)

    def __post_init__(self):
        if self.debug:
            logger.info(
                "ESKF in debug mode, some numeric properties are checked at the expense of calculation speed"
            )

        params = self.params
        I3 = np.eye(3)

        # earth constants
        self.g = params.gravity
        self.w = params.earth_rate

        # odometry
        self.pose = np.eye(4)
        self.vel = np.zeros(3)

        # prior state covariance
        self.X = np.zeros(ERR_DIM)
        self.P = np.zeros((ERR_DIM, ERR_DIM))
        self.P[POS_IDX ** 2] = params.prior_pos * I3
        self.P[VEL_IDX ** 2] = params.prior_vel * I3
        self.P[ERR_ATT_IDX ** 2] = params.prior_orientation * I3
        self.P[ERR_GYRO_BIAS_IDX ** 2] = params.prior_epsilon * I3
        self.P[ERR_ACC_BIAS_IDX ** 2] = params.prior_delta * I3

        # process and measurement noise
        self.Q = la.block_diag(params.process_gyro * I3, params.process_accel * I3)
        self.R = la.block_diag(
            params.measurement_pos * I3, params.measurement_orientation * I3
        )

        # constant part of the process equation, earth rotation only, transport rate ignored
        self.F = np.zeros((ERR_DIM, ERR_DIM))
        self.F[POS_IDX * VEL_IDX] = I3
        self.F[ERR_ATT_IDX ** 2] = cross_product_matrix(-self.w, debug=self.debug)
        self.B = np.zeros((ERR_DIM, NOISE_DIM))

        # measurement equation
        self.G = np.zeros((OBS_DIM, ERR_DIM))
        self.G[OBS_POS_IDX * POS_IDX] = I3
        self.G[OBS_ATT_IDX * ERR_ATT_IDX] = I3
        self.C = np.eye(OBS_DIM)

        logger.info(
            "IMU-lidar Kalman filter params:\n"
            "\tgravity magnitude: %s\n\tearth rotation speed: %s\n\tlatitude: %s rad\n"
            "\tprior cov. pos.: %s\n\tprior cov. vel.: %s\n\tprior cov. ori.: %s\n"
            "\tprior cov. epsilon: %s\n\tprior cov. delta: %s\n"
            "\tprocess noise gyro: %s\n\tprocess noise accel: %s\n"
            "\tmeasurement noise pos.: %s\n\tmeasurement noise orientation: %s",
            params.gravity_magnitude,
            params.rotation_speed,
            params.latitude_rad,
            params.prior_pos,
            params.prior_vel,
            params.prior_orientation,
            params.prior_epsilon,
            params.prior_delta,
            params.process_gyro,
            params.process_accel,
            params.measurement_pos,
            params.measurement_orientation,
        )

    # %% state access
    @property
    def is_initialized(self) -> bool:
        return self.time is not None

    @property
    def position(self) -> np.ndarray:
        return self.pose[:3, 3].copy()

    @property
    def orientation(self) -> np.ndarray:
        return self.pose[:3, :3].copy()

    @property
    def velocity(self) -> np.ndarray:
        return self.vel.copy()

    @property
    def gyro_bias(self) -> np.ndarray:
        return self.X[ERR_GYRO_BIAS_IDX]

    @property
    def accel_bias(self) -> np.ndarray:
        return self.X[ERR_ACC_BIAS_IDX]

    def _check_initialized(self, caller: str) -> None:
        if not self.is_initialized:
            raise RuntimeError(f"ESKF.{caller}: filter used before init")

    # %% lifecycle
    def init(self, pose: np.ndarray, vel: np.ndarray, imu_data: IMUData) -> None:
        """Seed the odometry and the IMU buffer, the filter time becomes the time of imu_data.

        Args:
            pose (np.ndarray): Initial body to navigation pose, shape (4, 4)
            vel (np.ndarray): Initial velocity in the navigation frame, shape (3,)
            imu_data (IMUData): First IMU sample
        """
        pose = np.array(pose, dtype=float)
        vel = np.array(vel, dtype=float)
        assert pose.shape == (4, 4), f"ESKF.init: pose incorrect shape {pose.shape}"
        assert vel.shape == (3,), f"ESKF.init: vel incorrect shape {vel.shape}"
        if self.debug:
            assert is_rotation_matrix(pose[:3, :3]), "ESKF.init: pose rotation not in SO(3)"

        self.pose = pose
        self.vel = vel

        self.imu_buffer.clear()
        self.imu_buffer.push(imu_data)

        self.time = imu_data.time

        # process equation ready in case a correction comes before the first update
        self.update_process_equation(imu_data)

        logger.info(
            "Kalman filter initialized at %.3f\n\tposition: %s\n\tvelocity: %s",
            self.time,
            self.pose[:3, 3],
            self.vel,
        )

    def update(self, imu_data: IMUData) -> bool:
        """Kalman prediction with one IMU sample.

        Returns:
            bool: False if imu_data is not newer than the filter time, the filter is then left untouched
        """
        self._check_initialized("update")

        if imu_data.time <= self.time:
            logger.debug(
                "ESKF.update: stale IMU sample at %.6f, filter time %.6f",
                imu_data.time,
                self.time,
            )
            return False

        # attitude reported by the IMU, resolved before anything is mutated
        C_nb = self.get_imu_attitude(imu_data)

        # IMU odometry
        self.imu_buffer.push(imu_data)
        self.update_odom_estimation()
        self.imu_buffer.pop_front()

        # error estimation
        self.update_error_estimation(imu_data, C_nb)

        self.time = imu_data.time

        logger.debug(
            "Kalman filter updated at %.6f, position %s, velocity %s",
            self.time,
            self.pose[:3, 3],
            self.vel,
        )
        return True

    def correct(self, imu_data: IMUData, time: float, T_nb: np.ndarray) -> bool:
        """Kalman correction with a lidar odometry pose.

        Args:
            imu_data (IMUData): IMU sample closest to the observation, refreshes the process equation
            time (float): Observation time
            T_nb (np.ndarray): Observed body to navigation pose, shape (4, 4)
        Raises:
            SingularInnovationError: The innovation covariance is numerically singular
        Returns:
            bool: False if the observation is not newer than the filter time, the filter is then left untouched
        """
        self._check_initialized("correct")

        if time <= self.time:
            logger.debug(
                "ESKF.correct: stale observation at %.6f, filter time %.6f",
                time,
                self.time,
            )
            return False

        T_nb = np.asarray(T_nb, dtype=float)
        assert T_nb.shape == (4, 4), f"ESKF.correct: T_nb incorrect shape {T_nb.shape}"

        X_prior, P_prior = self.X.copy(), self.P.copy()

        # prediction up to the observation
        self.update_process_equation(imu_data)
        self.predict_error(time - self.time)

        # correction
        Y, S = self.innovation(T_nb)
        try:
            K = self.kalman_gain(S)
        except SingularInnovationError:
            self.X, self.P = X_prior, P_prior
            raise
        innovation = Y - self.G @ self.X

        self.last_NIS = float(innovation @ la.solve(S, innovation, assume_a="pos"))

        self.update_covariance(K)
        self.X = self.X + K @ innovation

        self.inject()
        self.reset_error()

        logger.debug(
            "Kalman filter corrected at %.6f, NIS %.3f, position %s",
            time,
            self.last_NIS,
            self.pose[:3, 3],
        )
        return True

    def get_odometry(self) -> Tuple[np.ndarray, np.ndarray]:
        """The nominal pose and velocity with the current error estimate eliminated.

        The filter itself is not modified.

        Returns:
            Tuple[np.ndarray, np.ndarray]: (pose, velocity), shapes (4, 4) and (3,)
        """
        self._check_initialized("get_odometry")

        pose = self.pose.copy()
        pose[:3, 3] -= self.X[POS_IDX]
        vel = self.vel - self.X[VEL_IDX]

        C_nn = small_angle_rotation(self.X[ERR_ATT_IDX])
        pose[:3, :3] = orthonormalize(C_nn.T @ pose[:3, :3])

        return pose, vel

    # %% bias compensation
    def get_unbiased_angular_vel(self, angular_vel: np.ndarray) -> np.ndarray:
        """Angular velocity in body with the gyro bias estimate removed."""
        return angular_vel - self.X[ERR_GYRO_BIAS_IDX]

    def get_unbiased_linear_acc(self, linear_acc: np.ndarray, R: np.ndarray) -> np.ndarray:
        """Acceleration in navigation, accelerometer bias estimate and gravity removed.

        Args:
            linear_acc (np.ndarray): Specific force in body, shape (3,)
            R (np.ndarray): Body to navigation rotation at the sample, shape (3, 3)
        """
        return R @ (linear_acc - self.X[ERR_ACC_BIAS_IDX]) - self.g

    # %% strapdown integration
    def get_angular_delta(
        self, index_curr: int = 1, index_prev: int = 0
    ) -> Optional[np.ndarray]:
        """Trapezoidal rotation vector between two buffered samples, None if they are not buffered."""
        if index_curr <= index_prev or len(self.imu_buffer) <= index_curr:
            return None

        imu_data_curr = self.imu_buffer[index_curr]
        imu_data_prev = self.imu_buffer[index_prev]

        delta_t = imu_data_curr.time - imu_data_prev.time

        angular_vel_curr = self.get_unbiased_angular_vel(imu_data_curr.angular_velocity)
        angular_vel_prev = self.get_unbiased_angular_vel(imu_data_prev.angular_velocity)

        return 0.5 * delta_t * (angular_vel_curr + angular_vel_prev)

    def get_velocity_delta(
        self,
        R_curr: np.ndarray,
        R_prev: np.ndarray,
        index_curr: int = 1,
        index_prev: int = 0,
    ) -> Optional[Tuple[float, np.ndarray]]:
        """Trapezoidal velocity change between two buffered samples.

        Returns:
            Optional[Tuple[float, np.ndarray]]: (T, velocity_delta), None if the samples are not buffered
        """
        if index_curr <= index_prev or len(self.imu_buffer) <= index_curr:
            return None

        imu_data_curr = self.imu_buffer[index_curr]
        imu_data_prev = self.imu_buffer[index_prev]

        T = imu_data_curr.time - imu_data_prev.time

        linear_acc_curr = self.get_unbiased_linear_acc(
            imu_data_curr.linear_acceleration, R_curr
        )
        linear_acc_prev = self.get_unbiased_linear_acc(
            imu_data_prev.linear_acceleration, R_prev
        )

        return T, 0.5 * T * (linear_acc_curr + linear_acc_prev)

    def update_orientation(self, angular_delta: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Rotate the nominal attitude by angular_delta (body frame).

        Returns:
            Tuple[np.ndarray, np.ndarray]: (R_curr, R_prev), the attitude after and before the update
        """
        delta_quat = rotation_vector_to_quaternion(angular_delta)
        quaternion = rotation_matrix_to_quaternion(self.pose[:3, :3])

        quaternion = quaternion_normalize(quaternion_product(quaternion, delta_quat))

        R_prev = self.pose[:3, :3].copy()
        self.pose[:3, :3] = quaternion_to_rotation_matrix(quaternion, debug=self.debug)
        R_curr = self.pose[:3, :3].copy()

        return R_curr, R_prev

    def update_position(self, T: float, velocity_delta: np.ndarray) -> None:
        self.pose[:3, 3] += T * self.vel + 0.5 * T * velocity_delta
        self.vel += velocity_delta

    def update_odom_estimation(self) -> bool:
        """Strapdown integration over the two buffered IMU samples.

        Returns:
            bool: False if fewer than two samples are buffered, nothing is integrated then
        """
        if not self.imu_buffer.ready():
            logger.debug("ESKF.update_odom_estimation: not enough IMU data")
            return False

        angular_delta = self.get_angular_delta(1, 0)
        R_curr, R_prev = self.update_orientation(angular_delta)

        T, velocity_delta = self.get_velocity_delta(R_curr, R_prev, 1, 0)
        self.update_position(T, velocity_delta)

        return True

    # %% error state propagation
    def get_imu_attitude(self, imu_data: IMUData) -> Optional[np.ndarray]:
        """Body to navigation rotation reported by the IMU, None if the sample carries no orientation."""
        if imu_data.orientation is None:
            return None
        return quaternion_to_rotation_matrix(
            quaternion_normalize(imu_data.orientation), debug=self.debug
        )

    def get_process_input(
        self, imu_data: IMUData, C_nb: Optional[np.ndarray] = None
    ) -> Tuple[float, np.ndarray, np.ndarray]:
        """Time step, attitude C_nb and navigation frame specific force f_n for the process equation.

        Without a given C_nb the nominal attitude is used.
        """
        T = imu_data.time - self.time

        if C_nb is None:
            C_nb = self.pose[:3, :3].copy()

        f_n = C_nb @ imu_data.linear_acceleration

        return T, C_nb, f_n

    def set_process_equation(self, C_nb: np.ndarray, f_n: np.ndarray) -> None:
        # delta vel
        self.F[VEL_IDX * ERR_ATT_IDX] = cross_product_matrix(f_n, debug=self.debug)
        self.F[VEL_IDX * ERR_ACC_BIAS_IDX] = C_nb
        self.B[VEL_IDX * ACC_NOISE_IDX] = C_nb
        # delta ori
        self.F[ERR_ATT_IDX * ERR_GYRO_BIAS_IDX] = -C_nb
        self.B[ERR_ATT_IDX * GYRO_NOISE_IDX] = -C_nb

    def update_process_equation(
        self, imu_data: IMUData, C_nb: Optional[np.ndarray] = None
    ) -> float:
        """Rebuild F and B for imu_data, returns the time since the filter time.

        C_nb defaults to the attitude reported by imu_data, else the nominal attitude.
        """
        if C_nb is None:
            C_nb = self.get_imu_attitude(imu_data)
        T, C_nb, f_n = self.get_process_input(imu_data, C_nb)
        self.set_process_equation(C_nb, f_n)
        return T

    def discrete_error_matrices(self, T: float) -> Tuple[np.ndarray, np.ndarray]:
        """First order discretization of the process equation.

        Returns:
            Tuple[np.ndarray, np.ndarray]: (F_d, B_d), shapes (15, 15) and (15, 6)
        """
        F_d = np.eye(ERR_DIM) + T * self.F
        B_d = T * self.B
        return F_d, B_d

    def predict_error(self, T: float) -> None:
        F_d, B_d = self.discrete_error_matrices(T)

        self.X = F_d @ self.X
        self.P = F_d @ self.P @ F_d.T + B_d @ self.Q @ B_d.T

        if self.debug:
            assert np.allclose(self.P, self.P.T), "ESKF.predict_error: P not symmetric"
            assert np.all(np.diag(self.P) >= 0), "ESKF.predict_error: negative variance in P"

    def update_error_estimation(
        self, imu_data: IMUData, C_nb: Optional[np.ndarray] = None
    ) -> None:
        T = self.update_process_equation(imu_data, C_nb)
        self.predict_error(T)

    # %% correction
    def innovation(self, T_nb: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Observation residual and innovation covariance for a lidar pose.

        The rotation residual is the first order vee(I - C_nom C_obs^T), valid
        while the attitude error between corrections stays small.

        Args:
            T_nb (np.ndarray): Observed body to navigation pose, shape (4, 4)
        Returns:
            Tuple[np.ndarray, np.ndarray]: (Y, S), shapes (6,) and (6, 6)
        """
        Y = np.zeros(OBS_DIM)
        Y[OBS_POS_IDX] = self.pose[:3, 3] - T_nb[:3, 3]

        C_nn_obs = self.pose[:3, :3] @ T_nb[:3, :3].T
        Y[OBS_ATT_IDX] = vee(np.eye(3) - C_nn_obs)

        S = self.G @ self.P @ self.G.T + self.C @ self.R @ self.C.T

        return Y, S

    def NIS(self, T_nb: np.ndarray) -> float:
        """Normalized innovation squared of a lidar pose against the current state."""
        Y, S = self.innovation(np.asarray(T_nb, dtype=float))
        self._check_invertible(S)
        innovation = Y - self.G @ self.X
        NIS = innovation @ la.solve(S, innovation, assume_a="pos")
        assert NIS >= 0, "ESKF.NIS: NIS not positive"
        return float(NIS)

    def _check_invertible(self, S: np.ndarray) -> None:
        condition = np.linalg.cond(S)
        if not np.isfinite(condition) or condition * np.finfo(float).eps >= 1:
            raise SingularInnovationError(
                f"ESKF: innovation covariance is singular (condition number {condition:g}), "
                "check the covariance configuration"
            )

    def kalman_gain(self, S: np.ndarray) -> np.ndarray:
        self._check_invertible(S)
        return self.P @ self.G.T @ la.inv(S)

    def update_covariance(self, K: np.ndarray) -> None:
        I = np.eye(ERR_DIM)
        if self.joseph_form:
            Jo = I - K @ self.G
            self.P = Jo @ self.P @ Jo.T + K @ self.C @ self.R @ self.C.T @ K.T
            self.P = 0.5 * (self.P + self.P.T)
        else:
            self.P = (I - K @ self.G) @ self.P

    def inject(self) -> None:
        """Eliminate the estimated error from the nominal odometry."""
        self.pose[:3, 3] -= self.X[POS_IDX]
        self.vel -= self.X[VEL_IDX]

        C_nn = small_angle_rotation(self.X[ERR_ATT_IDX])
        self.pose[:3, :3] = orthonormalize(C_nn.T @ self.pose[:3, :3])

        if self.debug:
            assert is_rotation_matrix(self.pose[:3, :3]), "ESKF.inject: attitude not in SO(3)"

    def reset_error(self) -> None:
        self.X[RESET_IDX.slice] = 0.0
