"""Synthetic IMU and lidar odometry data along a horizontal circle."""
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from imu import IMUData
from quaternion import quaternion_to_rotation_matrix, rotation_vector_to_quaternion


@dataclass
class LidarPose:
    time: float
    T_nb: np.ndarray
    imu_index: int  # index of the latest IMU sample before time


@dataclass
class SimulationData:
    imu: List[IMUData]
    lidar: List[LidarPose]
    true_time: np.ndarray  # (N,)
    true_pose: np.ndarray  # (N, 4, 4)
    true_velocity: np.ndarray  # (N, 3)
    gyro_bias: np.ndarray
    acc_bias: np.ndarray


def _yaw_rotation(psi: float) -> np.ndarray:
    c, s = np.cos(psi), np.sin(psi)
    return np.array([[c, -s, 0.0], [s, c, 0.0], [0.0, 0.0, 1.0]])


def circle_state(t: float, radius: float, angular_rate: float):
    """True pose, velocity and acceleration at time t, body x axis along the velocity."""
    phase = angular_rate * t
    position = radius * np.array([np.cos(phase), np.sin(phase), 0.0])
    velocity = radius * angular_rate * np.array([-np.sin(phase), np.cos(phase), 0.0])
    acceleration = -radius * angular_rate ** 2 * np.array([np.cos(phase), np.sin(phase), 0.0])

    T_nb = np.eye(4)
    T_nb[:3, :3] = _yaw_rotation(phase + np.pi / 2)
    T_nb[:3, 3] = position
    return T_nb, velocity, acceleration


def simulate_circle(
    duration: float,
    gravity_magnitude: float,
    imu_rate: float = 100.0,
    lidar_rate: float = 10.0,
    radius: float = 2.0,
    angular_rate: float = 0.5,
    gyro_bias: Optional[np.ndarray] = None,
    acc_bias: Optional[np.ndarray] = None,
    gyro_noise_std: float = 0.0,
    acc_noise_std: float = 0.0,
    pos_noise_std: float = 0.0,
    att_noise_std: float = 0.0,
    with_orientation: bool = False,
    rng: Optional[np.random.Generator] = None,
) -> SimulationData:
    """Generate IMU samples at imu_rate and lidar poses at lidar_rate.

    Lidar poses are stamped half an IMU period after the IMU sample they
    follow, so every observation is strictly newer than the filter time once
    that sample has been processed.
    """
    rng = np.random.default_rng() if rng is None else rng
    gyro_bias = np.zeros(3) if gyro_bias is None else np.asarray(gyro_bias, dtype=float)
    acc_bias = np.zeros(3) if acc_bias is None else np.asarray(acc_bias, dtype=float)
    g = np.array([0.0, 0.0, gravity_magnitude])

    dt = 1.0 / imu_rate
    steps = int(round(duration * imu_rate)) + 1
    lidar_every = max(int(round(imu_rate / lidar_rate)), 1)

    true_time = dt * np.arange(steps)
    true_pose = np.zeros((steps, 4, 4))
    true_velocity = np.zeros((steps, 3))
    imu: List[IMUData] = []
    lidar: List[LidarPose] = []

    for k, t in enumerate(true_time):
        T_nb, velocity, acceleration = circle_state(t, radius, angular_rate)
        true_pose[k] = T_nb
        true_velocity[k] = velocity

        R = T_nb[:3, :3]
        angular_velocity = (
            np.array([0.0, 0.0, angular_rate]) + gyro_bias + gyro_noise_std * rng.standard_normal(3)
        )
        linear_acceleration = (
            R.T @ (acceleration + g) + acc_bias + acc_noise_std * rng.standard_normal(3)
        )
        orientation = None
        if with_orientation:
            psi = angular_rate * t + np.pi / 2
            orientation = np.array([np.cos(psi / 2), 0.0, 0.0, np.sin(psi / 2)])
        imu.append(IMUData(t, angular_velocity, linear_acceleration, orientation))

        if k > 0 and k % lidar_every == 0:
            t_obs = t + 0.5 * dt
            T_obs, _, _ = circle_state(t_obs, radius, angular_rate)
            T_obs[:3, 3] += pos_noise_std * rng.standard_normal(3)
            T_obs[:3, :3] = T_obs[:3, :3] @ quaternion_to_rotation_matrix(
                rotation_vector_to_quaternion(att_noise_std * rng.standard_normal(3)),
                debug=False,
            )
            lidar.append(LidarPose(t_obs, T_obs, k))

    return SimulationData(
        imu=imu,
        lidar=lidar,
        true_time=true_time,
        true_pose=true_pose,
        true_velocity=true_velocity,
        gyro_bias=gyro_bias,
        acc_bias=acc_bias,
    )
