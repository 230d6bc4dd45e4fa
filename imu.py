from collections import deque
from dataclasses import dataclass
from typing import Optional

import numpy as np

from mytypes import ArrayLike
from quaternion import SMALL_ANGLE_EPS


@dataclass
class IMUData:
    """One inertial sample.

    angular_velocity [rad/s] and linear_acceleration (specific force) [m/s^2]
    are given in the body frame. orientation is an optional body to navigation
    attitude quaternion [eta, eps_x, eps_y, eps_z] reported by the IMU itself.
    """

    time: float
    angular_velocity: ArrayLike
    linear_acceleration: ArrayLike
    orientation: Optional[ArrayLike] = None

    def __post_init__(self):
        self.time = float(self.time)
        self.angular_velocity = np.asarray(self.angular_velocity, dtype=float)
        self.linear_acceleration = np.asarray(self.linear_acceleration, dtype=float)
        assert self.angular_velocity.shape == (
            3,
        ), f"IMUData: angular_velocity incorrect shape {self.angular_velocity.shape}"
        assert self.linear_acceleration.shape == (
            3,
        ), f"IMUData: linear_acceleration incorrect shape {self.linear_acceleration.shape}"

        if self.orientation is not None:
            self.orientation = np.asarray(self.orientation, dtype=float)
            assert self.orientation.shape == (
                4,
            ), f"IMUData: orientation incorrect shape {self.orientation.shape}"
            norm = np.linalg.norm(self.orientation)
            if not np.isfinite(norm) or norm < SMALL_ANGLE_EPS:
                raise ValueError(
                    f"IMUData: orientation is not a valid quaternion: {self.orientation}"
                )


class IMUBuffer:
    """The latest IMU samples, oldest first, strictly increasing in time."""

    def __init__(self, maxlen: int = 2):
        self._samples = deque(maxlen=maxlen)

    def __len__(self) -> int:
        return len(self._samples)

    def __getitem__(self, index: int) -> IMUData:
        return self._samples[index]

    def clear(self) -> None:
        self._samples.clear()

    def push(self, imu_data: IMUData) -> bool:
        """Append a sample, returns False and keeps the buffer as is if it is not newer than the latest."""
        if self._samples and imu_data.time <= self._samples[-1].time:
            return False
        self._samples.append(imu_data)
        return True

    def pop_front(self) -> IMUData:
        return self._samples.popleft()

    def ready(self) -> bool:
        """Enough samples for one trapezoidal integration step."""
        return len(self._samples) >= 2
