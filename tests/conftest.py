import numpy as np
import pytest

from config import FilterParams
from eskf import ESKF
from imu import IMUData

GRAVITY = 9.80943


def params_dict(**overrides):
    node = {
        'earth': {
            'gravity_magnitude': GRAVITY,
            'rotation_speed': 7.292115e-5,
            'latitude': 48.9827703173,
        },
        'covariance': {
            'prior': {'pos': 1e-6, 'vel': 1e-6, 'orientation': 1e-6, 'epsilon': 1e-6, 'delta': 1e-6},
            'process': {'gyro': 1e-4, 'accel': 2.5e-3},
            'measurement': {'pos': 1e-4, 'orientation': 1e-4},
        },
    }
    for path, value in overrides.items():
        branch = node
        keys = path.split('.')
        for key in keys[:-1]:
            branch = branch[key]
        branch[keys[-1]] = value
    return node


def static_imu(t, angular_velocity=(0.0, 0.0, 0.0), orientation=None):
    """IMU sample of a platform at rest, z up."""
    return IMUData(t, np.array(angular_velocity, dtype=float), np.array([0.0, 0.0, GRAVITY]), orientation)


@pytest.fixture
def params():
    return FilterParams.from_dict(params_dict())


@pytest.fixture
def eskf(params):
    """Filter initialized at the origin, at rest, at t = 0."""
    f = ESKF(params)
    f.init(np.eye(4), np.zeros(3), static_imu(0.0))
    return f
