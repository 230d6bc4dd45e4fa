"""Filter parameters: earth constants and the noise priors that seed P, Q and R."""
import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Mapping, Union

import numpy as np
import yaml

logger = logging.getLogger(__name__)

# dataclass field -> path in the configuration tree
_LAYOUT = {
    "gravity_magnitude": ("earth", "gravity_magnitude"),
    "rotation_speed": ("earth", "rotation_speed"),
    "latitude": ("earth", "latitude"),
    "prior_pos": ("covariance", "prior", "pos"),
    "prior_vel": ("covariance", "prior", "vel"),
    "prior_orientation": ("covariance", "prior", "orientation"),
    "prior_epsilon": ("covariance", "prior", "epsilon"),
    "prior_delta": ("covariance", "prior", "delta"),
    "process_gyro": ("covariance", "process", "gyro"),
    "process_accel": ("covariance", "process", "accel"),
    "measurement_pos": ("covariance", "measurement", "pos"),
    "measurement_orientation": ("covariance", "measurement", "orientation"),
}


@dataclass(frozen=True)
class FilterParams:
    """
    Fields:
        gravity_magnitude: Local gravity [m/s^2]
        rotation_speed: Earth rotation rate [rad/s]
        latitude: Latitude [deg]
        prior_pos, prior_vel, prior_orientation: Initial variance of the
            position, velocity and attitude errors
        prior_epsilon, prior_delta: Initial variance of the gyro (epsilon) and
            accelerometer (delta) bias errors
        process_gyro, process_accel: Gyro and accelerometer noise
        measurement_pos, measurement_orientation: Lidar pose noise
    """

    gravity_magnitude: float
    rotation_speed: float
    latitude: float

    prior_pos: float
    prior_vel: float
    prior_orientation: float
    prior_epsilon: float
    prior_delta: float

    process_gyro: float
    process_accel: float

    measurement_pos: float
    measurement_orientation: float

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"FilterParams.{f.name} must be a number, got {value!r}")
            if not np.isfinite(value):
                raise ValueError(f"FilterParams.{f.name} must be finite, got {value}")
            object.__setattr__(self, f.name, float(value))

        if self.gravity_magnitude <= 0:
            raise ValueError(f"gravity_magnitude must be positive: {self.gravity_magnitude}")
        if not -90.0 <= self.latitude <= 90.0:
            raise ValueError(f"latitude must be in [-90, 90] degrees: {self.latitude}")
        for name in _LAYOUT:
            if name.startswith(("prior_", "process_")) and getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative: {getattr(self, name)}")
        for name in ("measurement_pos", "measurement_orientation"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive: {getattr(self, name)}")

    @property
    def latitude_rad(self) -> float:
        return np.deg2rad(self.latitude)

    @property
    def gravity(self) -> np.ndarray:
        """Gravity in the navigation frame, z up."""
        return np.array([0.0, 0.0, self.gravity_magnitude])

    @property
    def earth_rate(self) -> np.ndarray:
        """Earth rotation in the local east-north-up frame."""
        return self.rotation_speed * np.array(
            [0.0, np.cos(self.latitude_rad), np.sin(self.latitude_rad)]
        )

    @classmethod
    def from_dict(cls, node: Mapping[str, Any]) -> "FilterParams":
        values = {}
        for name, path in _LAYOUT.items():
            value = node
            for key in path:
                if not isinstance(value, Mapping) or key not in value:
                    raise ValueError(f"missing configuration entry: {'.'.join(path)}")
                value = value[key]
            values[name] = value
        return cls(**values)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "FilterParams":
        with open(path, "r") as f:
            node = yaml.safe_load(f)
        if not isinstance(node, Mapping):
            raise ValueError(f"{path}: expected a mapping at the top level")
        params = cls.from_dict(node)
        logger.info("Filter parameters loaded from %s", path)
        return params

    def to_dict(self) -> dict:
        node: dict = {}
        for name, path in _LAYOUT.items():
            branch = node
            for key in path[:-1]:
                branch = branch.setdefault(key, {})
            branch[path[-1]] = getattr(self, name)
        return node
