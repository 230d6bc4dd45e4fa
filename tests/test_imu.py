import numpy as np
import pytest

from imu import IMUBuffer, IMUData


def sample(t):
    return IMUData(t, [0.0, 0.0, 0.1], [0.0, 0.0, 9.8])


class TestIMUData:

    def test_arrays_are_converted(self):
        imu = IMUData(1, [0, 0, 1], (0, 0, 9.8), [1, 0, 0, 0])
        assert isinstance(imu.time, float)
        assert imu.angular_velocity.dtype == float
        assert imu.orientation.shape == (4,)

    def test_orientation_is_optional(self):
        assert sample(0.0).orientation is None

    @pytest.mark.parametrize('orientation', [[0.0, 0.0, 0.0, 0.0], [np.nan, 0.0, 0.0, 1.0], [np.inf, 0.0, 0.0, 0.0]])
    def test_invalid_orientation(self, orientation):
        with pytest.raises(ValueError):
            IMUData(0.0, [0.0, 0.0, 0.0], [0.0, 0.0, 9.8], orientation)

    def test_wrong_shape(self):
        with pytest.raises(AssertionError):
            IMUData(0.0, [0.0, 0.0], [0.0, 0.0, 9.8])


class TestIMUBuffer:

    def test_keeps_two_latest(self):
        buffer = IMUBuffer()
        for t in (0.0, 0.01, 0.02):
            assert buffer.push(sample(t))
        assert len(buffer) == 2
        assert buffer[0].time == 0.01
        assert buffer[-1].time == 0.02

    def test_rejects_non_increasing_time(self):
        buffer = IMUBuffer()
        buffer.push(sample(1.0))
        assert not buffer.push(sample(1.0))
        assert not buffer.push(sample(0.5))
        assert len(buffer) == 1

    def test_ready(self):
        buffer = IMUBuffer()
        assert not buffer.ready()
        buffer.push(sample(0.0))
        assert not buffer.ready()
        buffer.push(sample(0.01))
        assert buffer.ready()
        buffer.pop_front()
        assert not buffer.ready()

    def test_clear(self):
        buffer = IMUBuffer()
        buffer.push(sample(0.0))
        buffer.clear()
        assert len(buffer) == 0
        assert not buffer.ready()
