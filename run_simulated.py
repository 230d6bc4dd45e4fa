# %% imports
import logging

import scipy
import scipy.stats

import matplotlib
import matplotlib.pyplot as plt
import numpy as np
from tqdm import tqdm

from config import FilterParams
from eskf import ESKF
from quaternion import quaternion_to_euler, rotation_matrix_to_quaternion
from simulation import simulate_circle
from utils import vee

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

# %% plot style setup
print(f"matplotlib backend: {matplotlib.get_backend()}")
plt.close("all")
plt.rcParams.update(
    {
        # setgrid
        "axes.grid": True,
        "grid.linestyle": ":",
        "grid.color": "k",
        "grid.alpha": 0.5,
        "grid.linewidth": 0.5,
        # Legend
        "legend.frameon": True,
        "legend.framealpha": 1.0,
        "legend.fancybox": True,
        "legend.numpoints": 1,
    }
)

# %% parameters and data
params = FilterParams.from_yaml("kalman_filter.yaml")

imu_rate = 100.0
dt = 1 / imu_rate

data = simulate_circle(
    duration=60.0,
    gravity_magnitude=params.gravity_magnitude,
    imu_rate=imu_rate,
    lidar_rate=10.0,
    gyro_bias=np.array([0.0, 0.0, 2e-3]),
    acc_bias=np.array([0.02, -0.01, 0.0]),
    gyro_noise_std=np.sqrt(params.process_gyro) * 0.1,
    acc_noise_std=np.sqrt(params.process_accel) * 0.1,
    pos_noise_std=np.sqrt(params.measurement_pos),
    att_noise_std=np.sqrt(params.measurement_orientation),
    rng=np.random.default_rng(0),
)
steps = len(data.imu)
lidar_steps = len(data.lidar)

# %% Estimator
eskf = ESKF(params, debug=False)  # debug=True for the numeric checks, at the expense of speed
eskf.init(data.true_pose[0], data.true_velocity[0], data.imu[0])

# %% Allocate
pose_est = np.zeros((steps, 4, 4))
vel_est = np.zeros((steps, 3))
gyro_bias_est = np.zeros((steps, 3))
acc_bias_est = np.zeros((steps, 3))
P_diag = np.zeros((steps, 15))
NIS = np.zeros(lidar_steps)

pose_est[0], vel_est[0] = eskf.get_odometry()
P_diag[0] = np.diag(eskf.P)

# %% Run estimation
lidar_k = 0
for k in tqdm(range(1, steps)):
    eskf.update(data.imu[k])

    while lidar_k < lidar_steps and data.lidar[lidar_k].imu_index == k:
        observation = data.lidar[lidar_k]
        accepted = eskf.correct(data.imu[k], observation.time, observation.T_nb)
        NIS[lidar_k] = eskf.last_NIS if accepted else np.nan
        lidar_k += 1

    pose_est[k], vel_est[k] = eskf.get_odometry()
    gyro_bias_est[k] = eskf.gyro_bias
    acc_bias_est[k] = eskf.accel_bias
    P_diag[k] = np.diag(eskf.P)

    assert np.all(np.isfinite(eskf.P)), f"Not finite P at index {k}"

# %% Errors
t = data.true_time
pos_error = pose_est[:, :3, 3] - data.true_pose[:, :3, 3]
vel_error = vel_est - data.true_velocity
att_error = np.array(
    [vee(np.eye(3) - C_est @ C_true.T) for C_est, C_true in zip(pose_est[:, :3, :3], data.true_pose[:, :3, :3])]
)
eul = np.array([quaternion_to_euler(rotation_matrix_to_quaternion(C)) for C in pose_est[:, :3, :3]])

rmse = lambda e: np.sqrt(np.mean(e ** 2, axis=0))

# %% Plots
fig1 = plt.figure(1)
ax = plt.axes(projection="3d")
ax.plot3D(pose_est[:, 0, 3], pose_est[:, 1, 3], pose_est[:, 2, 3])
ax.plot3D(*np.array([obs.T_nb[:3, 3] for obs in data.lidar]).T, ".", markersize=2)
ax.set_xlabel("East [m]")
ax.set_ylabel("North [m]")
ax.set_zlabel("Up [m]")

fig2, axs2 = plt.subplots(5, 1, num=2, clear=True)

axs2[0].plot(t, pose_est[:, :3, 3])
axs2[0].set(ylabel="ENU position [m]")
axs2[0].legend(["East", "North", "Up"])

axs2[1].plot(t, vel_est)
axs2[1].set(ylabel="Velocities [m/s]")
axs2[1].legend(["East", "North", "Up"])

axs2[2].plot(t, np.rad2deg(eul))
axs2[2].set(ylabel="Euler angles [deg]")
axs2[2].legend([r"$\phi$", r"$\theta$", r"$\psi$"])

axs2[3].plot(t, acc_bias_est)
axs2[3].set(ylabel="Accl bias [m/s^2]")
axs2[3].legend(["$x$", "$y$", "$z$"])

axs2[4].plot(t, np.rad2deg(gyro_bias_est) * 3600)
axs2[4].set(ylabel="Gyro bias [deg/h]")
axs2[4].legend(["$x$", "$y$", "$z$"])

fig2.suptitle("States estimates")

fig3, axs3 = plt.subplots(3, 1, num=3, clear=True)

axs3[0].plot(t, pos_error)
axs3[0].set(ylabel="Position error [m]")
axs3[0].legend([f"{axis} ({e:.3g})" for axis, e in zip("ENU", rmse(pos_error))])

axs3[1].plot(t, vel_error)
axs3[1].set(ylabel="Velocity error [m/s]")
axs3[1].legend([f"{axis} ({e:.3g})" for axis, e in zip("ENU", rmse(vel_error))])

axs3[2].plot(t, np.rad2deg(att_error))
axs3[2].set(ylabel="Attitude error [deg]")
axs3[2].legend([f"{axis} ({e:.3g})" for axis, e in zip("xyz", np.rad2deg(rmse(att_error)))])

fig3.suptitle("States estimate errors")

# %% Consistency
confprob = 0.95
CI6 = np.array(scipy.stats.chi2.interval(confprob, 6)).reshape((2, 1))
lidar_t = np.array([obs.time for obs in data.lidar])

fig4, axs4 = plt.subplots(2, 1, num=4, clear=True)

axs4[0].plot(lidar_t, NIS)
axs4[0].plot(lidar_t[[0, -1]], (CI6 @ np.ones((1, 2))).T)
insideCI = np.mean((CI6[0] <= NIS) * (NIS <= CI6[1]))
axs4[0].set(
    title=f"NIS ({100 * insideCI:.1f} inside {100 * confprob} confidence interval)"
)
axs4[0].set_ylim([0, 30])

axs4[1].semilogy(t, P_diag[:, :9])
axs4[1].set(ylabel="Error variance")

plt.show()

# %%
