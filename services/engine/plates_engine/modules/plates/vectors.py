from __future__ import annotations

import math

import numpy as np

IDENTITY_QUATERNION = np.array([1.0, 0.0, 0.0, 0.0])


def to_cartesian(lat_deg: float, lon_deg: float) -> np.ndarray:
    lat = math.radians(lat_deg)
    lon = math.radians(lon_deg)
    return np.array([math.cos(lat) * math.cos(lon), math.cos(lat) * math.sin(lon), math.sin(lat)])


def normalize(vector: np.ndarray) -> np.ndarray:
    length = float(np.linalg.norm(vector))
    if length == 0:
        return np.zeros(3)
    return vector / length


def set_length(vector: np.ndarray, length: float) -> np.ndarray:
    return normalize(vector) * length


def angle_between(a: np.ndarray, b: np.ndarray) -> float:
    denominator = float(np.linalg.norm(a) * np.linalg.norm(b))
    if denominator == 0:
        return math.pi / 2
    cos_theta = float(np.dot(a, b)) / denominator
    return math.acos(max(-1.0, min(1.0, cos_theta)))


def quaternion_multiply(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    aw, ax, ay, az = a
    bw, bx, by, bz = b
    return np.array(
        [
            aw * bw - ax * bx - ay * by - az * bz,
            aw * bx + ax * bw + ay * bz - az * by,
            aw * by - ax * bz + ay * bw + az * bx,
            aw * bz + ax * by - ay * bx + az * bw,
        ]
    )


def quaternion_from_axis_angle(axis: np.ndarray, angle: float) -> np.ndarray:
    unit = normalize(axis)
    half = angle * 0.5
    sin_half = math.sin(half)
    return np.array([math.cos(half), unit[0] * sin_half, unit[1] * sin_half, unit[2] * sin_half])


def integrate_orientation(quaternion: np.ndarray, angular_velocity: np.ndarray, timestep: float) -> np.ndarray:
    """Rotates `quaternion` by the world-frame angular velocity over `timestep`."""
    speed = float(np.linalg.norm(angular_velocity))
    if speed == 0:
        return quaternion.copy()
    delta = quaternion_from_axis_angle(angular_velocity, speed * timestep)
    result = quaternion_multiply(delta, quaternion)
    return result / np.linalg.norm(result)


def rotation_matrix(quaternion: np.ndarray) -> np.ndarray:
    w, x, y, z = quaternion
    return np.array(
        [
            [1 - 2 * (y * y + z * z), 2 * (x * y - z * w), 2 * (x * z + y * w)],
            [2 * (x * y + z * w), 1 - 2 * (x * x + z * z), 2 * (y * z - x * w)],
            [2 * (x * z - y * w), 2 * (y * z + x * w), 1 - 2 * (x * x + y * y)],
        ]
    )


def is_degenerate_quaternion(quaternion: np.ndarray) -> bool:
    if not np.all(np.isfinite(quaternion)):
        return True
    return abs(float(np.linalg.norm(quaternion)) - 1.0) > 1e-6


def great_circle_points(start: np.ndarray, end: np.ndarray, step: float) -> list[np.ndarray]:
    """Evenly spaced unit vectors along the shorter arc from `start` to `end`."""
    start = normalize(start)
    end = normalize(end)
    total = angle_between(start, end)
    if total == 0:
        return [start]
    count = max(1, int(math.ceil(total / step)))
    sin_total = math.sin(total)
    points: list[np.ndarray] = []
    for idx in range(count + 1):
        t = idx / count
        if sin_total < 1e-9:
            point = normalize(start * (1 - t) + end * t)
        else:
            point = (math.sin((1 - t) * total) * start + math.sin(t * total) * end) / sin_total
        points.append(point)
    return points
