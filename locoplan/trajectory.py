"""Polynomial trajectories, vertices and sampled trajectory points."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Iterable, Sequence

import numpy as np
from numpy.polynomial import polynomial as npoly

_SCALING_TOLERANCE = 1e-3
_MAX_SCALING_ROUNDS = 20


class DerivativeOrder(IntEnum):
    """Derivative indices used for vertex constraints."""

    POSITION = 0
    VELOCITY = 1
    ACCELERATION = 2
    JERK = 3
    SNAP = 4


def highest_derivative_from_n(n: int) -> int:
    """Highest derivative that can be constrained with ``n`` coefficients."""
    return n // 2 - 1


def _as_vector(value) -> np.ndarray:
    return np.array(value, dtype=float).reshape(-1)


def _zeros3() -> np.ndarray:
    return np.zeros(3)


def _identity_quaternion() -> np.ndarray:
    return np.array([1.0, 0.0, 0.0, 0.0])


@dataclass
class TrajectoryPoint:
    """A single sampled state: 3D kinematics, orientation (w, x, y, z) and time."""

    position: np.ndarray = field(default_factory=_zeros3)
    velocity: np.ndarray = field(default_factory=_zeros3)
    acceleration: np.ndarray = field(default_factory=_zeros3)
    jerk: np.ndarray = field(default_factory=_zeros3)
    snap: np.ndarray = field(default_factory=_zeros3)
    orientation: np.ndarray = field(default_factory=_identity_quaternion)
    time_from_start_ns: int = 0

    def __post_init__(self) -> None:
        for name in ("position", "velocity", "acceleration", "jerk", "snap"):
            setattr(self, name, _as_vector(getattr(self, name)))
        self.orientation = _as_vector(self.orientation)
        self.time_from_start_ns = int(self.time_from_start_ns)


@dataclass
class Vertex:
    """A trajectory vertex holding per-derivative constraints."""

    dimension: int
    constraints: dict[int, np.ndarray] = field(default_factory=dict)

    def add_constraint(self, derivative: int, value) -> None:
        """Constrain ``derivative`` to ``value`` (a scalar is broadcast)."""
        arr = np.asarray(value, dtype=float)
        if arr.ndim == 0:
            arr = np.full(self.dimension, float(arr))
        arr = arr.reshape(-1)
        if arr.size != self.dimension:
            raise ValueError(
                f"constraint has size {arr.size}, vertex dimension is {self.dimension}"
            )
        self.constraints[int(derivative)] = arr.copy()

    def remove_constraint(self, derivative: int) -> None:
        self.constraints.pop(int(derivative), None)

    def get_constraint(self, derivative: int) -> np.ndarray:
        try:
            return self.constraints[int(derivative)].copy()
        except KeyError:
            raise KeyError(f"no constraint on derivative {int(derivative)}") from None

    def has_constraint(self, derivative: int) -> bool:
        return int(derivative) in self.constraints

    def make_start_or_end(self, value, up_to_derivative: int) -> None:
        """Fix the position to ``value`` and all derivatives up to the given one to zero."""
        self.add_constraint(DerivativeOrder.POSITION, value)
        for derivative in range(1, up_to_derivative + 1):
            self.add_constraint(derivative, 0.0)


@dataclass
class Segment:
    """One polynomial piece; ``coefficients`` has shape (dimension, n), ascending powers."""

    coefficients: np.ndarray
    time: float

    def __post_init__(self) -> None:
        self.coefficients = np.atleast_2d(np.array(self.coefficients, dtype=float))
        self.time = float(self.time)

    def _derivative_coefficients(self, derivative: int) -> np.ndarray:
        dimension, n = self.coefficients.shape
        if derivative == 0:
            return self.coefficients
        if derivative >= n:
            return np.zeros((dimension, 1))
        return npoly.polyder(self.coefficients, m=derivative, axis=1)

    def evaluate(self, t: float, derivative: int = 0) -> np.ndarray:
        """Value of the given derivative at local time ``t``."""
        coeffs = self._derivative_coefficients(int(derivative))
        return np.asarray(npoly.polyval(float(t), coeffs.T), dtype=float).reshape(-1)

    def _scaled(self, factor: float) -> Segment:
        powers = float(factor) ** -np.arange(self.coefficients.shape[1])
        return Segment(self.coefficients * powers, self.time * factor)

    def _max_magnitude(self, derivative: int) -> float:
        coeffs = self._derivative_coefficients(derivative)
        candidates = [0.0, self.time]
        if coeffs.shape[1] >= 2:
            next_coeffs = npoly.polyder(coeffs, axis=1)
            dot = np.zeros(1)
            for c_k, cd_k in zip(coeffs, next_coeffs):
                dot = npoly.polyadd(dot, npoly.polymul(c_k, cd_k))
            dot = npoly.polytrim(dot)
            if dot.size > 1:
                for root in npoly.polyroots(dot):
                    if abs(root.imag) <= 1e-9 * max(1.0, abs(root)) and (
                        0.0 < root.real < self.time
                    ):
                        candidates.append(float(root.real))
        return max(float(np.linalg.norm(self.evaluate(t, derivative))) for t in candidates)


@dataclass
class Trajectory:
    """A piecewise polynomial trajectory."""

    segments: list[Segment] = field(default_factory=list)

    def segment_times(self) -> list[float]:
        return [segment.time for segment in self.segments]

    def max_time(self) -> float:
        return float(sum(self.segment_times()))

    def _dimension(self) -> int:
        if not self.segments:
            raise ValueError("trajectory has no segments")
        return self.segments[0].coefficients.shape[0]

    def _locate(self, t: float) -> tuple[Segment, float]:
        if not self.segments:
            raise ValueError("trajectory has no segments")
        t = min(max(float(t), 0.0), self.max_time())
        start = 0.0
        for segment in self.segments[:-1]:
            if t < start + segment.time:
                return segment, t - start
            start += segment.time
        last = self.segments[-1]
        return last, min(max(t - start, 0.0), last.time)

    def evaluate(self, t: float, derivative: int = 0) -> np.ndarray:
        """Value of the given derivative at trajectory time ``t`` (clamped to range)."""
        segment, local_t = self._locate(t)
        return segment.evaluate(local_t, derivative)

    def evaluate_range(
        self, t_start: float, t_end: float, dt: float, derivative: int = 0
    ) -> tuple[np.ndarray, np.ndarray]:
        """Sample from ``t_start`` to ``t_end`` every ``dt``; returns (values, times)."""
        if dt <= 0.0:
            raise ValueError("dt must be positive")
        count = int(math.floor((t_end - t_start) / dt + 1e-9)) + 1 if t_end >= t_start else 0
        times = t_start + dt * np.arange(count)
        values = np.array([self.evaluate(t, derivative) for t in times]).reshape(
            count, self._dimension()
        )
        return values, times

    def vertex_at_time(self, t: float, max_derivative: int) -> Vertex:
        vertex = Vertex(self._dimension())
        for derivative in range(max_derivative + 1):
            vertex.add_constraint(derivative, self.evaluate(t, derivative))
        return vertex

    def start_vertex(self, max_derivative: int) -> Vertex:
        return self.vertex_at_time(0.0, max_derivative)

    def goal_vertex(self, max_derivative: int) -> Vertex:
        return self.vertex_at_time(self.max_time(), max_derivative)

    def compute_max_velocity_and_acceleration(self) -> tuple[float, float]:
        """Largest velocity and acceleration magnitudes over the whole trajectory."""
        if not self.segments:
            return 0.0, 0.0
        v_max = max(segment._max_magnitude(DerivativeOrder.VELOCITY) for segment in self.segments)
        a_max = max(
            segment._max_magnitude(DerivativeOrder.ACCELERATION) for segment in self.segments
        )
        return v_max, a_max

    def scale_segment_times_to_meet_constraints(self, v_max: float, a_max: float) -> bool:
        """Stretch time until velocity and acceleration limits hold; True on success."""
        for _ in range(_MAX_SCALING_ROUNDS):
            v_actual, a_actual = self.compute_max_velocity_and_acceleration()
            violation = max(1.0, v_actual / v_max, math.sqrt(a_actual / a_max))
            if violation <= 1.0 + _SCALING_TOLERANCE:
                return True
            self.segments = [segment._scaled(violation) for segment in self.segments]
        v_actual, a_actual = self.compute_max_velocity_and_acceleration()
        return (
            v_actual <= v_max * (1.0 + _SCALING_TOLERANCE)
            and a_actual <= a_max * (1.0 + _SCALING_TOLERANCE)
        )


def _to_3d(values: np.ndarray) -> np.ndarray:
    out = np.zeros(3)
    count = min(3, values.size)
    out[:count] = values[:count]
    return out


def sample_whole_trajectory(trajectory: Trajectory, dt: float) -> list[TrajectoryPoint]:
    """Sample the trajectory from start to end every ``dt`` seconds."""
    if dt <= 0.0:
        raise ValueError("dt must be positive")
    count = int(math.floor(trajectory.max_time() / dt + 1e-9)) + 1
    points = []
    for i in range(count):
        t = i * dt
        position = trajectory.evaluate(t, DerivativeOrder.POSITION)
        orientation = _identity_quaternion()
        if position.size == 4:
            yaw = position[3]
            orientation = np.array([math.cos(yaw / 2.0), 0.0, 0.0, math.sin(yaw / 2.0)])
        points.append(
            TrajectoryPoint(
                position=_to_3d(position),
                velocity=_to_3d(trajectory.evaluate(t, DerivativeOrder.VELOCITY)),
                acceleration=_to_3d(trajectory.evaluate(t, DerivativeOrder.ACCELERATION)),
                jerk=_to_3d(trajectory.evaluate(t, DerivativeOrder.JERK)),
                snap=_to_3d(trajectory.evaluate(t, DerivativeOrder.SNAP)),
                orientation=orientation,
                time_from_start_ns=round(t * 1e9),
            )
        )
    return points


def compute_time_velocity_ramp(start, goal, v_max: float, a_max: float) -> float:
    """Time to travel start to goal with a trapezoidal velocity profile."""
    distance = float(np.linalg.norm(_as_vector(start) - _as_vector(goal)))
    acc_time = v_max / a_max
    acc_distance = 0.5 * v_max * acc_time
    if distance < 2.0 * acc_distance:
        return 2.0 * math.sqrt(distance / a_max)
    return 2.0 * acc_time + (distance - 2.0 * acc_distance) / v_max


def estimate_segment_times_velocity_ramp(
    vertices: Sequence[Vertex] | Iterable[Vertex],
    v_max: float,
    a_max: float,
    time_factor: float = 1.0,
) -> list[float]:
    """Segment times between consecutive vertex positions using a velocity ramp."""
    vertices = list(vertices)
    return [
        time_factor
        * compute_time_velocity_ramp(
            first.get_constraint(DerivativeOrder.POSITION),
            second.get_constraint(DerivativeOrder.POSITION),
            v_max,
            a_max,
        )
        for first, second in zip(vertices, vertices[1:])
    ]