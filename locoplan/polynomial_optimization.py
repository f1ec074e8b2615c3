"""Linear minimum-derivative polynomial trajectory optimization."""

from __future__ import annotations

import math
from typing import Iterable, Sequence

import numpy as np
from scipy.linalg import block_diag

from .trajectory import DerivativeOrder, Segment, Trajectory, Vertex


def _segment_mapping(n: int, time: float) -> np.ndarray:
    """Map segment coefficients to its end-point derivatives (start half, end half)."""
    half = n // 2
    mapping = np.zeros((n, n))
    for derivative in range(half):
        mapping[derivative, derivative] = math.factorial(derivative)
        for power in range(derivative, n):
            mapping[half + derivative, power] = math.perm(power, derivative) * time ** (
                power - derivative
            )
    return mapping


def _segment_cost(n: int, time: float, derivative: int) -> np.ndarray:
    """Hessian of the integral of the squared ``derivative`` over one segment."""
    cost = np.zeros((n, n))
    for i in range(derivative, n):
        for j in range(derivative, n):
            power = i + j - 2 * derivative + 1
            cost[i, j] = (
                math.perm(i, derivative) * math.perm(j, derivative) * time**power / power
            )
    return cost


class PolynomialOptimization:
    """Piecewise polynomial optimization with fixed and free end-point derivatives.

    Each segment has ``n`` coefficients per dimension. Constraints are ordered
    with the fixed ones first (vertex by vertex, derivative by derivative), then
    the free ones in the same order.
    """

    def __init__(self, dimension: int, n: int = 10) -> None:
        if dimension < 1:
            raise ValueError("dimension must be at least 1")
        if n < 2 or n % 2:
            raise ValueError("the number of coefficients must be even and at least 2")
        self.dimension = int(dimension)
        self.n = int(n)
        self._ready = False
        self._segment_times: list[float] = []
        self._num_fixed = 0
        self._num_free = 0
        self._a = np.zeros((0, 0))
        self._a_inv = np.zeros((0, 0))
        self._m = np.zeros((0, 0))
        self._m_pinv = np.zeros((0, 0))
        self._q = np.zeros((0, 0))
        self._r = np.zeros((0, 0))
        self._fixed = np.zeros((self.dimension, 0))
        self._free = np.zeros((self.dimension, 0))

    # Read-only views of the problem matrices.

    @property
    def segment_times(self) -> list[float]:
        return list(self._segment_times)

    @property
    def num_segments(self) -> int:
        return len(self._segment_times)

    @property
    def num_fixed(self) -> int:
        return self._num_fixed

    @property
    def num_free(self) -> int:
        return self._num_free

    @property
    def a_matrix(self) -> np.ndarray:
        return self._a.copy()

    @property
    def a_inverse(self) -> np.ndarray:
        return self._a_inv.copy()

    @property
    def m_matrix(self) -> np.ndarray:
        return self._m.copy()

    @property
    def m_pinv(self) -> np.ndarray:
        return self._m_pinv.copy()

    @property
    def q_matrix(self) -> np.ndarray:
        return self._q.copy()

    @property
    def r_matrix(self) -> np.ndarray:
        return self._r.copy()

    def _require_setup(self) -> None:
        if not self._ready:
            raise RuntimeError("the optimization has not been set up from vertices")

    def setup_from_vertices(
        self,
        vertices: Sequence[Vertex] | Iterable[Vertex],
        segment_times: Sequence[float] | Iterable[float],
        derivative_to_optimize: int = DerivativeOrder.JERK,
    ) -> None:
        """Build the constraint and cost matrices; free constraints start at zero."""
        vertices = list(vertices)
        times = [float(t) for t in segment_times]
        n = self.n
        half = n // 2
        if len(vertices) < 2:
            raise ValueError("at least two vertices are needed")
        if len(times) != len(vertices) - 1:
            raise ValueError(
                f"{len(vertices)} vertices need {len(vertices) - 1} segment times, "
                f"got {len(times)}"
            )
        if any(t <= 0.0 for t in times):
            raise ValueError("segment times must be positive")
        derivative_to_optimize = int(derivative_to_optimize)
        if not 0 <= derivative_to_optimize < n:
            raise ValueError(f"cannot optimize derivative {derivative_to_optimize} with n={n}")
        for vertex in vertices:
            if vertex.dimension != self.dimension:
                raise ValueError(
                    f"vertex dimension {vertex.dimension} does not match {self.dimension}"
                )
            for derivative in vertex.constraints:
                if not 0 <= derivative < half:
                    raise ValueError(
                        f"derivative {derivative} cannot be constrained with n={n}"
                    )

        fixed_keys = []
        free_keys = []
        for index, vertex in enumerate(vertices):
            for derivative in range(half):
                key = (index, derivative)
                (fixed_keys if vertex.has_constraint(derivative) else free_keys).append(key)
        order = {key: position for position, key in enumerate(fixed_keys + free_keys)}

        num_segments = len(times)
        mapping = np.zeros((n * num_segments, (num_segments + 1) * half))
        for segment in range(num_segments):
            for derivative in range(half):
                mapping[segment * n + derivative, order[(segment, derivative)]] = 1.0
                mapping[segment * n + half + derivative, order[(segment + 1, derivative)]] = 1.0

        blocks = [_segment_mapping(n, t) for t in times]
        self._a = block_diag(*blocks)
        self._a_inv = block_diag(*(np.linalg.inv(block) for block in blocks))
        self._q = block_diag(*(_segment_cost(n, t, derivative_to_optimize) for t in times))
        self._m = mapping
        self._m_pinv = np.linalg.pinv(mapping)
        r = mapping.T @ self._a_inv.T @ self._q @ self._a_inv @ mapping
        self._r = 0.5 * (r + r.T)

        self._segment_times = times
        self._num_fixed = len(fixed_keys)
        self._num_free = len(free_keys)
        self._fixed = np.array(
            [vertices[index].get_constraint(derivative) for index, derivative in fixed_keys],
            dtype=float,
        ).reshape(self._num_fixed, self.dimension).T
        self._free = np.zeros((self.dimension, self._num_free))
        self._ready = True

    def solve_linear(self) -> None:
        """Set the free constraints to the unconstrained cost minimum."""
        self._require_setup()
        if self._num_free == 0:
            return
        nf = self._num_fixed
        r_pf = self._r[nf:, :nf]
        r_pp = self._r[nf:, nf:]
        try:
            solution = np.linalg.solve(r_pp, -(r_pf @ self._fixed.T))
        except np.linalg.LinAlgError as exc:
            raise ValueError("the optimization problem is singular") from exc
        self._free = solution.T.copy()

    def get_free_constraints(self) -> list[np.ndarray]:
        """Free constraint values, one vector per dimension."""
        self._require_setup()
        return [row.copy() for row in self._free]

    def set_free_constraints(self, d_p) -> None:
        """Replace the free constraint values, one vector per dimension."""
        self._require_setup()
        values = np.array([np.asarray(row, dtype=float).reshape(-1) for row in d_p])
        if values.shape != (self.dimension, self._num_free):
            raise ValueError(
                f"free constraints must have shape {(self.dimension, self._num_free)}, "
                f"got {values.shape}"
            )
        self._free = values

    def get_fixed_constraints(self) -> list[np.ndarray]:
        """Fixed constraint values, one vector per dimension."""
        self._require_setup()
        return [row.copy() for row in self._fixed]

    def coefficients(self) -> np.ndarray:
        """All polynomial coefficients, shape (dimension, n * num_segments)."""
        self._require_setup()
        constraints = np.hstack([self._fixed, self._free])
        return (self._a_inv @ self._m @ constraints.T).T

    def get_trajectory(self) -> Trajectory:
        """The current solution as a piecewise polynomial trajectory."""
        coefficients = self.coefficients()
        n = self.n
        return Trajectory(
            [
                Segment(coefficients[:, index * n : (index + 1) * n], time)
                for index, time in enumerate(self._segment_times)
            ]
        )