"""Local continuous-time trajectory optimization around obstacles.

The optimizer keeps the start (and optionally the goal) of a piecewise
polynomial fixed and moves the free end-point derivatives of the segments to
trade smoothness against an obstacle potential sampled along the trajectory.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Mapping, Sequence

import numpy as np
from scipy.optimize import minimize

from .polynomial_optimization import PolynomialOptimization
from .potential import potential_cost, potential_gradient
from .trajectory import (
    DerivativeOrder,
    Trajectory,
    TrajectoryPoint,
    Vertex,
    highest_derivative_from_n,
)

logger = logging.getLogger(__name__)

DistanceFunction = Callable[[np.ndarray], float]
DistanceAndGradientFunction = Callable[[np.ndarray], "tuple[float, np.ndarray]"]


@dataclass
class LocoConfig:
    """Weights and settings of the optimization."""

    derivative_to_optimize: int = DerivativeOrder.JERK
    epsilon: float = 0.5
    robot_radius: float = 0.5
    soft_goal_constraint: bool = False
    w_d: float = 0.1  # Smoothness cost weight.
    w_c: float = 10.0  # Collision cost weight.
    w_g: float = 2.5  # Soft goal cost weight.
    w_w: float = 1.0  # Waypoint cost weight.
    min_collision_sampling_dt: float = 0.1
    map_resolution: float = 0.1
    verbose: bool = False


class Loco:
    """Collision-aware trajectory optimizer over ``n``-coefficient polynomials."""

    def __init__(self, dimension: int, config: LocoConfig | None = None, n: int = 10) -> None:
        if n % 2:
            raise ValueError("the number of coefficients has to be even")
        self.dimension = int(dimension)
        self.n = int(n)
        self.config = config if config is not None else LocoConfig()
        self._poly = PolynomialOptimization(self.dimension, self.n)
        self._highest_derivative = highest_derivative_from_n(self.n)
        self._distance_function: DistanceFunction | None = None
        self._distance_and_gradient_function: DistanceAndGradientFunction | None = None
        self._goal_position = np.zeros(self.dimension)
        self._waypoints: dict[float, np.ndarray] = {}
        self._ready = False
        self._num_free = 0
        self._num_fixed = 0
        self._r = np.zeros((0, 0))
        self._v = np.zeros((0, 0))
        self._l = np.zeros((0, 0))

    # Problem size.

    @property
    def num_free(self) -> int:
        """Number of free parameters per dimension."""
        return self._num_free

    @property
    def num_fixed(self) -> int:
        """Number of fixed constraints per dimension."""
        return self._num_fixed

    # Setup.

    def setup_from_positions(self, start, goal, num_segments: int, total_time: float) -> None:
        """Plan from rest at ``start`` to rest at ``goal`` over ``num_segments`` segments."""
        vertices = [Vertex(self.dimension) for _ in range(int(num_segments) + 1)]
        vertices[0].make_start_or_end(0.0, self._highest_derivative)
        vertices[0].add_constraint(DerivativeOrder.POSITION, start)
        vertices[-1].make_start_or_end(0.0, self._highest_derivative)
        vertices[-1].add_constraint(DerivativeOrder.POSITION, goal)
        self.setup_from_vertices(total_time, vertices)

    def setup_from_trajectory_points(
        self,
        start_point: TrajectoryPoint,
        goal_point: TrajectoryPoint,
        num_segments: int,
        total_time: float,
    ) -> None:
        """Plan between two states, keeping their velocity and acceleration."""
        vertices = [Vertex(self.dimension) for _ in range(int(num_segments) + 1)]
        for vertex, point in ((vertices[0], start_point), (vertices[-1], goal_point)):
            vertex.make_start_or_end(0.0, self._highest_derivative)
            vertex.add_constraint(DerivativeOrder.POSITION, point.position)
            vertex.add_constraint(DerivativeOrder.VELOCITY, point.velocity)
            vertex.add_constraint(DerivativeOrder.ACCELERATION, point.acceleration)
        self.setup_from_vertices(total_time, vertices)

    def setup_from_vertices(self, total_time: float, vertices: Sequence[Vertex]) -> None:
        """Set up from vertices with equal segment times; the goal vertex may be modified."""
        vertices = list(vertices)
        if len(vertices) < 2:
            raise ValueError("at least two vertices are needed")
        times = [float(total_time) / (len(vertices) - 1)] * (len(vertices) - 1)
        self._poly.setup_from_vertices(vertices, times, self.config.derivative_to_optimize)
        self._poly.solve_linear()

        if self.config.soft_goal_constraint:
            self._goal_position = vertices[-1].get_constraint(DerivativeOrder.POSITION)
            coefficients = self._poly.coefficients()
            vertices[-1].remove_constraint(DerivativeOrder.POSITION)
            self._poly.setup_from_vertices(vertices, times, self.config.derivative_to_optimize)
            self._pack_free_from_coefficients(coefficients)

        self._setup_problem()

    def setup_from_trajectory(self, trajectory: Trajectory) -> None:
        """Use ``trajectory`` as the initial solution, keeping its segments."""
        times = trajectory.segment_times()
        if not times:
            raise ValueError("trajectory has no segments")
        vertices = [trajectory.start_vertex(self._highest_derivative)]
        vertices.extend(Vertex(self.dimension) for _ in times[:-1])
        vertices.append(trajectory.goal_vertex(self._highest_derivative))

        coefficients = self._coefficients_from_trajectory(trajectory)
        if self.config.soft_goal_constraint:
            self._goal_position = vertices[-1].get_constraint(DerivativeOrder.POSITION)
            vertices[-1].remove_constraint(DerivativeOrder.POSITION)

        self._poly.setup_from_vertices(vertices, times, self.config.derivative_to_optimize)
        self._pack_free_from_coefficients(coefficients)
        self._setup_problem()

    def setup_from_trajectory_and_resample(
        self, trajectory: Trajectory, num_segments: int
    ) -> None:
        """Use ``trajectory`` as the initial solution, split into equal segments."""
        num_segments = int(num_segments)
        if num_segments < 1:
            raise ValueError("num_segments must be at least 1")
        highest = self._highest_derivative
        total_time = trajectory.max_time()
        times = [total_time / num_segments] * num_segments

        vertices = [trajectory.start_vertex(highest)]
        time_so_far = 0.0
        for segment_time in times[:-1]:
            time_so_far += segment_time
            vertices.append(trajectory.vertex_at_time(time_so_far, highest))
        vertices.append(trajectory.goal_vertex(highest))

        self._poly.setup_from_vertices(vertices, times, self.config.derivative_to_optimize)
        self._poly.solve_linear()
        coefficients = self._poly.coefficients()

        for vertex in vertices[1:-1]:
            for derivative in range(highest + 1):
                vertex.remove_constraint(derivative)

        if self.config.soft_goal_constraint:
            self._goal_position = vertices[-1].get_constraint(DerivativeOrder.POSITION)
            vertices[-1].remove_constraint(DerivativeOrder.POSITION)

        self._poly.setup_from_vertices(vertices, times, self.config.derivative_to_optimize)
        self._pack_free_from_coefficients(coefficients)
        self._setup_problem()

    def set_waypoints(self, waypoints: Mapping[float, Iterable[float]]) -> None:
        """Soft waypoint costs, mapping trajectory time to position."""
        self._waypoints = {
            float(t): np.asarray(position, dtype=float).reshape(-1)
            for t, position in waypoints.items()
        }

    def set_waypoints_from_trajectory(self, trajectory: Trajectory) -> None:
        """Soft waypoints at the inner segment boundaries of ``trajectory``."""
        self._waypoints = {}
        time_so_far = 0.0
        for segment_time in trajectory.segment_times()[:-1]:
            time_so_far += segment_time
            self._waypoints[time_so_far] = trajectory.evaluate(time_so_far)

    def set_distance_function(self, function: DistanceFunction) -> None:
        """Map distance lookup; gradients are taken numerically at map resolution."""
        self._distance_function = function
        self._distance_and_gradient_function = None

    def set_distance_and_gradient_function(self, function: DistanceAndGradientFunction) -> None:
        """Map lookup returning ``(distance, gradient)``."""
        self._distance_and_gradient_function = function

    # Solving.

    def solve_problem(self) -> float:
        """Optimize the free parameters in place; returns the final cost."""
        self._require_setup()
        if self._num_free == 0:
            return self.get_cost()

        def objective(parameters: np.ndarray) -> tuple[float, np.ndarray]:
            self.set_parameter_vector(parameters)
            cost, gradients = self.compute_total_cost_and_gradients(True)
            return cost, np.concatenate(gradients)

        result = minimize(
            objective,
            self.get_parameter_vector(),
            jac=True,
            method="BFGS",
            options={"maxiter": 200, "gtol": 1e-6},
        )
        self.set_parameter_vector(result.x)
        if self.config.verbose:
            logger.info(
                "LOCO finished after %d iterations: %s, cost %f",
                result.nit,
                result.message,
                result.fun,
            )
        return self.get_cost()

    def get_trajectory(self) -> Trajectory:
        self._require_setup()
        return self._poly.get_trajectory()

    def get_cost(self) -> float:
        """Total weighted cost of the current solution."""
        return self.compute_total_cost_and_gradients(False)[0]

    def sampled_trajectory_table(self, dt: float) -> np.ndarray:
        """Rows of ``[t, p_1, ..., p_K]`` sampled every ``dt``."""
        trajectory = self.get_trajectory()
        values, times = trajectory.evaluate_range(0.0, trajectory.max_time(), dt)
        return np.column_stack([times, values])

    # Free parameters.

    def set_free_derivatives(self, d_p: Sequence[Iterable[float]]) -> None:
        self._poly.set_free_constraints(d_p)

    def get_free_derivatives(self) -> list[np.ndarray]:
        return self._poly.get_free_constraints()

    def set_parameter_vector(self, parameters) -> None:
        """Set all free parameters from one flat vector, dimension after dimension."""
        parameters = np.asarray(parameters, dtype=float).reshape(-1)
        expected = self.dimension * self._num_free
        if parameters.size != expected:
            raise ValueError(f"expected {expected} parameters, got {parameters.size}")
        self._poly.set_free_constraints(parameters.reshape(self.dimension, self._num_free))

    def get_parameter_vector(self) -> np.ndarray:
        """All free parameters as one flat vector, dimension after dimension."""
        free = self._poly.get_free_constraints()
        return np.concatenate(free) if free else np.zeros(0)

    # Costs.

    def compute_total_cost_and_gradients(
        self, with_gradient: bool = True
    ) -> tuple[float, list[np.ndarray] | None]:
        """Weighted sum of all active costs and, optionally, its gradient per dimension."""
        config = self.config
        j_d, grad_d = self.compute_derivative_cost_and_gradient(with_gradient)
        j_c, grad_c = self.compute_collision_cost_and_gradient(with_gradient)
        j_g, grad_g = 0.0, None
        if config.soft_goal_constraint:
            j_g, grad_g = self.compute_goal_cost_and_gradient(with_gradient)
        j_w, grad_w = 0.0, None
        if self._waypoints:
            j_w, grad_w = self.compute_waypoint_cost_and_gradient(with_gradient)

        cost = config.w_d * j_d + config.w_c * j_c + config.w_g * j_g + config.w_w * j_w
        if not with_gradient:
            return cost, None

        gradients = []
        for k in range(self.dimension):
            gradient = config.w_d * grad_d[k] + config.w_c * grad_c[k]
            if grad_g:
                gradient = gradient + config.w_g * grad_g[k]
            if grad_w:
                gradient = gradient + config.w_w * grad_w[k]
            gradients.append(gradient)
        return cost, gradients

    def compute_derivative_cost_and_gradient(
        self, with_gradient: bool = True
    ) -> tuple[float, list[np.ndarray] | None]:
        """Smoothness cost and its gradient with respect to the free parameters."""
        self._require_setup()
        nf = self._num_fixed
        r_ff = self._r[:nf, :nf]
        r_pf = self._r[nf:, :nf]
        r_pp = self._r[nf:, nf:]
        fixed = self._poly.get_fixed_constraints()
        free = self._poly.get_free_constraints()

        cost = 0.0
        gradients = []
        for d_f, d_p in zip(fixed, free):
            cost += float(d_f @ r_ff @ d_f + 2.0 * (d_p @ r_pf @ d_f) + d_p @ r_pp @ d_p)
            gradients.append(2.0 * (r_pf @ d_f) + 2.0 * (r_pp @ d_p))
        return cost, (gradients if with_gradient else None)

    def compute_collision_cost_and_gradient(
        self, with_gradient: bool = True
    ) -> tuple[float, list[np.ndarray] | None]:
        """Obstacle potential integrated over arc length along the trajectory."""
        self._require_setup()
        n = self.n
        nf = self._num_fixed
        coefficients = self._coefficients()
        segment_times = self._poly.segment_times
        l_pp = self._l[:, nf:]
        v_block = self._v[:n, :n]

        dt = self.config.min_collision_sampling_dt
        distance_limit = self.config.map_resolution
        if dt <= 0.0:
            raise ValueError("min_collision_sampling_dt must be positive")

        total = 0.0
        grad_c = np.zeros((self.dimension, self._num_free))
        last_position = np.zeros(self.dimension)
        time_int = -1.0
        distance_int = 0.0

        for index, segment_time in enumerate(segment_times):
            rows = slice(index * n, (index + 1) * n)
            segment_coefficients = coefficients[:, rows]
            l_segment = l_pp[rows]
            v_rows = self._v[rows]

            sample_times = []
            t = 0.0
            while t < segment_time:
                sample_times.append(t)
                t += dt

            for sample in sample_times:
                t_seg = self.t_vector(sample)
                position = segment_coefficients @ t_seg
                velocity = segment_coefficients @ (t_seg @ v_block)

                if time_int < 0.0:
                    time_int = 0.0
                    last_position = position
                    continue
                time_int += dt
                distance_int += float(np.linalg.norm(position - last_position))
                last_position = position
                if distance_int < distance_limit:
                    continue

                potential, potential_grad = self.compute_potential_cost_and_gradient(
                    position, with_gradient
                )
                speed = float(np.linalg.norm(velocity))
                cost = potential * speed * time_int
                total += cost

                if (
                    with_gradient
                    and speed > 1e-6
                    and (cost > 0.0 or np.linalg.norm(potential_grad) > 0.0)
                ):
                    t_l = t_seg @ l_segment
                    t_v_l = (t_seg @ v_rows) @ l_pp
                    grad_c += np.outer(speed * time_int * potential_grad, t_l)
                    grad_c += np.outer(time_int * potential * velocity / speed, t_v_l)

                distance_int = 0.0
                time_int = 0.0
                last_position = position
            time_int += -dt + (segment_time - t)

        gradients = [row.copy() for row in grad_c] if with_gradient else None
        return total, gradients

    def compute_goal_cost_and_gradient(
        self, with_gradient: bool = True
    ) -> tuple[float, list[np.ndarray] | None]:
        """Distance of the trajectory end from the soft goal."""
        self._require_setup()
        total_time = float(sum(self._poly.segment_times))
        return self.compute_position_soft_cost_and_gradient(
            total_time, self._goal_position, with_gradient
        )

    def compute_waypoint_cost_and_gradient(
        self, with_gradient: bool = True
    ) -> tuple[float, list[np.ndarray] | None]:
        """Sum of distances from the soft waypoints."""
        self._require_setup()
        gradients = [np.zeros(self._num_free) for _ in range(self.dimension)]
        total = 0.0
        for t, position in self._waypoints.items():
            cost, waypoint_gradients = self.compute_position_soft_cost_and_gradient(
                t, position, with_gradient
            )
            total += cost
            if with_gradient:
                gradients = [g + w for g, w in zip(gradients, waypoint_gradients)]
        return total, (gradients if with_gradient else None)

    def compute_position_soft_cost_and_gradient(
        self, t: float, position, with_gradient: bool = True
    ) -> tuple[float, list[np.ndarray] | None]:
        """Distance between the trajectory at time ``t`` and ``position``."""
        self._require_setup()
        n = self.n
        position = np.asarray(position, dtype=float).reshape(-1)
        segment_times = self._poly.segment_times

        accumulated = 0.0
        index = len(segment_times) - 1
        for candidate, segment_time in enumerate(segment_times):
            accumulated += segment_time
            if accumulated > t:
                index = candidate
                break
        segment_start = sum(segment_times[:index])
        local_time = t - segment_start

        rows = slice(index * n, (index + 1) * n)
        t_seg = self.t_vector(local_time)
        actual = self._coefficients()[:, rows] @ t_seg
        difference = actual - position
        cost = float(np.linalg.norm(difference))

        if not with_gradient:
            return cost, None
        t_l = t_seg @ self._l[rows, self._num_fixed :]
        if cost == 0.0:
            return cost, [np.zeros(self._num_free) for _ in range(self.dimension)]
        return cost, [difference[k] / cost * t_l for k in range(self.dimension)]

    def compute_potential_cost_and_gradient(
        self, position, with_gradient: bool = True
    ) -> tuple[float, np.ndarray | None]:
        """Obstacle potential at ``position`` and, optionally, its spatial gradient."""
        position = np.asarray(position, dtype=float).reshape(-1)
        distance, distance_gradient = self._distance_and_gradient(position, with_gradient)
        cost = potential_cost(distance, self.config.robot_radius, self.config.epsilon)
        if not with_gradient:
            return cost, None
        gradient = potential_gradient(
            distance, distance_gradient, self.config.robot_radius, self.config.epsilon
        )
        return cost, gradient

    def t_vector(self, t: float) -> np.ndarray:
        """Powers ``[1, t, t^2, ..., t^(n-1)]``."""
        return float(t) ** np.arange(self.n, dtype=float)

    # Internals.

    def _require_setup(self) -> None:
        if not self._ready:
            raise RuntimeError("the problem has not been set up")

    def _setup_problem(self) -> None:
        poly = self._poly
        self._num_free = poly.num_free
        self._num_fixed = poly.num_fixed
        self._r = poly.r_matrix
        size = poly.num_segments * self.n
        v = np.zeros((size, size))
        offsets = np.arange(size - 1)
        v[offsets, offsets + 1] = (offsets + 1) % self.n
        self._v = v
        self._l = poly.a_inverse @ poly.m_matrix
        self._ready = True

    def _coefficients(self) -> np.ndarray:
        fixed = np.array(self._poly.get_fixed_constraints(), dtype=float).reshape(
            self.dimension, self._num_fixed
        )
        free = np.array(self._poly.get_free_constraints(), dtype=float).reshape(
            self.dimension, self._num_free
        )
        return (self._l @ np.hstack([fixed, free]).T).T

    def _coefficients_from_trajectory(self, trajectory: Trajectory) -> np.ndarray:
        blocks = []
        for segment in trajectory.segments:
            coefficients = segment.coefficients
            if coefficients.shape[0] != self.dimension:
                raise ValueError(
                    f"trajectory dimension {coefficients.shape[0]} does not match "
                    f"{self.dimension}"
                )
            if coefficients.shape[1] > self.n:
                raise ValueError(
                    f"segments have {coefficients.shape[1]} coefficients, at most {self.n} allowed"
                )
            padded = np.zeros((self.dimension, self.n))
            padded[:, : coefficients.shape[1]] = coefficients
            blocks.append(padded)
        return np.hstack(blocks)

    def _pack_free_from_coefficients(self, coefficients: np.ndarray) -> None:
        poly = self._poly
        all_constraints = (poly.m_pinv @ poly.a_matrix @ coefficients.T).T
        start = all_constraints.shape[1] - poly.num_free
        poly.set_free_constraints(list(all_constraints[:, start:]))

    def _distance_and_gradient(
        self, position: np.ndarray, with_gradient: bool
    ) -> tuple[float, np.ndarray | None]:
        if self._distance_and_gradient_function is not None:
            distance, gradient = self._distance_and_gradient_function(position)
            if not with_gradient:
                return float(distance), None
            return float(distance), np.asarray(gradient, dtype=float).reshape(-1)
        if self._distance_function is None:
            raise RuntimeError("no distance function has been set")
        distance = float(self._distance_function(position))
        if not with_gradient:
            return distance, None
        step = self.config.map_resolution
        gradient = np.zeros(position.size)
        for k in range(position.size):
            increment = np.zeros(position.size)
            increment[k] = step
            left = float(self._distance_function(position - increment))
            right = float(self._distance_function(position + increment))
            gradient[k] = (right - left) / (2.0 * step)
        return distance, gradient