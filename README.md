# locoplan

Collision-aware polynomial trajectory optimization for micro aerial vehicles.

`locoplan` builds smooth piecewise polynomial trajectories and bends them
away from obstacles described by a distance function. It is a library; it has
no command-line interface.

## Modules

- `locoplan.trajectory`: the basic types.
  - `DerivativeOrder`: position, velocity, acceleration, jerk and snap.
  - `TrajectoryPoint`: a sampled state with time and orientation.
  - `Vertex`: per-derivative constraints.
  - `Segment` and `Trajectory`: piecewise polynomials. They support
    evaluation, range sampling, extraction of vertices, and computation of
    the maximum velocity and acceleration.
  - `Trajectory.scale_segment_times_to_meet_constraints`: stretches time
    until the velocity and acceleration limits hold.
  - Helpers: `sample_whole_trajectory`, `compute_time_velocity_ramp`,
    `estimate_segment_times_velocity_ramp` and `highest_derivative_from_n`.
- `locoplan.potential`: the obstacle potential `potential_cost` and its
  gradient `potential_gradient`.
- `locoplan.polynomial_optimization`: `PolynomialOptimization`, a
  minimum-derivative problem.
  - `solve_linear` computes the closed-form minimum.
  - The free end-point derivatives can be read and written directly.
  - `get_trajectory` returns the current solution as a `Trajectory`.
- `locoplan.loco`: `Loco` and `LocoConfig`, the optimizer.
  - It minimizes a weighted sum of four terms:
    - the smoothness cost;
    - the obstacle potential, integrated along the trajectory;
    - an optional soft goal;
    - optional soft waypoints.
  - Optimization runs over the free parameters with BFGS from
    `scipy.optimize`.
- `locoplan.path_queue`: building blocks for a local planner.
  - `LocalPlannerConfig`: the planner's settings.
  - `PathQueue`: a thread-safe queue of path samples. It hands out command
    chunks with `next_commands`.
  - `WaypointTracker`: an ordered list of waypoints and the index of the one
    currently tracked.

## Installation

```
pip install .
```

For the tests:

```
pip install ".[test]"
pytest
```

## Optimizing a trajectory around an obstacle

The distance-and-gradient function takes a position and returns a pair
`(distance, gradient)`:

```python
import numpy as np
from locoplan.loco import Loco

center = np.array([2.0, 2.0])

def distance_and_gradient(position):
    offset = position[:2] - center
    norm = np.linalg.norm(offset)
    return norm - 1.0, offset / norm

loco = Loco(2)
loco.set_distance_and_gradient_function(distance_and_gradient)
loco.setup_from_positions(np.array([0.0, 0.5]), np.array([3.5, 3.0]), 3, 10.0)

initial_cost = loco.get_cost()
final_cost = loco.solve_problem()
trajectory = loco.get_trajectory()
print(initial_cost, final_cost, trajectory.max_time())
```

If only a distance is available, use `set_distance_function(f)` with
`f(position) -> float`. The gradient is then estimated by central differences
with a step of `config.map_resolution`.

The optimizer can also start from an existing trajectory:

- `setup_from_trajectory` keeps the trajectory's segments.
- `setup_from_trajectory_and_resample` splits it into equal segments.

There are two kinds of soft cost:

- Soft waypoints are set with `set_waypoints`, a mapping from time to
  position, or with `set_waypoints_from_trajectory`.
- A soft goal is enabled with `LocoConfig(soft_goal_constraint=True)`.

## A minimum-jerk trajectory through waypoints

```python
import numpy as np
from locoplan.polynomial_optimization import PolynomialOptimization
from locoplan.trajectory import (
    DerivativeOrder, Vertex, estimate_segment_times_velocity_ramp,
    sample_whole_trajectory,
)

positions = [np.zeros(3), np.array([1.0, 0.0, 0.0]), np.array([1.0, 1.0, 0.0])]
vertices = [Vertex(3) for _ in positions]
vertices[0].make_start_or_end(positions[0], 4)
vertices[-1].make_start_or_end(positions[-1], 4)
vertices[1].add_constraint(DerivativeOrder.POSITION, positions[1])

times = estimate_segment_times_velocity_ramp(vertices, 1.0, 1.0, 1.2)
optimization = PolynomialOptimization(3)
optimization.setup_from_vertices(vertices, times, DerivativeOrder.JERK)
optimization.solve_linear()
trajectory = optimization.get_trajectory()
trajectory.scale_segment_times_to_meet_constraints(1.0, 1.0)
path = sample_whole_trajectory(trajectory, 0.1)
```

## Handing out commands

```python
from locoplan.path_queue import PathQueue

queue = PathQueue(path)
chunk = queue.next_commands(command_publishing_dt=1.0, sampling_dt=0.1,
                            prediction_horizon=30)
```

Each call returns the samples due within one publishing period, followed by
up to `prediction_horizon` more. It then advances past the samples that were
due. Once everything has been sent, it returns an empty list.

## What is not included

The package does not provide:

- smoothers that turn a list of waypoints into a sampled path in one call;
- a running local planner that tracks waypoints, replans on a timer and
  publishes commands.

`LocalPlannerConfig`, `PathQueue` and `WaypointTracker` hold the state that
such a planner needs. The planning loop itself is up to the caller.

There is no map storage either. Obstacles are known only through the distance
functions you pass to `Loco`.