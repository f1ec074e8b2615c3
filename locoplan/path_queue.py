"""Settings of the local planner, its queue of path samples and its waypoint list."""

from __future__ import annotations

import dataclasses
import math
import threading
from typing import Iterable, Sequence

from .trajectory import TrajectoryPoint


@dataclasses.dataclass
class LocalPlannerConfig:
    """Settings of the local planner."""

    verbose: bool = False
    global_frame_id: str = "map"
    local_frame_id: str = "odom"
    # Number of samples sent to the controller beyond the ones due now.
    mpc_prediction_horizon: int = 300
    command_publishing_dt: float = 1.0
    replan_dt: float = 1.0
    replan_lookahead_sec: float = 0.1
    avoid_collisions: bool = True
    # Whether to start publishing a new path at once or wait for start().
    autostart: bool = True
    # Whether to plan from the current odometry.
    plan_to_start: bool = True
    smoother_name: str = "loco"
    max_failures: int = 5

    def __post_init__(self) -> None:
        for name in ("command_publishing_dt", "replan_dt"):
            if getattr(self, name) <= 0.0:
                raise ValueError(f"{name} must be positive")
        if self.replan_lookahead_sec < 0.0:
            raise ValueError("replan_lookahead_sec must not be negative")
        if self.mpc_prediction_horizon < 0:
            raise ValueError("mpc_prediction_horizon must not be negative")
        if self.max_failures < 0:
            raise ValueError("max_failures must not be negative")


class PathQueue:
    """Sampled path being sent to the controller, with the index of the next sample.

    All operations take :attr:`lock`, a re-entrant lock that callers may also
    hold to make several operations atomic.
    """

    def __init__(self, path: Iterable[TrajectoryPoint] = ()) -> None:
        self.lock = threading.RLock()
        self._points: list[TrajectoryPoint] = list(path)
        self._index = 0

    def __len__(self) -> int:
        with self.lock:
            return len(self._points)

    @property
    def points(self) -> list[TrajectoryPoint]:
        """Copy of the whole queued path."""
        with self.lock:
            return list(self._points)

    @property
    def index(self) -> int:
        """Index of the first sample not yet sent."""
        with self.lock:
            return self._index

    @property
    def finished(self) -> bool:
        """True when the queue is empty or every sample has been sent."""
        with self.lock:
            return self._index >= len(self._points)

    def replace(self, path: Iterable[TrajectoryPoint]) -> None:
        """Swap in a new path and start sending it from its beginning."""
        with self.lock:
            self._points = list(path)
            self._index = 0

    def clear(self) -> None:
        """Drop the path."""
        with self.lock:
            self._points = []
            self._index = 0

    def remaining(self) -> list[TrajectoryPoint]:
        """Samples not yet sent."""
        with self.lock:
            return self._points[self._index :]

    def replan_start_index(self, lookahead_sec: float, sampling_dt: float) -> int:
        """Index ``lookahead_sec`` ahead of the next sample, capped at the queue length."""
        if sampling_dt <= 0.0:
            raise ValueError("sampling_dt must be positive")
        with self.lock:
            return min(self._index + int(lookahead_sec / sampling_dt), len(self._points))

    def splice(self, start_index: int, new_points: Sequence[TrajectoryPoint]) -> None:
        """Replace everything from ``start_index`` on with ``new_points``."""
        with self.lock:
            if not 0 <= start_index <= len(self._points):
                raise IndexError(
                    f"start index {start_index} outside a queue of {len(self._points)}"
                )
            self._points[start_index:] = list(new_points)

    def next_commands(
        self, command_publishing_dt: float, sampling_dt: float, prediction_horizon: int
    ) -> list[TrajectoryPoint]:
        """Samples to send now, and advance past the ones due in this period.

        The samples due within ``command_publishing_dt`` are followed by up to
        ``prediction_horizon`` more. Returns an empty list once the queue is done.
        """
        if sampling_dt <= 0.0:
            raise ValueError("sampling_dt must be positive")
        with self.lock:
            available = len(self._points) - self._index
            if available <= 0:
                return []
            number_to_publish = min(
                math.floor(command_publishing_dt / sampling_dt), available
            )
            start = self._index
            number_with_buffer = min(
                number_to_publish + prediction_horizon, len(self._points) - start
            )
            commands = self._points[start : start + number_with_buffer]
            self._index += number_to_publish
            return commands


class WaypointTracker:
    """Waypoints to visit in order and the one currently tracked.

    The index is -1 when nothing is tracked and equals the number of waypoints
    once all of them are done.
    """

    def __init__(self, waypoints: Iterable[TrajectoryPoint] = ()) -> None:
        self.waypoints: list[TrajectoryPoint] = list(waypoints)
        self.index = 0 if self.waypoints else -1

    def __len__(self) -> int:
        return len(self.waypoints)

    @property
    def active(self) -> bool:
        """True while the index points at a waypoint."""
        return 0 <= self.index < len(self.waypoints)

    def reset(self, waypoints: Iterable[TrajectoryPoint]) -> None:
        """Track a new list of waypoints from its first one."""
        self.waypoints = list(waypoints)
        self.index = 0

    def current(self) -> TrajectoryPoint | None:
        """The tracked waypoint, or None when the index is out of range."""
        return self.waypoints[self.index] if self.active else None

    def advance(self) -> bool:
        """Move to the next waypoint; False, staying on the last one, if there is none."""
        if self.index >= len(self.waypoints) - 1:
            self.index = len(self.waypoints) - 1
            return False
        self.index += 1
        return True

    def finish(self) -> None:
        """Mark every waypoint as done."""
        self.index = len(self.waypoints)

    def insert_current(self, waypoint: TrajectoryPoint) -> None:
        """Insert ``waypoint`` before the tracked one and track it instead."""
        if not self.active:
            raise IndexError("no waypoint is being tracked")
        self.waypoints.insert(self.index, waypoint)