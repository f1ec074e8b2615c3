import numpy as np
import pytest

from locoplan.path_queue import LocalPlannerConfig, PathQueue, WaypointTracker
from locoplan.trajectory import TrajectoryPoint

STEP_NS = 250_000_000


def make_path(count, offset=0):
    return [
        TrajectoryPoint(
            position=np.array([float(i + offset), 0.0, 0.0]),
            time_from_start_ns=(i + offset) * STEP_NS,
        )
        for i in range(count)
    ]


def times(points):
    return [p.time_from_start_ns for p in points]


def test_config_rejects_nonpositive_dt():
    with pytest.raises(ValueError):
        LocalPlannerConfig(command_publishing_dt=0.0)
    with pytest.raises(ValueError):
        LocalPlannerConfig(replan_dt=-1.0)


def test_config_keeps_given_values():
    config = LocalPlannerConfig(smoother_name="ramp", mpc_prediction_horizon=4)
    assert config.smoother_name == "ramp"
    assert config.mpc_prediction_horizon == 4


def test_empty_queue_gives_no_commands():
    queue = PathQueue()
    assert queue.next_commands(1.0, 0.25, 2) == []
    assert queue.index == 0
    assert queue.finished


def test_next_commands_sends_due_samples_plus_horizon():
    path = make_path(10)
    queue = PathQueue(path)
    commands = queue.next_commands(1.0, 0.25, 2)
    assert times(commands) == times(path[0:6])
    assert queue.index == 4
    commands = queue.next_commands(1.0, 0.25, 2)
    assert times(commands) == times(path[4:10])
    assert queue.index == 8


def test_next_commands_shortens_at_end_and_stops():
    path = make_path(10)
    queue = PathQueue(path)
    sent = []
    while not queue.finished:
        sent.append(queue.next_commands(1.0, 0.25, 0))
    assert [len(chunk) for chunk in sent] == [4, 4, 2]
    assert times([p for chunk in sent for p in chunk]) == times(path)
    assert queue.next_commands(1.0, 0.25, 0) == []


def test_next_commands_rejects_bad_sampling_dt():
    queue = PathQueue(make_path(3))
    with pytest.raises(ValueError):
        queue.next_commands(1.0, 0.0, 0)


def test_replace_resets_index_and_clear_empties():
    queue = PathQueue(make_path(10))
    queue.next_commands(1.0, 0.25, 0)
    new_path = make_path(5, offset=20)
    queue.replace(new_path)
    assert queue.index == 0
    assert times(queue.points) == times(new_path)
    queue.clear()
    assert len(queue) == 0
    assert queue.remaining() == []


def test_remaining_follows_index():
    path = make_path(10)
    queue = PathQueue(path)
    queue.next_commands(1.0, 0.25, 0)
    assert times(queue.remaining()) == times(path[4:])


def test_replan_start_index_is_capped():
    queue = PathQueue(make_path(10))
    queue.next_commands(1.0, 0.25, 0)
    assert queue.replan_start_index(0.5, 0.25) == 6
    assert queue.replan_start_index(100.0, 0.25) == len(queue)


def test_splice_replaces_tail():
    path = make_path(10)
    queue = PathQueue(path)
    tail = make_path(3, offset=50)
    queue.splice(6, tail)
    assert times(queue.points) == times(path[:6]) + times(tail)
    with pytest.raises(IndexError):
        queue.splice(20, tail)


def test_tracker_advances_and_clamps():
    waypoints = make_path(3)
    tracker = WaypointTracker()
    assert tracker.current() is None
    tracker.reset(waypoints)
    assert tracker.current() is waypoints[0]
    assert tracker.advance() is True
    assert tracker.advance() is True
    assert tracker.advance() is False
    assert tracker.index == 2
    assert tracker.current() is waypoints[2]


def test_tracker_finish_and_empty():
    tracker = WaypointTracker(make_path(3))
    tracker.finish()
    assert tracker.index == 3
    assert tracker.current() is None
    tracker.reset([])
    assert tracker.advance() is False
    assert tracker.index == -1


def test_tracker_insert_current():
    waypoints = make_path(3)
    tracker = WaypointTracker(waypoints)
    tracker.advance()
    detour = make_path(1, offset=40)[0]
    tracker.insert_current(detour)
    assert tracker.current() is detour
    assert len(tracker) == 4
    assert tracker.advance() is True
    assert tracker.current() is waypoints[1]
    tracker.finish()
    with pytest.raises(IndexError):
        tracker.insert_current(detour)