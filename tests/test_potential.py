import numpy as np
import pytest

from locoplan.potential import potential_cost, potential_gradient

RADIUS = 0.5
EPSILON = 0.5


def test_zero_beyond_epsilon():
    assert potential_cost(RADIUS + EPSILON + 0.01, RADIUS, EPSILON) == 0.0
    assert potential_cost(RADIUS + EPSILON, RADIUS, EPSILON) == pytest.approx(0.0)


def test_continuous_at_robot_radius():
    at_radius = potential_cost(RADIUS, RADIUS, EPSILON)
    assert at_radius == pytest.approx(0.5 * EPSILON)
    assert potential_cost(RADIUS - 1e-9, RADIUS, EPSILON) == pytest.approx(at_radius)


def test_linear_inside_obstacle():
    base = potential_cost(RADIUS, RADIUS, EPSILON)
    for depth in (0.1, 0.4, 2.0):
        assert potential_cost(RADIUS - depth, RADIUS, EPSILON) - base == pytest.approx(depth)


def test_monotone_non_increasing_and_non_negative():
    distances = np.linspace(-1.0, 2.0, 301)
    costs = [potential_cost(d, RADIUS, EPSILON) for d in distances]
    assert all(c >= 0.0 for c in costs)
    assert all(a >= b - 1e-12 for a, b in zip(costs, costs[1:]))


@pytest.mark.parametrize("distance", [-0.3, 0.2, 0.6, 0.75, 0.9, 1.5])
def test_gradient_matches_finite_difference(distance):
    direction = np.array([0.6, -0.8])
    h = 1e-6
    slope = (
        potential_cost(distance + h, RADIUS, EPSILON)
        - potential_cost(distance - h, RADIUS, EPSILON)
    ) / (2.0 * h)
    gradient = potential_gradient(distance, direction, RADIUS, EPSILON)
    np.testing.assert_allclose(gradient, slope * direction, atol=1e-5)


def test_gradient_inside_is_negated_distance_gradient():
    direction = np.array([1.0, 2.0, -3.0])
    np.testing.assert_allclose(
        potential_gradient(RADIUS - 0.2, direction, RADIUS, EPSILON), -direction
    )


def test_gradient_zero_beyond_epsilon_keeps_shape():
    direction = np.array([0.3, 0.4, 0.5])
    gradient = potential_gradient(RADIUS + EPSILON + 1.0, direction, RADIUS, EPSILON)
    assert gradient.shape == direction.shape
    np.testing.assert_array_equal(gradient, np.zeros(3))