"""Obstacle potential used as the collision cost."""

from __future__ import annotations

import numpy as np


def potential_cost(distance: float, robot_radius: float, epsilon: float) -> float:
    """Cost of being ``distance`` from the nearest obstacle.

    Linear inside the robot radius, quadratic within ``epsilon`` of it, zero beyond.
    """
    d = distance - robot_radius
    if d < 0.0:
        return -d + 0.5 * epsilon
    if d <= epsilon:
        return 0.5 / epsilon * (d - epsilon) ** 2
    return 0.0


def potential_gradient(
    distance: float, distance_gradient, robot_radius: float, epsilon: float
) -> np.ndarray:
    """Gradient of :func:`potential_cost` given the gradient of the distance field."""
    gradient = np.asarray(distance_gradient, dtype=float)
    d = distance - robot_radius
    if d < 0.0:
        return -gradient
    if d <= epsilon:
        return (d - epsilon) / epsilon * gradient
    return np.zeros_like(gradient)