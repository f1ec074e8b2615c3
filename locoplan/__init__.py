"""Polynomial trajectories, collision-aware trajectory optimization and path queues."""

__version__ = "0.1.0"