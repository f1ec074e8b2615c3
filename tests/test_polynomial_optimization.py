import numpy as np
import pytest

from locoplan.polynomial_optimization import PolynomialOptimization
from locoplan.trajectory import DerivativeOrder, Vertex

N = 10
HIGHEST = N // 2 - 1


def _endpoint(position):
    vertex = Vertex(len(position))
    vertex.make_start_or_end(0.0, HIGHEST)
    vertex.add_constraint(DerivativeOrder.POSITION, position)
    return vertex


def _middle(position=None, dimension=2):
    vertex = Vertex(dimension)
    if position is not None:
        vertex.add_constraint(DerivativeOrder.POSITION, position)
    return vertex


@pytest.fixture
def three_vertex_problem():
    opt = PolynomialOptimization(2, N)
    vertices = [_endpoint([0.0, 0.0]), _middle([1.0, 2.0]), _endpoint([3.0, 1.0])]
    opt.setup_from_vertices(vertices, [1.0, 1.5], DerivativeOrder.JERK)
    opt.solve_linear()
    return opt


def test_constraint_counts(three_vertex_problem):
    opt = three_vertex_problem
    assert opt.num_segments == 2
    assert opt.num_fixed + opt.num_free == 3 * (N // 2)
    assert opt.num_free == HIGHEST
    assert opt.coefficients().shape == (2, 2 * N)


def test_trajectory_passes_through_vertices(three_vertex_problem):
    trajectory = three_vertex_problem.get_trajectory()
    assert np.allclose(trajectory.evaluate(0.0), [0.0, 0.0], atol=1e-8)
    assert np.allclose(trajectory.evaluate(1.0), [1.0, 2.0], atol=1e-8)
    assert np.allclose(trajectory.evaluate(2.5), [3.0, 1.0], atol=1e-8)
    for derivative in range(1, HIGHEST + 1):
        assert np.allclose(trajectory.evaluate(0.0, derivative), 0.0, atol=1e-6)
        assert np.allclose(trajectory.evaluate(2.5, derivative), 0.0, atol=1e-6)


def test_derivatives_continuous_at_inner_vertex(three_vertex_problem):
    first, second = three_vertex_problem.get_trajectory().segments
    for derivative in range(HIGHEST + 1):
        assert np.allclose(
            first.evaluate(first.time, derivative), second.evaluate(0.0, derivative), atol=1e-6
        )


def test_solution_is_stationary(three_vertex_problem):
    opt = three_vertex_problem
    r = opt.r_matrix
    nf = opt.num_fixed
    for d_f, d_p in zip(opt.get_fixed_constraints(), opt.get_free_constraints()):
        gradient = r[nf:, :nf] @ d_f + r[nf:, nf:] @ d_p
        assert np.allclose(gradient, 0.0, atol=1e-8)


def test_free_middle_vertex_is_symmetric():
    opt = PolynomialOptimization(2, N)
    start = np.array([0.0, 0.0])
    goal = np.array([2.0, 4.0])
    opt.setup_from_vertices([_endpoint(start), _middle(), _endpoint(goal)], [1.0, 1.0])
    opt.solve_linear()
    trajectory = opt.get_trajectory()
    assert np.allclose(trajectory.evaluate(1.0), (start + goal) / 2.0, atol=1e-8)


def test_free_constraints_round_trip(three_vertex_problem):
    opt = three_vertex_problem
    values = [np.arange(opt.num_free, dtype=float), -np.arange(opt.num_free, dtype=float)]
    opt.set_free_constraints(values)
    restored = opt.get_free_constraints()
    assert all(np.allclose(a, b) for a, b in zip(values, restored))


def test_mpinv_recovers_constraints_from_coefficients(three_vertex_problem):
    opt = three_vertex_problem
    p = opt.coefficients()
    recovered = (opt.m_pinv @ opt.a_matrix @ p.T).T
    for row, d_f, d_p in zip(
        recovered, opt.get_fixed_constraints(), opt.get_free_constraints()
    ):
        assert np.allclose(row, np.concatenate([d_f, d_p]), atol=1e-8)


def test_wrong_free_constraint_shape_raises(three_vertex_problem):
    with pytest.raises(ValueError):
        three_vertex_problem.set_free_constraints([np.zeros(1), np.zeros(1)])


def test_mismatched_segment_times_raise():
    opt = PolynomialOptimization(2, N)
    with pytest.raises(ValueError):
        opt.setup_from_vertices([_endpoint([0.0, 0.0]), _endpoint([1.0, 1.0])], [1.0, 2.0])


def test_odd_coefficient_count_raises():
    with pytest.raises(ValueError):
        PolynomialOptimization(2, 9)


def test_use_before_setup_raises():
    with pytest.raises(RuntimeError):
        PolynomialOptimization(3).get_trajectory()