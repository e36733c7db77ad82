"""Tests for the fixed-step RK4 stepper and the scipy reference solution."""

from __future__ import annotations

import math

import numpy as np
import pytest

from pendulum import GRAVITY, MAX_LINKS, LinkCountError, mechanical_energy
from solver import RK4Workspace, solve_reference, step_rk4


def _state(*angles):
    theta = np.zeros(MAX_LINKS)
    theta[: len(angles)] = angles
    return theta, np.zeros(MAX_LINKS)


def _run(n, lengths, masses, theta, omega, dt, steps, **kwargs):
    ws = RK4Workspace()
    for _ in range(steps):
        step_rk4(n, lengths, masses, theta, omega, dt, ws, **kwargs)
    return theta, omega


def test_single_link_energy_is_conserved():
    lengths, masses = np.ones(1), np.ones(1)
    theta, omega = _state(0.3)
    e0 = mechanical_energy(1, lengths, masses, theta, omega)

    _run(1, lengths, masses, theta, omega, 0.005, 1000)

    e1 = mechanical_energy(1, lengths, masses, theta, omega)
    assert abs(e1 - e0) / e0 < 0.005


def test_small_angle_period_matches_analytic():
    lengths, masses = np.ones(1), np.ones(1)
    theta, omega = _state(0.05)
    ws = RK4Workspace()
    dt = 0.005
    crossings = []
    prev = theta[0]
    for k in range(1, 2001):
        step_rk4(1, lengths, masses, theta, omega, dt, ws)
        cur = theta[0]
        if prev * cur < 0:
            # linear interpolation between the two samples
            crossings.append((k - 1) * dt + dt * prev / (prev - cur))
        prev = cur

    assert len(crossings) >= 6
    period = 2.0 * np.mean(np.diff(crossings))
    analytic = 2 * math.pi * math.sqrt(1.0 / GRAVITY)
    assert period == pytest.approx(analytic, rel=0.02)


def test_stepper_is_deterministic():
    lengths = np.array([1.0, 0.7, 1.3, 0.9])
    masses = np.array([1.0, 2.0, 0.5, 1.5])
    runs = []
    for _ in range(2):
        theta, omega = _state(0.7, 0.4, -0.3, 1.1)
        runs.append(_run(4, lengths, masses, theta, omega, 0.004, 500))

    np.testing.assert_array_equal(runs[0][0], runs[1][0])
    np.testing.assert_array_equal(runs[0][1], runs[1][1])


def test_stepper_leaves_inactive_slots_alone():
    theta, omega = _state(0.5, 0.2, 3.0)
    omega[2] = -4.0
    _run(2, np.ones(2), np.ones(2), theta, omega, 0.005, 10)

    assert theta[2] == 3.0
    assert omega[2] == -4.0


def test_degenerate_link_never_accelerates():
    lengths = np.ones(3)
    masses = np.array([1.0, 0.0, 1.0])
    theta, omega = _state(0.3, 0.2, 0.1)
    ws = RK4Workspace()
    for _ in range(200):
        step_rk4(3, lengths, masses, theta, omega, 0.005, ws)
        assert omega[1] == 0.0
        assert np.all(np.isfinite(theta)) and np.all(np.isfinite(omega))
    assert theta[1] == 0.2


def test_damping_dissipates_energy():
    lengths, masses = np.ones(1), np.ones(1)
    theta, omega = _state(0.5)
    e0 = mechanical_energy(1, lengths, masses, theta, omega)

    _run(1, lengths, masses, theta, omega, 0.005, 1000, damping=np.array([0.5]))

    assert mechanical_energy(1, lengths, masses, theta, omega) < 0.5 * e0


def test_rk4_agrees_with_reference_solution():
    lengths = np.array([1.0, 0.8, 1.2])
    masses = np.array([1.0, 1.5, 0.7])
    theta, omega = _state(0.7, 0.4, -0.3)
    theta0, omega0 = theta[:3].copy(), omega[:3].copy()

    _run(3, lengths, masses, theta, omega, 0.005, 400)
    t, ref_theta, ref_omega = solve_reference(3, lengths, masses, theta0, omega0, 2.0, t_eval=np.array([2.0]))

    assert t[-1] == pytest.approx(2.0)
    np.testing.assert_allclose(theta[:3], ref_theta[-1], atol=1e-5)
    np.testing.assert_allclose(omega[:3], ref_omega[-1], atol=1e-4)


def test_reference_solution_shapes():
    t_eval = np.linspace(0, 1, 11)
    t, theta, omega = solve_reference(2, np.ones(2), np.ones(2), [0.1, 0.2], [0.0, 0.0], 1.0, t_eval=t_eval)
    assert t.shape == (11,)
    assert theta.shape == (11, 2)
    assert omega.shape == (11, 2)
    np.testing.assert_allclose(theta[0], [0.1, 0.2])


def test_step_rejects_bad_link_count():
    theta, omega = _state(0.1)
    with pytest.raises(LinkCountError):
        step_rk4(0, np.ones(1), np.ones(1), theta, omega, 0.005, RK4Workspace())
    with pytest.raises(LinkCountError):
        step_rk4(MAX_LINKS + 1, np.ones(8), np.ones(8), theta, omega, 0.005, RK4Workspace())


def test_step_rejects_undersized_workspace():
    theta, omega = _state(0.1, 0.2, 0.3)
    with pytest.raises(ValueError):
        step_rk4(3, np.ones(3), np.ones(3), theta, omega, 0.005, RK4Workspace(capacity=2))
