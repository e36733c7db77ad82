"""
Fixed-step RK4 integration of the coupled pendulum, plus a scipy reference.
"""

from __future__ import annotations

from typing import Optional

import numpy as np
from scipy.integrate import solve_ivp

from function_generator import build_equations_of_motion, derivative
from pendulum import COUPLING, GRAVITY, MAX_LINKS, check_link_count, pack_state, unpack_state


class RK4Workspace:
    """Scratch buffers for ``step_rk4``, reused across calls.

    One workspace per simulation instance; never shared between instances.
    """

    def __init__(self, capacity: int = MAX_LINKS):
        size = 2 * capacity
        self.capacity = capacity
        self.k1 = np.zeros(size)
        self.k2 = np.zeros(size)
        self.k3 = np.zeros(size)
        self.k4 = np.zeros(size)
        self.y = np.zeros(size)
        self.tmp = np.zeros(size)
        # torque and inertia terms of one derivative evaluation
        self.forces = np.zeros((2, capacity))
        # per-link length, mass and damping, refilled by the caller each frame
        self.lengths = np.zeros(capacity)
        self.masses = np.zeros(capacity)
        self.damping = np.zeros(capacity)


def step_rk4(
    n: int,
    lengths: np.ndarray,
    masses: np.ndarray,
    theta: np.ndarray,
    omega: np.ndarray,
    dt: float,
    workspace: RK4Workspace,
    damping: Optional[np.ndarray] = None,
    gravity: float = GRAVITY,
    coupling: float = COUPLING,
) -> None:
    """Advance ``theta[:n]`` and ``omega[:n]`` in place by one RK4 step of *dt*."""
    n = check_link_count(n)
    if n > workspace.capacity:
        raise ValueError(f"Workspace holds {workspace.capacity} links, cannot step {n}")

    m = 2 * n
    y = pack_state(n, theta, omega, workspace.y)[:m]
    tmp = workspace.tmp[:m]
    k1, k2, k3, k4 = (k[:m] for k in (workspace.k1, workspace.k2, workspace.k3, workspace.k4))
    kwargs = dict(damping=damping, gravity=gravity, coupling=coupling, scratch=workspace.forces)

    derivative(n, lengths, masses, y, k1, **kwargs)

    np.multiply(k1, 0.5 * dt, out=tmp)
    tmp += y
    derivative(n, lengths, masses, tmp, k2, **kwargs)

    np.multiply(k2, 0.5 * dt, out=tmp)
    tmp += y
    derivative(n, lengths, masses, tmp, k3, **kwargs)

    np.multiply(k3, dt, out=tmp)
    tmp += y
    derivative(n, lengths, masses, tmp, k4, **kwargs)

    # tmp <- k1 + 2 k2 + 2 k3 + k4
    np.add(k2, k3, out=tmp)
    tmp *= 2.0
    tmp += k1
    tmp += k4
    tmp *= dt / 6.0
    tmp += y
    unpack_state(n, tmp, theta, omega)


def solve_reference(
    n: int,
    lengths: np.ndarray,
    masses: np.ndarray,
    theta0: np.ndarray,
    omega0: np.ndarray,
    T: float,
    t_eval: Optional[np.ndarray] = None,
    damping: Optional[np.ndarray] = None,
    gravity: float = GRAVITY,
    coupling: float = COUPLING,
    **solver_kwargs,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Integrate the same equations with a high-order adaptive scheme.

    Returns
    -------
    t : array
        Time points
    theta, omega : array
        Angles and angular velocities, shape (len(t), n)
    """
    n = check_link_count(n)
    equations_of_motion = build_equations_of_motion(
        n, lengths, masses, damping=damping, gravity=gravity, coupling=coupling
    )
    u0 = pack_state(n, np.asarray(theta0, dtype=float), np.asarray(omega0, dtype=float), np.zeros(2 * n))

    options = dict(
        method='DOP853',
        rtol=1e-11,
        atol=1e-13,
        max_step=5e-3,
    )
    options.update(solver_kwargs)

    sol = solve_ivp(equations_of_motion, [0, T], u0, t_eval=t_eval, **options)
    if not sol.success:
        raise RuntimeError(f"Reference integration failed: {sol.message}")
    theta = sol.y[0::2].T
    omega = sol.y[1::2].T
    return sol.t, theta, omega
