"""
Equations of motion for the coupled N-link pendulum.

Each link is a simple pendulum under gravity, tied to its neighbours by a
linear angular spring. Torque on link i:

    -g / l_i * sin(theta_i)
    - k * (theta_i - theta_{i-1})      if i > 0
    - k * (theta_i - theta_{i+1})      if i + 1 < n

and the acceleration is torque / (m_i * l_i**2). This is a torque-sum
approximation, not the full Lagrangian chain (no mass-matrix cross terms).
"""

from __future__ import annotations

import math
from typing import Callable, Optional

import numpy as np

from pendulum import COUPLING, GRAVITY, MIN_INERTIA, check_link_count


def accelerations(
    n: int,
    lengths: np.ndarray,
    masses: np.ndarray,
    thetas: np.ndarray,
    omegas: np.ndarray,
    out: np.ndarray,
    damping: Optional[np.ndarray] = None,
    gravity: float = GRAVITY,
    coupling: float = COUPLING,
    scratch: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Write the angular acceleration of every link into ``out[:n]``.

    Links with a non-positive or non-finite length/mass, a moment of inertia
    below ``MIN_INERTIA``, or any other non-finite result get exactly 0.
    *scratch* is an optional ``(2, >= n)`` buffer for the torque and inertia
    terms; without it two small arrays are allocated per call.
    """
    l = np.asarray(lengths[:n], dtype=float)
    m = np.asarray(masses[:n], dtype=float)
    th = np.asarray(thetas[:n], dtype=float)
    if scratch is None:
        scratch = np.empty((2, n))
    torque = scratch[0, :n]
    inertia = scratch[1, :n]
    acc = out[:n]

    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        np.sin(th, out=torque)
        torque *= -gravity
        torque /= l
        if n > 1:
            # acc doubles as the spring buffer until the division below
            spring = acc[: n - 1]
            np.subtract(th[1:], th[:-1], out=spring)
            spring *= coupling
            torque[1:] -= spring
            torque[:-1] += spring

        np.multiply(l, l, out=inertia)
        inertia *= m
        np.divide(torque, inertia, out=acc)
        if damping is not None:
            # torque is free again: reuse it for the damping term
            np.divide(np.asarray(damping[:n], dtype=float), m, out=torque)
            torque *= np.asarray(omegas[:n], dtype=float)
            acc -= torque

    for i in range(n):
        I = inertia[i]
        if not (
            l[i] > 0.0
            and m[i] > 0.0
            and math.isfinite(I)
            and abs(I) >= MIN_INERTIA
            and math.isfinite(acc[i])
        ):
            acc[i] = 0.0
    return out


def derivative(
    n: int,
    lengths: np.ndarray,
    masses: np.ndarray,
    y: np.ndarray,
    out: np.ndarray,
    damping: Optional[np.ndarray] = None,
    gravity: float = GRAVITY,
    coupling: float = COUPLING,
    scratch: Optional[np.ndarray] = None,
) -> np.ndarray:
    """Time derivative of the packed state ``y[:2n]``, written into ``out[:2n]``."""
    out[0:2 * n:2] = y[1:2 * n:2]
    # strided views, so the accelerations land directly in the odd slots
    accelerations(
        n,
        lengths,
        masses,
        y[0:2 * n:2],
        y[1:2 * n:2],
        out[1:2 * n:2],
        damping=damping,
        gravity=gravity,
        coupling=coupling,
        scratch=scratch,
    )
    return out


def build_equations_of_motion(
    N: int,
    lengths: np.ndarray,
    masses: np.ndarray,
    damping: Optional[np.ndarray] = None,
    gravity: float = GRAVITY,
    coupling: float = COUPLING,
) -> Callable[[float, np.ndarray], np.ndarray]:
    """
    Return ``f(t, u)`` for ``scipy.integrate.solve_ivp``.

    ``u`` uses the same interleaved packing as the RK4 stepper.
    """
    N = check_link_count(N)
    lengths = np.array(lengths[:N], dtype=float)
    masses = np.array(masses[:N], dtype=float)
    if damping is not None:
        damping = np.array(damping[:N], dtype=float)

    def equations_of_motion(t: float, u: np.ndarray) -> np.ndarray:
        """Return time derivative of the packed state."""
        du = np.empty(2 * N)
        return derivative(N, lengths, masses, u, du, damping=damping, gravity=gravity, coupling=coupling)

    return equations_of_motion
