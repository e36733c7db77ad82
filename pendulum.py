"""
Coupled N-link pendulum: constants, link parameters and state packing.

The integrator works on a flat vector ``[theta0, omega0, theta1, omega1, ...]``
of length ``2 * n``. Buffers are sized to ``MAX_LINKS`` and only the first
``n`` links are meaningful.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np

MAX_LINKS = 7
GRAVITY = 9.81
COUPLING = 5.0
MIN_INERTIA = 1e-12

# Frame-time policy: clamp each frame, then sub-step at most this size
MAX_FRAME_DT = 0.05
MAX_SUBSTEP = 0.005

HISTORY_SECONDS = 60.0
HISTORY_SAMPLES = 1024

DEFAULT_INITIAL_ANGLES = (0.7, 0.4, -0.3)


class LinkCountError(ValueError):
    """Raised when a link count falls outside ``1..MAX_LINKS``."""


@dataclass
class LinkParams:
    """Physical parameters of one link.

    length : metres, should be > 0
    mass : kg, should be > 0
    damping : kg/s, adds ``-(damping / mass) * omega`` to the acceleration
    """

    length: float = 1.0
    mass: float = 1.0
    damping: float = 0.0


def check_link_count(n: int) -> int:
    """Return *n* unchanged, or raise ``LinkCountError`` if it is out of range."""
    if isinstance(n, bool) or not isinstance(n, (int, np.integer)):
        raise LinkCountError(f"Link count must be an integer, got {n!r}")
    if n < 1 or n > MAX_LINKS:
        raise LinkCountError(f"Link count must be in 1..{MAX_LINKS}, got {n}")
    return int(n)


def parameter_arrays(
    n: int,
    params: Sequence[LinkParams],
    out: Optional[Tuple[np.ndarray, np.ndarray, np.ndarray]] = None,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Split the first *n* link parameters into length, mass and damping arrays.

    With *out*, the three given buffers are filled in place and views of
    their first *n* slots are returned.
    """
    n = check_link_count(n)
    if len(params) < n:
        raise LinkCountError(f"Expected at least {n} link parameters, got {len(params)}")
    if out is None:
        out = (np.empty(n), np.empty(n), np.empty(n))
    lengths, masses, damping = (buf[:n] for buf in out)
    for i, p in enumerate(params[:n]):
        lengths[i] = p.length
        masses[i] = p.mass
        damping[i] = p.damping
    return lengths, masses, damping


def pack_state(n: int, theta: np.ndarray, omega: np.ndarray, y: np.ndarray) -> np.ndarray:
    """Interleave angles and angular velocities into ``y[:2n]``."""
    y[0:2 * n:2] = theta[:n]
    y[1:2 * n:2] = omega[:n]
    return y


def unpack_state(n: int, y: np.ndarray, theta: np.ndarray, omega: np.ndarray) -> None:
    """Inverse of ``pack_state``: write ``y[:2n]`` back into *theta* and *omega*."""
    theta[:n] = y[0:2 * n:2]
    omega[:n] = y[1:2 * n:2]


def mechanical_energy(
    n: int,
    lengths: np.ndarray,
    masses: np.ndarray,
    theta: np.ndarray,
    omega: np.ndarray,
    gravity: float = GRAVITY,
) -> float:
    """
    Sum of per-link simple-pendulum energies.

    ``E = m g l (1 - cos theta) + 1/2 m (l omega)^2``. Coupling springs are
    not included, so this is only conserved for an uncoupled single link.
    """
    l = np.asarray(lengths[:n], dtype=float)
    m = np.asarray(masses[:n], dtype=float)
    th = np.asarray(theta[:n], dtype=float)
    w = np.asarray(omega[:n], dtype=float)
    potential = m * gravity * l * (1.0 - np.cos(th))
    kinetic = 0.5 * m * (l * w) ** 2
    return float(np.sum(potential + kinetic))
