"""
N-Pendulum Simulation
Advance the coupled pendulum from host-supplied frame times
"""

from __future__ import annotations

import math
import multiprocessing as mp
import time
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from history import HistoryBuffer
from pendulum import (
    COUPLING,
    DEFAULT_INITIAL_ANGLES,
    GRAVITY,
    MAX_FRAME_DT,
    MAX_LINKS,
    MAX_SUBSTEP,
    LinkCountError,
    LinkParams,
    check_link_count,
    mechanical_energy,
    parameter_arrays,
)
from solver import RK4Workspace, step_rk4

_worker_N = None
_worker_T = None
_worker_M = None
_worker_fps = None
_worker_params = None
_worker_perturbation = None


def plan_substeps(elapsed_seconds: float) -> Tuple[int, float]:
    """
    Split a frame time into RK4 sub-steps.

    The frame is clamped to [0, MAX_FRAME_DT]; zero, negative and
    non-finite frames give ``(0, 0.0)``. Otherwise returns
    ``(steps, sub)`` with ``sub <= MAX_SUBSTEP`` and ``steps * sub`` equal
    to the clamped frame.
    """
    dt = float(elapsed_seconds)
    if not math.isfinite(dt):
        return 0, 0.0
    dt = min(max(dt, 0.0), MAX_FRAME_DT)
    if dt <= 0.0:
        return 0, 0.0
    steps = max(1, math.ceil(dt / MAX_SUBSTEP))
    return steps, dt / steps


def _check_state_arrays(n: int, *arrays: np.ndarray) -> None:
    for arr in arrays:
        if not isinstance(arr, np.ndarray):
            raise TypeError(f"State must be a numpy array updated in place, got {type(arr).__name__}")
        if arr.shape[0] < n:
            raise LinkCountError(f"State array holds {arr.shape[0]} links, need {n}")


def _load_params(n: int, params: Sequence[LinkParams], workspace: RK4Workspace):
    """Refill the workspace parameter buffers; damping is None when all zero."""
    if n > workspace.capacity:
        raise ValueError(f"Workspace holds {workspace.capacity} links, cannot step {n}")
    lengths, masses, damping = parameter_arrays(
        n, params, out=(workspace.lengths, workspace.masses, workspace.damping)
    )
    return lengths, masses, (damping if np.any(damping) else None)


def advance(
    n: int,
    params: Sequence[LinkParams],
    theta: np.ndarray,
    omega: np.ndarray,
    elapsed_seconds: float,
    workspace: Optional[RK4Workspace] = None,
    on_substep: Optional[Callable[[float], None]] = None,
    gravity: float = GRAVITY,
    coupling: float = COUPLING,
) -> float:
    """
    Integrate one host frame in place.

    Parameters:
    -----------
    n : int
        Number of active links
    params : sequence of LinkParams
        At least ``n`` entries; read only
    theta, omega : array
        Angles and angular velocities, mutated in place
    elapsed_seconds : float
        Wall time since the previous frame
    workspace : RK4Workspace
        Scratch buffers owned by the caller (a fresh one when omitted)
    on_substep : callable
        Called with the sub-step size after every RK4 step

    Returns:
    --------
    Simulated seconds actually integrated (at most MAX_FRAME_DT)
    """
    n = check_link_count(n)
    _check_state_arrays(n, theta, omega)
    steps, sub = plan_substeps(elapsed_seconds)
    if steps == 0:
        return 0.0

    if workspace is None:
        workspace = RK4Workspace()
    lengths, masses, damping = _load_params(n, params, workspace)

    for _ in range(steps):
        step_rk4(n, lengths, masses, theta, omega, sub, workspace, damping=damping, gravity=gravity, coupling=coupling)
        if on_substep is not None:
            on_substep(sub)
    return steps * sub


def reset(
    n: int,
    initial_angle: Sequence[float],
    theta: np.ndarray,
    omega: np.ndarray,
    histories: Optional[Sequence[HistoryBuffer]] = None,
) -> None:
    """Restore the initial angles, zero the velocities and clear histories of links 0..n."""
    n = check_link_count(n)
    _check_state_arrays(n, theta, omega)
    theta[:n] = np.asarray(initial_angle[:n], dtype=float)
    omega[:n] = 0.0
    if histories is not None:
        for h in histories[:n]:
            h.clear()


def integrate(
    n: int,
    params: Sequence[LinkParams],
    theta: np.ndarray,
    omega: np.ndarray,
    span: float,
    workspace: Optional[RK4Workspace] = None,
    on_substep: Optional[Callable[[float], None]] = None,
    gravity: float = GRAVITY,
    coupling: float = COUPLING,
) -> float:
    """Integrate a span of any length as consecutive full-size frames."""
    if workspace is None:
        workspace = RK4Workspace()
    span = float(span)
    if not math.isfinite(span) or span <= 0.0:
        return 0.0
    # tolerance absorbs rounding in span / MAX_FRAME_DT (0.3 / 0.05 -> 5.999...)
    frames = max(1, math.ceil(span / MAX_FRAME_DT - 1e-9))
    last = span - (frames - 1) * MAX_FRAME_DT
    done = 0.0
    for k in range(frames):
        frame = last if k == frames - 1 else MAX_FRAME_DT
        done += advance(n, params, theta, omega, frame, workspace, on_substep, gravity=gravity, coupling=coupling)
    return done


class FrameTimer:
    """Monotonic elapsed-time source for a host loop."""

    def __init__(self, clock: Callable[[], float] = time.perf_counter):
        self._clock = clock
        self._last: Optional[float] = None

    def tick(self) -> float:
        """Seconds since the previous tick; 0.0 on the first tick."""
        now = self._clock()
        elapsed = 0.0 if self._last is None else now - self._last
        self._last = now
        return elapsed

    def reset(self) -> None:
        self._last = None


class PendulumSimulation:
    """
    One independent pendulum instance.

    Owns its link count, parameters, state, scratch buffers, histories and
    simulated clock. Nothing is shared between instances.
    """

    def __init__(
        self,
        n: int = 3,
        params: Optional[Sequence[LinkParams]] = None,
        initial_angles: Optional[Sequence[float]] = None,
        gravity: float = GRAVITY,
        coupling: float = COUPLING,
    ):
        self.n = check_link_count(n)
        self.params: List[LinkParams] = [LinkParams() for _ in range(MAX_LINKS)]
        if params is not None:
            for i, p in enumerate(params[:MAX_LINKS]):
                self.params[i] = p

        self.initial_angles = np.zeros(MAX_LINKS)
        angles = DEFAULT_INITIAL_ANGLES if initial_angles is None else initial_angles
        angles = np.asarray(angles[:MAX_LINKS], dtype=float)
        self.initial_angles[: len(angles)] = angles

        self.gravity = gravity
        self.coupling = coupling
        self.theta = self.initial_angles.copy()
        self.omega = np.zeros(MAX_LINKS)
        self.histories = [HistoryBuffer() for _ in range(MAX_LINKS)]
        self.workspace = RK4Workspace()
        self.time = 0.0

    def set_link_count(self, n: int) -> None:
        self.n = check_link_count(n)

    def _push_histories(self, sub: float) -> None:
        self.time += sub
        for i in range(self.n):
            self.histories[i].push(self.time, self.theta[i])

    def advance(self, elapsed_seconds: float) -> float:
        """Integrate one frame and record a history sample per sub-step."""
        return advance(
            self.n,
            self.params,
            self.theta,
            self.omega,
            elapsed_seconds,
            self.workspace,
            on_substep=self._push_histories,
            gravity=self.gravity,
            coupling=self.coupling,
        )

    def step_rk4(self, dt: float) -> None:
        """Single RK4 step of *dt*, bypassing the frame clamp."""
        lengths, masses, damping = _load_params(self.n, self.params, self.workspace)
        step_rk4(
            self.n,
            lengths,
            masses,
            self.theta,
            self.omega,
            dt,
            self.workspace,
            damping=damping,
            gravity=self.gravity,
            coupling=self.coupling,
        )

    def reset(self) -> None:
        reset(self.n, self.initial_angles, self.theta, self.omega, self.histories)
        self.time = 0.0

    def energy(self) -> float:
        lengths, masses, _ = parameter_arrays(self.n, self.params)
        return mechanical_energy(self.n, lengths, masses, self.theta, self.omega, gravity=self.gravity)


def _run_frames(sim: PendulumSimulation, frames: int, fps: float) -> Tuple[np.ndarray, np.ndarray]:
    """Advance *sim* frame by frame, recording state after each frame."""
    n = sim.n
    theta = np.zeros((frames, n))
    omega = np.zeros((frames, n))
    for k in range(frames):
        sim.advance(1.0 / fps)
        theta[k] = sim.theta[:n]
        omega[k] = sim.omega[:n]
    return theta, omega


def _ensemble_angles(N: int, index: int, M: int, perturbation: float) -> np.ndarray:
    return np.ones(N) * np.pi / 2 - index / M * perturbation


def _worker_init(N: int, T: float, fps: float, M: int, perturbation: float, params: Tuple[LinkParams, ...]) -> None:
    """Initializer for worker processes; restores shared context."""
    global _worker_N, _worker_T, _worker_fps, _worker_M, _worker_perturbation, _worker_params
    _worker_N = N
    _worker_T = T
    _worker_fps = fps
    _worker_M = M
    _worker_perturbation = perturbation
    _worker_params = params


def _worker_simulate_single(index: int) -> Tuple[int, np.ndarray]:
    """Simulate a single pendulum instance inside a worker process."""
    if _worker_N is None:
        raise RuntimeError("Worker context not initialized")
    return index, _simulate_instance(
        _worker_N, _worker_T, _worker_fps, _worker_M, _worker_perturbation, _worker_params, index
    )


def _simulate_instance(
    N: int, T: float, fps: float, M: int, perturbation: float, params: Sequence[LinkParams], index: int
) -> np.ndarray:
    sim = PendulumSimulation(N, params=params, initial_angles=_ensemble_angles(N, index, M, perturbation))
    theta, _ = _run_frames(sim, int(T * fps), fps)
    return theta


def simulate_pendulum(
    N: int = 3,
    T: float = 10.0,
    fps: float = 60,
    params: Optional[Sequence[LinkParams]] = None,
    initial_angles: Optional[Sequence[float]] = None,
    verbose: bool = True,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Drive one N-pendulum at a fixed frame rate, as a host loop would.

    Returns:
    --------
    t : array
        Simulated time at the end of each frame
    theta : array
        Angles (shape: Frame x N)
    omega : array
        Angular velocities (shape: Frame x N)
    """
    sim = PendulumSimulation(N, params=params, initial_angles=initial_angles)
    Frame = int(T * fps)

    if verbose:
        print(f"Simulating {N}-link pendulum for {T} s at {fps} fps...")
    tic = time.time()
    theta, omega = _run_frames(sim, Frame, fps)
    toc = time.time()
    if verbose:
        print(f"Simulation completed in {toc-tic:.1f} seconds")

    t = np.arange(1, Frame + 1) / fps
    return t, theta, omega


def simulate_ensemble(
    N: int = 3,
    T: float = 10.0,
    M: int = 20,
    perturbation: float = 1e-6,
    fps: float = 60,
    params: Optional[Sequence[LinkParams]] = None,
    processes: int | None = None,
    verbose: bool = True,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Simulate M instances of N-pendulum with slightly different initial conditions

    Parameters:
    -----------
    N : int
        Number of pendulum links
    T : float
        Total simulation time
    M : int
        Number of pendulum instances
    perturbation : float
        Spread of the initial angles across instances
    processes : int | None
        Number of worker processes (default: cpu_count, sequential when <=1)

    Returns:
    --------
    t : array
        Time points
    theta : array
        Angles of all links (shape: Frame x N x M)
    """
    N = check_link_count(N)
    if M < 1:
        raise ValueError(f"Need at least one instance, got M={M}")
    params = tuple(params) if params is not None else tuple(LinkParams() for _ in range(N))
    Frame = int(T * fps)
    t = np.arange(1, Frame + 1) / fps
    theta = np.zeros((Frame, N, M))

    if verbose:
        print(f"Simulating {M} pendulum instances...")
    tic = time.time()

    cpu_total = mp.cpu_count() or 1
    processes = processes or min(M, cpu_total)
    processes = max(1, min(processes, M))

    if processes == 1:
        for ii in range(M):
            if verbose and ((ii + 1) % 10 == 0 or ii + 1 == M):
                print(f"Progress: {ii+1}/{M}")
            theta[:, :, ii] = _simulate_instance(N, T, fps, M, perturbation, params, ii)
    else:
        if verbose:
            print(f"Using {processes} parallel workers...")
        ctx = mp.get_context("spawn")
        with ctx.Pool(
            processes=processes,
            initializer=_worker_init,
            initargs=(N, T, fps, M, perturbation, params),
        ) as pool:
            chunk_iter: Iterable[Tuple[int, np.ndarray]] = pool.imap_unordered(_worker_simulate_single, range(M))
            for completed, (idx, result) in enumerate(chunk_iter, start=1):
                theta[:, :, idx] = result
                if verbose and ((completed % 10 == 0) or completed == M):
                    print(f"Progress: {completed}/{M}")

    toc = time.time()
    if verbose:
        print(f"Simulation completed in {toc-tic:.1f} seconds")
    return t, theta
