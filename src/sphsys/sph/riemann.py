"""
Interface (star) states for particle pairs.

A solver is built once for a pair of materials (body-pair policy) and then
evaluated as

    get_interface_state(state_i, state_j, e_ij) -> FluidStarState

where e_ij = (x_i - x_j) / r_ij points from j to i. The interface normal
seen from i therefore is -e_ij, and the normal velocities entering the
acoustic correction are

    u_i = -e_ij . v_i,    u_j = -e_ij . v_j.

Acoustic impedance of each side: Z = rho0 * c0.

Solvers:
- NoRiemannSolver: impedance-weighted averages, no dissipation.
- AcousticRiemannSolver: adds impedance-weighted dissipation proportional to
  the normal velocity jump (linearized Riemann problem of the acoustic
  equations).

The Lagrangian pressure/density relaxation reads the two dissipation hooks
`dissipative_u_jump` and `dissipative_p_jump` directly; the Eulerian scheme
uses the full interface state.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import numpy as np

from sphsys.core.errors import ConfigurationError
from sphsys.core.materials import WeaklyCompressibleFluid


@dataclass(frozen=True, slots=True)
class FluidState:
    rho: float
    vel: np.ndarray
    p: float


@dataclass(frozen=True, slots=True)
class FluidStarState:
    rho: float
    vel: np.ndarray
    p: float


class FluxSolver(Protocol):
    def get_interface_state(self, state_i: FluidState, state_j: FluidState, e_ij: np.ndarray) -> FluidStarState:
        ...

    def dissipative_u_jump(self, p_jump: float) -> float:
        ...

    def dissipative_p_jump(self, u_jump: float) -> float:
        ...


class NoRiemannSolver:
    """Central (impedance-weighted) average of the two states."""

    def __init__(self, fluid_i: WeaklyCompressibleFluid, fluid_j: WeaklyCompressibleFluid | None = None):
        fluid_j = fluid_i if fluid_j is None else fluid_j
        self.fluid_i = fluid_i
        self.fluid_j = fluid_j
        self.rho0c0_i = fluid_i.reference_impedance
        self.rho0c0_j = fluid_j.reference_impedance
        self.inv_rho0c0_sum = 1.0 / (self.rho0c0_i + self.rho0c0_j)

    def average_state(self, state_i: FluidState, state_j: FluidState) -> FluidStarState:
        z_i, z_j, inv = self.rho0c0_i, self.rho0c0_j, self.inv_rho0c0_sum
        rho = (z_i * state_i.rho + z_j * state_j.rho) * inv
        vel = (z_i * np.asarray(state_i.vel) + z_j * np.asarray(state_j.vel)) * inv
        p = (z_j * state_i.p + z_i * state_j.p) * inv
        return FluidStarState(rho=float(rho), vel=vel, p=float(p))

    def get_interface_state(self, state_i: FluidState, state_j: FluidState, e_ij: np.ndarray) -> FluidStarState:
        return self.average_state(state_i, state_j)

    def dissipative_u_jump(self, p_jump: float) -> float:
        return 0.0

    def dissipative_p_jump(self, u_jump: float) -> float:
        return 0.0


class AcousticRiemannSolver(NoRiemannSolver):
    """
    Linearized (acoustic) Riemann solver:

        p*   = p_avg + 0.5 * Z_i Z_j / (Z_i + Z_j) * (u_i - u_j)
        v*   = v_avg - e_ij * (p_i - p_j) / (Z_i + Z_j) * limiter
        rho* = rho_avg + (p* - p_avg) / c_avg^2

    The velocity correction is limited by min(3 |u_i - u_j| / c_avg, 1) so
    that it vanishes together with the normal velocity jump.
    """

    def __init__(self, fluid_i: WeaklyCompressibleFluid, fluid_j: WeaklyCompressibleFluid | None = None):
        super().__init__(fluid_i, fluid_j)
        z_i, z_j = self.rho0c0_i, self.rho0c0_j
        self.rho0c0_harmonic = z_i * z_j * self.inv_rho0c0_sum
        self.inv_rho0c0_ave = 2.0 * self.inv_rho0c0_sum
        self.c_ave = 0.5 * (self.fluid_i.c0 + self.fluid_j.c0)
        self.inv_c_ave = 1.0 / self.c_ave

    def get_interface_state(self, state_i: FluidState, state_j: FluidState, e_ij: np.ndarray) -> FluidStarState:
        e_ij = np.asarray(e_ij, dtype=np.float64)
        average = self.average_state(state_i, state_j)

        u_i = -float(np.dot(e_ij, state_i.vel))
        u_j = -float(np.dot(e_ij, state_j.vel))
        u_jump = u_i - u_j
        limiter = min(3.0 * abs(u_jump) * self.inv_c_ave, 1.0)

        p_star = average.p + 0.5 * self.rho0c0_harmonic * u_jump
        vel_star = average.vel - e_ij * (state_i.p - state_j.p) * self.inv_rho0c0_sum * limiter
        rho_star = average.rho + (p_star - average.p) * self.inv_c_ave * self.inv_c_ave
        return FluidStarState(rho=float(rho_star), vel=vel_star, p=float(p_star))

    def dissipative_u_jump(self, p_jump: float) -> float:
        return p_jump * self.inv_rho0c0_ave

    def dissipative_p_jump(self, u_jump: float) -> float:
        return self.rho0c0_harmonic * u_jump


_SOLVERS = {
    "none": NoRiemannSolver,
    "no_riemann": NoRiemannSolver,
    "acoustic": AcousticRiemannSolver,
}


def create_riemann_solver(
    name: str,
    fluid_i: WeaklyCompressibleFluid,
    fluid_j: WeaklyCompressibleFluid | None = None,
) -> FluxSolver:
    try:
        solver_cls = _SOLVERS[str(name).lower()]
    except KeyError:
        raise ConfigurationError(f"Unknown Riemann solver: {name!r} (expected one of {sorted(_SOLVERS)})") from None
    return solver_cls(fluid_i, fluid_j)
