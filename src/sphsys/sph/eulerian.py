"""
Eulerian weakly-compressible fluid dynamics: particles stay at their
positions and carry conservative variables (rho, mom = rho v).

For every pair the Riemann solver gives the interface state (rho*, v*, p*)
and the fluxes are

    momentum:  dmom_dt_i = -2 sum_j (rho* v* v*^T + p* I) e_ij dW_ijV_j
    mass:      drho_dt_i = -2 sum_j rho* v*.e_ij dW_ijV_j

1st half updates momentum and velocity, 2nd half updates density and
pressure. Wall variants mirror the particle state into the wall:
(rho_i, 2 v_wall - v_i, p_i), with the wall normal as the interface
direction.

Free-surface operators for open (far-field) boundaries:
- SmearedSurfaceIndication: marks particles that are not on the surface
  but have a surface particle within the cutoff.
- NonReflectiveBoundaryCorrection: characteristic correction of surface and
  smeared-surface particles towards a prescribed far-field state.
"""

from __future__ import annotations

import logging

import numpy as np

from sphsys.core.errors import ConfigurationError
from sphsys.neighbors.relations import ComplexRelation, InnerRelation
from sphsys.sph.dynamics import LocalDynamics
from sphsys.sph.fluid_integration import BaseIntegration, InteractionWithWall, split_complex_relation
from sphsys.sph.riemann import AcousticRiemannSolver, FluidState

logger = logging.getLogger(__name__)


class EulerianBaseIntegration(BaseIntegration):
    def __init__(self, inner_relation: InnerRelation, riemann_solver=AcousticRiemannSolver):
        super().__init__(inner_relation, riemann_solver)
        particles = self.particles
        fresh = not particles.has_variable("mom")
        mom = particles.register_variable("mom", vector=True)
        if fresh:
            mom[:] = particles.rho[:, None] * particles.vel
        particles.register_variable("dmom_dt", vector=True)

    def setup_dynamics(self, dt: float = 0.0) -> None:
        super().setup_dynamics(dt)
        self.mom = self.particles.get_variable("mom")
        self.dmom_dt = self.particles.get_variable("dmom_dt")

    def state_of(self, index: int) -> FluidState:
        return FluidState(rho=float(self.rho[index]), vel=self.vel[index], p=float(self.p[index]))


class EulerianIntegration1stHalf(EulerianBaseIntegration):
    """Momentum flux with the Riemann interface state."""

    def interaction(self, index_i: int, dt: float = 0.0) -> None:
        state_i = self.state_of(index_i)
        identity = np.eye(self.body.dim)
        momentum_change_rate = np.zeros_like(self.vel[index_i])

        neighborhood = self.inner.inner_configuration[index_i]
        for n, index_j in enumerate(neighborhood.j):
            e_ij = neighborhood.e_ij[n]
            star = self.riemann_solver.get_interface_state(state_i, self.state_of(index_j), e_ij)
            flux = star.rho * np.outer(star.vel, star.vel) + star.p * identity
            momentum_change_rate -= 2.0 * (flux @ e_ij) * neighborhood.dW_ijV_j[n]

        self.dmom_dt[index_i] = momentum_change_rate

    def update(self, index_i: int, dt: float = 0.0) -> None:
        self.mom[index_i] += (self.dmom_dt[index_i] + self.rho[index_i] * self.acc_prior[index_i]) * dt
        self.vel[index_i] = self.mom[index_i] / self.rho[index_i]


class EulerianIntegration2ndHalf(EulerianBaseIntegration):
    """Mass flux with the Riemann interface state."""

    def interaction(self, index_i: int, dt: float = 0.0) -> None:
        state_i = self.state_of(index_i)
        density_change_rate = 0.0

        neighborhood = self.inner.inner_configuration[index_i]
        for n, index_j in enumerate(neighborhood.j):
            e_ij = neighborhood.e_ij[n]
            star = self.riemann_solver.get_interface_state(state_i, self.state_of(index_j), e_ij)
            density_change_rate -= 2.0 * star.rho * float(np.dot(star.vel, e_ij)) * neighborhood.dW_ijV_j[n]

        self.drho_dt[index_i] = density_change_rate

    def update(self, index_i: int, dt: float = 0.0) -> None:
        self.rho[index_i] += self.drho_dt[index_i] * dt
        self.p[index_i] = self.fluid.pressure(self.rho[index_i])


class EulerianWallMixin(InteractionWithWall):
    def wall_ghost_states(self, index_i: int, state_i: FluidState):
        """(ghost state, wall normal, dW_ijV_j, e_ij) for every wall neighbor of i."""
        for k, neighborhood in self.wall_neighborhoods(index_i):
            for n, index_j in enumerate(neighborhood.j):
                vel_in_wall = 2.0 * self.wall_vel[k][index_j] - state_i.vel
                ghost = FluidState(rho=state_i.rho, vel=vel_in_wall, p=state_i.p)
                yield ghost, self.wall_n[k][index_j], neighborhood.dW_ijV_j[n], neighborhood.e_ij[n]


class EulerianIntegration1stHalfWithWall(EulerianWallMixin, EulerianIntegration1stHalf):
    def __init__(self, complex_relation: ComplexRelation, riemann_solver=AcousticRiemannSolver):
        inner, contact = split_complex_relation(complex_relation)
        EulerianIntegration1stHalf.__init__(self, inner, riemann_solver)
        self._init_wall(contact)

    def setup_dynamics(self, dt: float = 0.0) -> None:
        super().setup_dynamics(dt)
        self._setup_wall()

    def interaction(self, index_i: int, dt: float = 0.0) -> None:
        super().interaction(index_i, dt)

        state_i = self.state_of(index_i)
        identity = np.eye(self.body.dim)
        momentum_change_rate = np.zeros_like(self.vel[index_i])
        for ghost, n_k, dW_ijV_j, e_ij in self.wall_ghost_states(index_i, state_i):
            star = self.riemann_solver.get_interface_state(state_i, ghost, n_k)
            flux = star.rho * np.outer(star.vel, star.vel) + star.p * identity
            momentum_change_rate -= 2.0 * (flux @ e_ij) * dW_ijV_j

        self.dmom_dt[index_i] += momentum_change_rate


class EulerianIntegration2ndHalfWithWall(EulerianWallMixin, EulerianIntegration2ndHalf):
    def __init__(self, complex_relation: ComplexRelation, riemann_solver=AcousticRiemannSolver):
        inner, contact = split_complex_relation(complex_relation)
        EulerianIntegration2ndHalf.__init__(self, inner, riemann_solver)
        self._init_wall(contact)

    def setup_dynamics(self, dt: float = 0.0) -> None:
        super().setup_dynamics(dt)
        self._setup_wall()

    def interaction(self, index_i: int, dt: float = 0.0) -> None:
        super().interaction(index_i, dt)

        state_i = self.state_of(index_i)
        density_change_rate = 0.0
        for ghost, n_k, dW_ijV_j, e_ij in self.wall_ghost_states(index_i, state_i):
            star = self.riemann_solver.get_interface_state(state_i, ghost, n_k)
            density_change_rate -= 2.0 * star.rho * float(np.dot(star.vel, e_ij)) * dW_ijV_j

        self.drho_dt[index_i] += density_change_rate


class SmearedSurfaceIndication(LocalDynamics):
    """
    smeared_surface[i] = 1 for a non-surface particle with at least one
    surface neighbor (indicator == 1), else 0. Reads the indicator written by
    FreeSurfaceIndication.
    """

    def __init__(self, inner_relation: InnerRelation):
        super().__init__(inner_relation.body)
        self.inner = inner_relation
        self.particles.register_variable("indicator", dtype=np.int64, initial=0)
        self.particles.register_variable("smeared_surface", dtype=np.int64, initial=0)

    def setup_dynamics(self, dt: float = 0.0) -> None:
        self.indicator = self.particles.get_variable("indicator")
        self.smeared_surface = self.particles.get_variable("smeared_surface")

    def interaction(self, index_i: int, dt: float = 0.0) -> None:
        if self.indicator[index_i] == 1:
            self.smeared_surface[index_i] = 0
            return
        neighbors = self.inner.inner_configuration[index_i].j
        self.smeared_surface[index_i] = int(np.any(self.indicator[neighbors] == 1))


class NonReflectiveBoundaryCorrection(LocalDynamics):
    """
    Far-field correction of surface and smeared-surface particles.

    interaction: kernel-weighted sums of density and velocity over the
    particle itself (W0 Vol_i) and its interior neighbors (W_ij Vol_j,
    neither surface nor smeared), plus the weight sum.
    update: the sums are normalized into the averages rho_a, v_a. With the
    outward surface normal n and the far-field normal velocity vn_f,

        supersonic inflow  (vn_f <= -c)   far-field state
        supersonic outflow (vn_f >=  c)   averaged state
        subsonic                          characteristic combination
            p  = (p_a + p_f)/2 + rho0 c (vn_a - vn_f)/2
            vn = (vn_a + vn_f)/2 + (p_a - p_f)/(2 rho0 c)
            tangential velocity from the far field on inflow and from the
            average on outflow

    Density follows from the state equation and mom = rho v.
    """

    def __init__(self, inner_relation: InnerRelation, rho_farfield: float, vel_farfield):
        super().__init__(inner_relation.body)
        self.inner = inner_relation
        self.fluid = self.body.material
        self.rho_farfield = float(rho_farfield)
        self.vel_farfield = np.asarray(vel_farfield, dtype=np.float64)
        if self.vel_farfield.shape != (self.body.dim,):
            raise ConfigurationError(f"far-field velocity must have shape ({self.body.dim},)")
        if self.rho_farfield <= 0.0:
            raise ConfigurationError(f"far-field density must be > 0, got {rho_farfield}")
        self.p_farfield = float(self.fluid.pressure(self.rho_farfield))
        self.sound_speed = float(self.fluid.sound_speed())
        self.W0 = self.body.kernel.W0(self.body.h)

        particles = self.particles
        particles.register_variable("indicator", dtype=np.int64, initial=0)
        particles.register_variable("smeared_surface", dtype=np.int64, initial=0)
        particles.register_variable("normal", vector=True)
        if not particles.has_variable("mom"):
            particles.register_variable("mom", vector=True)[:] = particles.rho[:, None] * particles.vel
        particles.register_variable("inner_weight_summation")
        particles.register_variable("rho_sum")
        particles.register_variable("vel_sum", vector=True)

    def setup_dynamics(self, dt: float = 0.0) -> None:
        particles = self.particles
        self.rho = particles.rho
        self.p = particles.p
        self.vel = particles.vel
        self.vol = particles.vol
        self.mom = particles.get_variable("mom")
        self.indicator = particles.get_variable("indicator")
        self.smeared_surface = particles.get_variable("smeared_surface")
        self.n = particles.get_variable("normal")
        self.inner_weight_summation = particles.get_variable("inner_weight_summation")
        self.rho_sum = particles.get_variable("rho_sum")
        self.vel_sum = particles.get_variable("vel_sum")

    def _is_boundary(self, index_i: int) -> bool:
        return self.indicator[index_i] == 1 or self.smeared_surface[index_i] == 1

    def interaction(self, index_i: int, dt: float = 0.0) -> None:
        if not self._is_boundary(index_i):
            return

        neighborhood = self.inner.inner_configuration[index_i]
        interior = (self.indicator[neighborhood.j] == 0) & (self.smeared_surface[neighborhood.j] == 0)
        j = neighborhood.j[interior]
        weights = neighborhood.W_ij[interior] * self.vol[j]
        self_weight = self.W0 * self.vol[index_i]

        self.inner_weight_summation[index_i] = self_weight + float(np.sum(weights))
        self.rho_sum[index_i] = self_weight * self.rho[index_i] + float(np.sum(weights * self.rho[j]))
        self.vel_sum[index_i] = self_weight * self.vel[index_i] + weights @ self.vel[j]

    def update(self, index_i: int, dt: float = 0.0) -> None:
        if not self._is_boundary(index_i):
            return

        c = self.sound_speed
        rho0c0 = self.fluid.reference_impedance
        n_i = self.n[index_i]

        vel_normal_farfield = float(np.dot(self.vel_farfield, n_i))
        vel_tangential_farfield = self.vel_farfield - vel_normal_farfield * n_i

        weight_sum = self.inner_weight_summation[index_i]
        rho_average = self.rho_sum[index_i] / weight_sum
        vel_average = self.vel_sum[index_i] / weight_sum
        p_average = float(self.fluid.pressure(rho_average))
        vel_normal_average = float(np.dot(vel_average, n_i))

        if vel_normal_farfield < 0.0 and abs(vel_normal_farfield) >= c:
            rho = self.rho_farfield
            vel = self.vel_farfield.copy()
        elif vel_normal_farfield >= c:
            rho = rho_average
            vel = vel_average
        else:
            p = 0.5 * (p_average + self.p_farfield) + 0.5 * rho0c0 * (vel_normal_average - vel_normal_farfield)
            vel_normal = 0.5 * (vel_normal_average + vel_normal_farfield) + 0.5 * (p_average - self.p_farfield) / rho0c0
            if vel_normal_farfield < 0.0:
                vel = vel_normal * n_i + vel_tangential_farfield
            else:
                vel = vel_normal * n_i + (vel_average - vel_normal_average * n_i)
            rho = float(self.fluid.density_from_pressure(p))

        self.rho[index_i] = rho
        self.p[index_i] = self.fluid.pressure(rho)
        self.vel[index_i] = vel
        self.mom[index_i] = rho * vel
