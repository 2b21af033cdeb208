"""
Lagrangian weakly-compressible fluid integration (dual-criteria splitting).

One step is split into two halves, each an interaction/update pair:

1st half, pressure relaxation:
    initialization   rho += drho_dt * dt/2,  Vol = m / rho,  p = EOS(rho),
                     x += v * dt/2
    interaction      acc_i     = -1/rho_i  sum_j (p_i + p_j) dW_ijV_j e_ij
                     drho_dt_i =  rho_i    sum_j U(p_i - p_j) dW_ijV_j
    update           v += (acc_prior + acc) * dt

2nd half, density relaxation:
    initialization   x += v * dt/2
    interaction      drho_dt_i += rho_i    sum_j (v_i - v_j).e_ij dW_ijV_j
                     acc_i     =  1/rho_i  sum_j P((v_i - v_j).e_ij) dW_ijV_j e_ij
    update           rho += drho_dt * dt/2,  v += acc * dt

U and P are the dissipation hooks of the Riemann solver (zero for the
no-Riemann solver). With equal masses, every pair term enters i and j with
opposite sign, so the pair forces obey Newton's third law.
The 1st half leaves its density dissipation in drho_dt and the 2nd half
adds the continuity rate to it.

The `...WithWall` variants add the contributions of contact relations to
wall bodies, replacing each wall particle by a ghost state: the pressure is
mirrored with a hydrostatic correction, the velocity is 2 v_wall - v_i.
"""

from __future__ import annotations

import logging

import numpy as np

from sphsys.core.bodies import FluidBody, SolidBody
from sphsys.core.errors import ConfigurationError
from sphsys.neighbors.relations import ComplexRelation, ContactRelation, InnerRelation
from sphsys.sph.dynamics import LocalDynamics
from sphsys.sph.riemann import AcousticRiemannSolver, FluxSolver, create_riemann_solver

logger = logging.getLogger(__name__)


def _row_dot(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    return np.einsum("ij,ij->i", a, b)


def make_riemann_solver(riemann_solver, fluid_i, fluid_j=None) -> FluxSolver:
    """Accepts a solver class or a solver name."""
    if isinstance(riemann_solver, str):
        return create_riemann_solver(riemann_solver, fluid_i, fluid_j)
    return riemann_solver(fluid_i, fluid_j)


class BaseIntegration(LocalDynamics):
    """Fluid body, its inner relation and the Riemann solver bound at construction."""

    def __init__(self, inner_relation: InnerRelation, riemann_solver=AcousticRiemannSolver):
        body = inner_relation.body
        if not isinstance(body, FluidBody):
            raise ConfigurationError(f"{type(self).__name__} needs a fluid body, got {body!r}")
        super().__init__(body)
        self.inner = inner_relation
        self.fluid = body.material
        self.riemann_solver = make_riemann_solver(riemann_solver, self.fluid, self.fluid)

    def setup_dynamics(self, dt: float = 0.0) -> None:
        particles = self.particles
        self.pos = particles.pos
        self.vel = particles.vel
        self.rho = particles.rho
        self.p = particles.p
        self.mass = particles.mass
        self.vol = particles.vol
        self.acc_prior = particles.acc_prior
        self.drho_dt = particles.register_variable("drho_dt")
        self.acc = particles.register_variable("acc", vector=True)


class Integration1stHalf(BaseIntegration):
    """Pressure relaxation with the Riemann solver."""

    def initialization(self, index_i: int, dt: float = 0.0) -> None:
        self.rho[index_i] += self.drho_dt[index_i] * dt * 0.5
        self.vol[index_i] = self.mass[index_i] / self.rho[index_i]
        self.p[index_i] = self.fluid.pressure(self.rho[index_i])
        self.pos[index_i] += self.vel[index_i] * dt * 0.5

    def interaction(self, index_i: int, dt: float = 0.0) -> None:
        neighborhood = self.inner.inner_configuration[index_i]
        p_i = self.p[index_i]
        p_j = self.p[neighborhood.j]

        acceleration = -((p_i + p_j) * neighborhood.dW_ijV_j) @ neighborhood.e_ij
        rho_dissipation = np.sum(self.riemann_solver.dissipative_u_jump(p_i - p_j) * neighborhood.dW_ijV_j)

        self.acc[index_i] = acceleration / self.rho[index_i]
        self.drho_dt[index_i] = rho_dissipation * self.rho[index_i]

    def update(self, index_i: int, dt: float = 0.0) -> None:
        self.vel[index_i] += (self.acc_prior[index_i] + self.acc[index_i]) * dt


class Integration2ndHalf(BaseIntegration):
    """Density relaxation with the Riemann solver."""

    def initialization(self, index_i: int, dt: float = 0.0) -> None:
        self.pos[index_i] += self.vel[index_i] * dt * 0.5

    def interaction(self, index_i: int, dt: float = 0.0) -> None:
        neighborhood = self.inner.inner_configuration[index_i]
        vel_i = self.vel[index_i]

        u_jump = _row_dot(vel_i - self.vel[neighborhood.j], neighborhood.e_ij)
        density_change_rate = np.sum(u_jump * neighborhood.dW_ijV_j)
        p_dissipation = (self.riemann_solver.dissipative_p_jump(u_jump) * neighborhood.dW_ijV_j) @ neighborhood.e_ij

        self.drho_dt[index_i] += density_change_rate * self.rho[index_i]
        self.acc[index_i] = p_dissipation / self.rho[index_i]

    def update(self, index_i: int, dt: float = 0.0) -> None:
        self.rho[index_i] += self.drho_dt[index_i] * dt * 0.5
        self.vel[index_i] += self.acc[index_i] * dt


class InteractionWithWall:
    """
    Wall data for the `...WithWall` variants: velocity, prescribed
    acceleration and normal of every contact wall body.
    """

    def _init_wall(self, wall_contact: ContactRelation) -> None:
        for wall in wall_contact.contact_bodies:
            if not isinstance(wall, SolidBody):
                raise ConfigurationError(f"wall contact body must be a solid body, got {wall!r}")
        self.wall_contact = wall_contact

    def _setup_wall(self) -> None:
        walls = [b.particles for b in self.wall_contact.contact_bodies]
        self.wall_vel = [w.vel for w in walls]
        self.wall_acc_ave = [w.get_variable("acc_ave") for w in walls]
        self.wall_n = [w.get_variable("normal") for w in walls]

    def wall_neighborhoods(self, index_i: int):
        for k, configuration in enumerate(self.wall_contact.contact_configuration):
            yield k, configuration[index_i]


def split_complex_relation(relation) -> tuple[InnerRelation, ContactRelation]:
    if isinstance(relation, ComplexRelation):
        return relation.inner, relation.contact
    raise ConfigurationError(f"wall variants need a complex relation (inner + wall contact), got {relation!r}")


class Integration1stHalfWithWall(InteractionWithWall, Integration1stHalf):
    def __init__(self, complex_relation: ComplexRelation, riemann_solver=AcousticRiemannSolver):
        inner, contact = split_complex_relation(complex_relation)
        Integration1stHalf.__init__(self, inner, riemann_solver)
        self._init_wall(contact)

    def setup_dynamics(self, dt: float = 0.0) -> None:
        super().setup_dynamics(dt)
        self._setup_wall()

    def interaction(self, index_i: int, dt: float = 0.0) -> None:
        super().interaction(index_i, dt)

        rho_i = self.rho[index_i]
        p_i = self.p[index_i]
        acc_prior_i = self.acc_prior[index_i]
        acceleration = np.zeros_like(acc_prior_i)
        rho_dissipation = 0.0

        for k, neighborhood in self.wall_neighborhoods(index_i):
            e_ij = neighborhood.e_ij
            face_wall_external_acceleration = _row_dot(acc_prior_i - self.wall_acc_ave[k][neighborhood.j], -e_ij)
            p_in_wall = p_i + rho_i * neighborhood.r_ij * np.maximum(0.0, face_wall_external_acceleration)
            acceleration -= ((p_i + p_in_wall) * neighborhood.dW_ijV_j) @ e_ij
            rho_dissipation += np.sum(
                self.riemann_solver.dissipative_u_jump(p_i - p_in_wall) * neighborhood.dW_ijV_j
            )

        self.acc[index_i] += acceleration / rho_i
        self.drho_dt[index_i] += rho_dissipation * rho_i


class Integration2ndHalfWithWall(InteractionWithWall, Integration2ndHalf):
    def __init__(self, complex_relation: ComplexRelation, riemann_solver=AcousticRiemannSolver):
        inner, contact = split_complex_relation(complex_relation)
        Integration2ndHalf.__init__(self, inner, riemann_solver)
        self._init_wall(contact)

    def setup_dynamics(self, dt: float = 0.0) -> None:
        super().setup_dynamics(dt)
        self._setup_wall()

    def interaction(self, index_i: int, dt: float = 0.0) -> None:
        super().interaction(index_i, dt)

        vel_i = self.vel[index_i]
        density_change_rate = 0.0
        p_dissipation = np.zeros_like(vel_i)

        for k, neighborhood in self.wall_neighborhoods(index_i):
            vel_wall = self.wall_vel[k][neighborhood.j]
            n_k = self.wall_n[k][neighborhood.j]

            vel_in_wall = 2.0 * vel_wall - vel_i
            density_change_rate += np.sum(_row_dot(vel_i - vel_in_wall, neighborhood.e_ij) * neighborhood.dW_ijV_j)
            u_jump = 2.0 * _row_dot(vel_i - vel_wall, n_k)
            p_dissipation += (self.riemann_solver.dissipative_p_jump(u_jump) * neighborhood.dW_ijV_j) @ n_k

        self.drho_dt[index_i] += density_change_rate * self.rho[index_i]
        self.acc[index_i] += p_dissipation / self.rho[index_i]
