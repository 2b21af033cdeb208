from __future__ import annotations

import numpy as np

from sphsys.core.bodies import FluidBody
from sphsys.core.errors import ConfigurationError
from sphsys.neighbors.relations import ComplexRelation, InnerRelation
from sphsys.sph.dynamics import LocalDynamics


def _inverse(r: np.ndarray, eps: float = 1e-12) -> np.ndarray:
    return np.divide(1.0, r, out=np.zeros_like(r), where=r > eps)


class ViscousAcceleration(LocalDynamics):
    """
    Explicit viscosity using the discrete Laplace operator

        lap(A)_i = - sum_j (m_j / rho_j) A_ij 2 |grad_i W_ij| / r_ij

    with A_ij = A_i - A_j. The acceleration nu * lap(v)_i is added to the
    prior acceleration, so it must run after TimeStepInitialization and
    before the pressure relaxation.

    Walls enter with no-slip ghost velocity 2 v_wall - v_i (A_ij = 2 (v_i - v_wall))
    when a complex relation is given.
    """

    def __init__(self, relation: InnerRelation | ComplexRelation):
        if isinstance(relation, ComplexRelation):
            self.inner = relation.inner
            self.contact = relation.contact
        else:
            self.inner = relation
            self.contact = None
        body = self.inner.body
        if not isinstance(body, FluidBody):
            raise ConfigurationError(f"viscous acceleration needs a fluid body, got {body!r}")
        super().__init__(body)
        self.nu = body.material.kinematic_viscosity
        self.particles.register_variable("acc_viscous", vector=True)

    def setup_dynamics(self, dt: float = 0.0) -> None:
        particles = self.particles
        self.vel = particles.vel
        self.mass = particles.mass
        self.rho = particles.rho
        self.acc_prior = particles.acc_prior
        self.acc_viscous = particles.get_variable("acc_viscous")
        self.walls = [] if self.contact is None else [b.particles for b in self.contact.contact_bodies]

    def interaction(self, index_i: int, dt: float = 0.0) -> None:
        vel_i = self.vel[index_i]
        neighborhood = self.inner.inner_configuration[index_i]

        j = neighborhood.j
        # dW <= 0, so 2 dW / r = -2 |grad W| / r
        factor = (self.mass[j] / self.rho[j]) * 2.0 * neighborhood.dW_ij * _inverse(neighborhood.r_ij)
        lap_v = factor @ (vel_i - self.vel[j])

        for k, configuration in enumerate(self.contact.contact_configuration if self.contact else []):
            wall = configuration[index_i]
            factor = self.walls[k].vol[wall.j] * 2.0 * wall.dW_ij * _inverse(wall.r_ij)
            lap_v += factor @ (2.0 * (vel_i - self.walls[k].vel[wall.j]))

        self.acc_viscous[index_i] = self.nu * lap_v

    def update(self, index_i: int, dt: float = 0.0) -> None:
        self.acc_prior[index_i] += self.acc_viscous[index_i]
