from __future__ import annotations

import numpy as np

from sphsys.core.bodies import FluidBody
from sphsys.core.errors import ConfigurationError
from sphsys.neighbors.relations import ComplexRelation, InnerRelation
from sphsys.sph.dynamics import LocalDynamics


class DensitySummation(LocalDynamics):
    """
    Density reconstruction via SPH summation:

        rho_i = m_i W_0 + sum_j m_j W_ij  (+ sum_k rho0 Vol_k W_ik over walls)

    Wall particles contribute with the fluid's reference density and their
    own volume, so a fluid particle next to a wall does not see a density
    deficit. Boundary particles themselves are not summed (they are not
    integrated).

    With `free_surface=True` the result is floored at rho0, so particles
    near a free surface with missing neighbors are not pulled inward.

    Notes:
    - This is purely geometric + mass-based, no continuity equation integration.
    - Volume and pressure follow from the new density.
    """

    def __init__(self, relation: InnerRelation | ComplexRelation, free_surface: bool = False):
        if isinstance(relation, ComplexRelation):
            self.inner = relation.inner
            self.contact = relation.contact
        else:
            self.inner = relation
            self.contact = None
        body = self.inner.body
        if not isinstance(body, FluidBody):
            raise ConfigurationError(f"density summation needs a fluid body, got {body!r}")
        super().__init__(body)
        self.fluid = body.material
        self.free_surface = bool(free_surface)
        self.W0 = body.kernel.W0(body.h)
        self.particles.register_variable("rho_sum")

    def setup_dynamics(self, dt: float = 0.0) -> None:
        particles = self.particles
        self.rho = particles.rho
        self.p = particles.p
        self.mass = particles.mass
        self.vol = particles.vol
        self.rho_sum = particles.get_variable("rho_sum")
        self.wall_vol = [] if self.contact is None else [b.particles.vol for b in self.contact.contact_bodies]

    def interaction(self, index_i: int, dt: float = 0.0) -> None:
        # include self contribution (j = i) like in standard density summation
        rho_i = self.mass[index_i] * self.W0

        neighborhood = self.inner.inner_configuration[index_i]
        rho_i += float(np.sum(self.mass[neighborhood.j] * neighborhood.W_ij))

        if self.contact is not None:
            rho0 = self.fluid.rho0
            for k, configuration in enumerate(self.contact.contact_configuration):
                wall = configuration[index_i]
                rho_i += rho0 * float(np.sum(self.wall_vol[k][wall.j] * wall.W_ij))

        if self.free_surface:
            rho_i = max(rho_i, self.fluid.rho0)
        self.rho_sum[index_i] = rho_i

    def update(self, index_i: int, dt: float = 0.0) -> None:
        self.rho[index_i] = self.rho_sum[index_i]
        self.vol[index_i] = self.mass[index_i] / self.rho[index_i]
        self.p[index_i] = self.fluid.pressure(self.rho[index_i])
