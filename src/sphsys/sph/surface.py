"""
Free-surface indication by position divergence.

For a particle with a full kernel support the discrete divergence of the
position field

    div_r_i = - sum_j r_ij dW_ijV_j

equals the dimension; it drops near a free surface where neighbors are
missing. Particles with div_r_i < 0.75 * dim are flagged (indicator = 1).
Wall contacts count as neighbors, so fluid particles resting on a wall are
not flagged.

The normalized gradient of the same sum, n_i = -sum_j e_ij dW_ijV_j, points
out of the fluid and is stored as the surface normal.
"""

from __future__ import annotations

import numpy as np

from sphsys.neighbors.relations import ComplexRelation, InnerRelation
from sphsys.sph.dynamics import LocalDynamics

SURFACE_THRESHOLD_FACTOR = 0.75


class FreeSurfaceIndication(LocalDynamics):
    def __init__(self, relation: InnerRelation | ComplexRelation, threshold_factor: float = SURFACE_THRESHOLD_FACTOR):
        if isinstance(relation, ComplexRelation):
            self.inner = relation.inner
            self.contact = relation.contact
        else:
            self.inner = relation
            self.contact = None
        super().__init__(self.inner.body)
        self.threshold = float(threshold_factor) * self.body.dim

        particles = self.particles
        particles.register_variable("indicator", dtype=np.int64, initial=0)
        particles.register_variable("pos_div")
        particles.register_variable("normal", vector=True)

    def setup_dynamics(self, dt: float = 0.0) -> None:
        self.indicator = self.particles.get_variable("indicator")
        self.pos_div = self.particles.get_variable("pos_div")
        self.normal = self.particles.get_variable("normal")

    def _neighborhoods(self, index_i: int):
        yield self.inner.inner_configuration[index_i]
        if self.contact is not None:
            for configuration in self.contact.contact_configuration:
                yield configuration[index_i]

    def interaction(self, index_i: int, dt: float = 0.0) -> None:
        pos_div = 0.0
        gradient = np.zeros((self.body.dim,), dtype=np.float64)
        for neighborhood in self._neighborhoods(index_i):
            pos_div -= float(np.sum(neighborhood.r_ij * neighborhood.dW_ijV_j))
            gradient -= neighborhood.dW_ijV_j @ neighborhood.e_ij

        norm = float(np.linalg.norm(gradient))
        self.pos_div[index_i] = pos_div
        self.normal[index_i] = gradient / norm if norm > 1e-12 else 0.0
        self.indicator[index_i] = 1 if pos_div < self.threshold else 0
