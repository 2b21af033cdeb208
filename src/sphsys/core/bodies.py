"""
SPH bodies: named particle sets sharing a resolution and a material.

- RealBody: owns a cell-linked list and takes part in neighbor search.
  FluidBody and SolidBody (walls) are real bodies.
- FictitiousBody: no spatial search structure. Its particles (observers,
  gauges) are only ever the source side of a contact relation; their state
  is derived from real bodies and never integrated.

Shapes handed to a body should either contain each other or be disjoint;
partial overlap between real bodies is rejected by SPHSystem.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import numpy as np

from sphsys.core.errors import ConfigurationError
from sphsys.core.geometry import BoundingBox, Shape
from sphsys.core.materials import Solid, WeaklyCompressibleFluid
from sphsys.core.state import BaseParticles
from sphsys.neighbors.cell_linked_list import CellLinkedList
from sphsys.sph.kernels import Kernel, create_kernel

if TYPE_CHECKING:
    from sphsys.core.system import SPHSystem

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SPHAdaptation:
    """
    Discretization of a body: particle spacing, smoothing length
    h = h_ratio * spacing and the kernel used for all of its relations.
    """

    spacing: float
    h_ratio: float = 1.3
    kernel_name: str = "cubic_spline"

    def __post_init__(self) -> None:
        if self.spacing <= 0.0:
            raise ConfigurationError(f"particle spacing must be > 0, got {self.spacing}")
        if self.h_ratio <= 0.0:
            raise ConfigurationError(f"smoothing length ratio must be > 0, got {self.h_ratio}")

    @property
    def h(self) -> float:
        return self.h_ratio * self.spacing

    def kernel(self, dim: int) -> Kernel:
        return create_kernel(self.kernel_name, dim)


class NeighborSource(Protocol):
    """Capability of a body that can be searched for neighbors."""

    name: str
    particles: BaseParticles
    cell_linked_list: CellLinkedList


class SPHBody:
    def __init__(
        self,
        system: SPHSystem,
        name: str,
        material,
        adaptation: SPHAdaptation | None = None,
        shape: Shape | None = None,
    ):
        self.system = system
        self.name = str(name)
        self.material = material
        self.adaptation = adaptation or SPHAdaptation(spacing=system.resolution_ref)
        self.shape = shape
        self.kernel = self.adaptation.kernel(system.dim)
        self.particles: BaseParticles | None = None
        system.add_body(self)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"

    @property
    def dim(self) -> int:
        return self.system.dim

    @property
    def h(self) -> float:
        return self.adaptation.h

    @property
    def cutoff_radius(self) -> float:
        return self.kernel.cutoff_radius(self.h)

    @property
    def reference_density(self) -> float:
        return float(self.material.rho0)

    def bounding_box(self) -> BoundingBox | None:
        if self.shape is not None:
            return self.shape.bounding_box()
        if self.particles is not None and self.particles.n > 0:
            return BoundingBox.from_points(self.particles.pos)
        return None

    def generate_particles(
        self,
        positions: np.ndarray,
        volumes: np.ndarray | float | None = None,
        velocities: np.ndarray | None = None,
    ) -> BaseParticles:
        positions = np.array(positions, dtype=np.float64, ndmin=2)
        if positions.shape[1] != self.dim:
            raise ConfigurationError(
                f"body {self.name!r}: positions have dimension {positions.shape[1]}, system is {self.dim}D"
            )
        if volumes is None:
            volumes = self.adaptation.spacing ** self.dim

        self.particles = BaseParticles.from_positions(
            positions, volumes, rho0=self.reference_density, velocities=velocities
        )
        self._register_body_variables()
        # the particle cloud may reveal an overlap the shape did not
        self.system.check_body_compatibility(self)
        logger.debug("body %s: generated %d particles", self.name, self.particles.n)
        return self.particles

    def _register_body_variables(self) -> None:
        pass


class RealBody(SPHBody):
    def __init__(self, system, name, material, adaptation=None, shape=None):
        super().__init__(system, name, material, adaptation=adaptation, shape=shape)
        self.cell_linked_list = CellLinkedList(
            system.domain.lower,
            system.domain.upper,
            self.cutoff_radius,
            policy=system.out_of_domain_policy,
        )

    def update_cell_linked_list(self) -> None:
        if self.particles is None:
            raise ConfigurationError(f"body {self.name!r} has no particles")
        self.cell_linked_list.build(self.particles.pos, self.particles.active)


class FluidBody(RealBody):
    def __init__(self, system, name, material: WeaklyCompressibleFluid, adaptation=None, shape=None):
        if not isinstance(material, WeaklyCompressibleFluid):
            raise ConfigurationError(f"fluid body {name!r} needs a fluid material")
        super().__init__(system, name, material, adaptation=adaptation, shape=shape)


class SolidBody(RealBody):
    """
    Wall body. Carries the variables wall interactions read:
    `normal` (unit, pointing from the wall into the fluid) and `acc_ave`
    (prescribed wall acceleration). `vel` is the prescribed wall velocity.
    """

    def __init__(self, system, name, material: Solid | None = None, adaptation=None, shape=None):
        super().__init__(system, name, material or Solid(), adaptation=adaptation, shape=shape)

    def _register_body_variables(self) -> None:
        self.particles.register_variable("normal", vector=True)
        self.particles.register_variable("acc_ave", vector=True)


class FictitiousBody(SPHBody):
    """Body without a cell-linked list; excluded from the overlap rule."""


class ObserverBody(FictitiousBody):
    """Gauge particles sampling real bodies through contact relations."""

    def __init__(self, system, name, adaptation=None):
        super().__init__(system, name, Solid(), adaptation=adaptation)
