from __future__ import annotations

import logging

import numpy as np

from sphsys.core.bodies import FictitiousBody, RealBody, SPHBody
from sphsys.core.errors import ConfigurationError
from sphsys.core.geometry import BoundingBox
from sphsys.neighbors.cell_linked_list import OutOfDomainPolicy

logger = logging.getLogger(__name__)


class SPHSystem:
    """
    Container of all bodies of one simulation.

    Holds the partition domain shared by every real body's cell-linked list,
    the reference resolution and the out-of-domain policy. Enforces the body
    placement rule: two real bodies are either disjoint or one contains the
    other; partial overlap is a configuration error.
    """

    def __init__(
        self,
        domain_lower,
        domain_upper,
        resolution_ref: float,
        out_of_domain_policy: OutOfDomainPolicy | str = OutOfDomainPolicy.CLAMP,
    ):
        lower = np.asarray(domain_lower, dtype=np.float64)
        upper = np.asarray(domain_upper, dtype=np.float64)
        if lower.shape != upper.shape or lower.ndim != 1 or lower.shape[0] not in (1, 2, 3):
            raise ConfigurationError("domain bounds must be vectors of dimension 1, 2 or 3")
        if np.any(upper <= lower):
            raise ConfigurationError(f"empty system domain: lower={lower}, upper={upper}")
        if resolution_ref <= 0.0:
            raise ConfigurationError(f"reference resolution must be > 0, got {resolution_ref}")

        self.domain = BoundingBox(lower=lower, upper=upper)
        self.resolution_ref = float(resolution_ref)
        try:
            self.out_of_domain_policy = OutOfDomainPolicy(out_of_domain_policy)
        except ValueError:
            raise ConfigurationError(f"unknown out-of-domain policy: {out_of_domain_policy!r}") from None

        self.bodies: list[SPHBody] = []

    @property
    def dim(self) -> int:
        return self.domain.dim

    @property
    def real_bodies(self) -> list[RealBody]:
        return [b for b in self.bodies if isinstance(b, RealBody)]

    def get_body(self, name: str) -> SPHBody:
        for body in self.bodies:
            if body.name == name:
                return body
        raise KeyError(f"no body named {name!r}")

    def add_body(self, body: SPHBody) -> None:
        if any(b.name == body.name for b in self.bodies):
            raise ConfigurationError(f"duplicate body name: {body.name!r}")
        self.check_body_compatibility(body)
        self.bodies.append(body)
        logger.debug("added %r to system", body)

    def check_body_compatibility(self, body: SPHBody) -> None:
        if isinstance(body, FictitiousBody):
            return
        box = body.bounding_box()
        if box is None:
            return
        for other in self.bodies:
            if other is body or isinstance(other, FictitiousBody):
                continue
            other_box = other.bounding_box()
            if other_box is not None and not box.is_compatible_with(other_box):
                raise ConfigurationError(
                    f"bodies {body.name!r} and {other.name!r} partially overlap; "
                    "bodies must be disjoint or one must contain the other"
                )

    def update_cell_linked_lists(self) -> None:
        for body in self.real_bodies:
            body.update_cell_linked_list()

    def snapshot(self) -> dict[str, dict[str, np.ndarray]]:
        return {b.name: b.particles.snapshot() for b in self.bodies if b.particles is not None}

    def restore(self, snapshot: dict[str, dict[str, np.ndarray]]) -> None:
        for name, data in snapshot.items():
            self.get_body(name).particles.restore(data)
