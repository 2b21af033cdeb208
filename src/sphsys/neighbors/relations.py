"""
Body relations: per-particle neighbor lists with precomputed kernel data.

- InnerRelation(body)                : neighbors within the same body (j != i).
- ContactRelation(body, [targets])   : neighbors in other bodies; one
                                       configuration per target, directed
                                       from `body` to each target.
- ComplexRelation(inner, contact)    : both, updated together.

Every configuration is stored in CSR form. For source particle i the slice
offsets[i]:offsets[i + 1] indexes

    j         neighbor index in the target body
    r_ij      distance |x_i - x_j|
    e_ij      unit vector (x_i - x_j) / r_ij  (from j to i)
    W_ij      kernel weight
    dW_ij     radial kernel derivative (<= 0)
    dW_ijV_j  dW_ij * vol_j

Configurations are rebuilt every step right after the cell-linked lists and
are read-only for the rest of the step.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

import numpy as np

from sphsys.core.bodies import FictitiousBody, NeighborSource, RealBody, SPHBody
from sphsys.core.errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Neighborhood:
    """Read-only view on the neighbors of one particle."""

    j: np.ndarray
    r_ij: np.ndarray
    e_ij: np.ndarray
    W_ij: np.ndarray
    dW_ij: np.ndarray
    dW_ijV_j: np.ndarray

    def __len__(self) -> int:
        return int(self.j.shape[0])


class NeighborConfiguration:
    """CSR neighbor lists of all source particles against one target body."""

    def __init__(self, n_source: int, dim: int):
        self.offsets = np.zeros((n_source + 1,), dtype=np.int64)
        self.j = np.zeros((0,), dtype=np.int64)
        self.r_ij = np.zeros((0,), dtype=np.float64)
        self.e_ij = np.zeros((0, dim), dtype=np.float64)
        self.W_ij = np.zeros((0,), dtype=np.float64)
        self.dW_ij = np.zeros((0,), dtype=np.float64)
        self.dW_ijV_j = np.zeros((0,), dtype=np.float64)

    def __len__(self) -> int:
        return int(self.offsets.shape[0] - 1)

    def __getitem__(self, i: int) -> Neighborhood:
        a, b = self.offsets[i], self.offsets[i + 1]
        return Neighborhood(
            j=self.j[a:b],
            r_ij=self.r_ij[a:b],
            e_ij=self.e_ij[a:b],
            W_ij=self.W_ij[a:b],
            dW_ij=self.dW_ij[a:b],
            dW_ijV_j=self.dW_ijV_j[a:b],
        )

    def neighbor_counts(self) -> np.ndarray:
        return np.diff(self.offsets)

    @property
    def total_pairs(self) -> int:
        return int(self.j.shape[0])


def search_pairs(
    source: SPHBody,
    target: NeighborSource,
    cutoff_radius: float,
    exclude_self: bool,
) -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """
    All (i, j) with |x_i - x_j| < cutoff, i an active source particle and j
    a particle binned in the target's cell-linked list.

    Source particles are binned with the target partition's own cell lookup
    (same out-of-domain policy), grouped by cell, and tested against the
    candidates of the surrounding stencil in one vectorized block per cell.

    Returns (i, j, r_ij, dx_ij) with dx_ij = x_i - x_j.
    """
    src_pos = source.particles.pos
    tgt_pos = target.particles.pos
    cll = target.cell_linked_list
    depth = cll.stencil_depth(cutoff_radius)

    src_ids = source.particles.active_indices
    empty = (
        np.zeros((0,), dtype=np.int64),
        np.zeros((0,), dtype=np.int64),
        np.zeros((0,), dtype=np.float64),
        np.zeros((0, source.dim), dtype=np.float64),
    )
    if src_ids.size == 0 or cll.sorted_particles.size == 0:
        return empty

    src_cells = cll.cell_ids(src_pos[src_ids])
    order = np.argsort(src_cells, kind="stable")
    src_ids = src_ids[order]
    src_cells = src_cells[order]
    bounds = np.flatnonzero(np.diff(src_cells)) + 1
    starts = np.concatenate([[0], bounds])
    ends = np.concatenate([bounds, [src_ids.size]])

    i_chunks, j_chunks, r_chunks, dx_chunks = [], [], [], []
    for a, b in zip(starts, ends):
        members = src_ids[a:b]
        cand = cll.candidates(int(src_cells[a]), depth)
        if cand.size == 0:
            continue

        dx = src_pos[members][:, None, :] - tgt_pos[cand][None, :, :]
        dist = np.sqrt(np.sum(dx * dx, axis=2))
        mask = dist < cutoff_radius
        if exclude_self:
            mask &= members[:, None] != cand[None, :]

        li, lj = np.nonzero(mask)
        if li.size == 0:
            continue
        i_chunks.append(members[li])
        j_chunks.append(cand[lj])
        r_chunks.append(dist[li, lj])
        dx_chunks.append(dx[li, lj])

    if not i_chunks:
        return empty

    i_all = np.concatenate(i_chunks)
    j_all = np.concatenate(j_chunks)
    r_all = np.concatenate(r_chunks)
    dx_all = np.concatenate(dx_chunks, axis=0)

    # deterministic order: by source particle, then by neighbor index
    order = np.lexsort((j_all, i_all))
    return i_all[order], j_all[order], r_all[order], dx_all[order]


def build_configuration(source: SPHBody, target: NeighborSource, exclude_self: bool) -> NeighborConfiguration:
    """Neighbor search plus kernel evaluation with the source body's kernel."""
    cutoff = source.cutoff_radius
    h = source.h
    i, j, r, dx = search_pairs(source, target, cutoff, exclude_self)

    config = NeighborConfiguration(source.particles.n, source.dim)
    counts = np.bincount(i, minlength=source.particles.n)
    np.cumsum(counts, out=config.offsets[1:])

    safe_r = np.where(r > 0.0, r, 1.0)
    e = np.where((r > 0.0)[:, None], dx / safe_r[:, None], 0.0)

    config.j = j
    config.r_ij = r
    config.e_ij = e
    config.W_ij = np.asarray(source.kernel.W(r, h), dtype=np.float64)
    config.dW_ij = np.asarray(source.kernel.dW(r, h), dtype=np.float64)
    config.dW_ijV_j = config.dW_ij * target.particles.vol[j]
    return config


class BaseRelation(ABC):
    """A body and its neighbor configuration, rebuilt by `update_configuration`."""

    def __init__(self, body: SPHBody):
        if body.particles is None:
            raise ConfigurationError(f"body {body.name!r} must have particles before building relations")
        self.body = body
        self.sph_body = body

    @abstractmethod
    def update_configuration(self) -> None:
        """Rebuild the neighbor lists from the current cell-linked lists."""


class InnerRelation(BaseRelation):
    """buildInner: neighbors of every particle within its own body."""

    def __init__(self, body: RealBody):
        if not isinstance(body, RealBody):
            raise ConfigurationError(f"inner relation needs a real body, got {body!r}")
        super().__init__(body)
        self.inner_configuration = NeighborConfiguration(body.particles.n, body.dim)

    def update_configuration(self) -> None:
        self.inner_configuration = build_configuration(self.body, self.body, exclude_self=True)

    def __getitem__(self, i: int) -> Neighborhood:
        return self.inner_configuration[i]


class ContactRelation(BaseRelation):
    """
    buildContact: for each particle of `body`, neighbors in every contact
    body. Directed; build a second relation for the reverse direction.
    """

    def __init__(self, body: SPHBody, contact_bodies: list[RealBody]):
        super().__init__(body)
        if not contact_bodies:
            raise ConfigurationError("contact relation needs at least one contact body")
        for target in contact_bodies:
            if not isinstance(target, RealBody) or isinstance(target, FictitiousBody):
                raise ConfigurationError(f"contact target {target!r} has no cell-linked list")
            if target is body:
                raise ConfigurationError("a body cannot be in contact with itself; use InnerRelation")
            if target.particles is None:
                raise ConfigurationError(f"contact body {target.name!r} has no particles")
        self.contact_bodies = list(contact_bodies)
        self.contact_configuration = [
            NeighborConfiguration(body.particles.n, body.dim) for _ in self.contact_bodies
        ]

    def update_configuration(self) -> None:
        self.contact_configuration = [
            build_configuration(self.body, target, exclude_self=False) for target in self.contact_bodies
        ]


class ComplexRelation:
    """Inner plus contact relation of one body, updated together."""

    def __init__(self, inner: InnerRelation, contact: ContactRelation):
        if inner.body is not contact.body:
            raise ConfigurationError("inner and contact relations must share the same body")
        self.body = inner.body
        self.inner = inner
        self.contact = contact

    def update_configuration(self) -> None:
        self.inner.update_configuration()
        self.contact.update_configuration()
