"""
Cell-linked list for O(N) neighbor search.

The partition domain [lower, upper] is split into a uniform grid whose cell
side is >= the cutoff radius, so all neighbors of a particle lie in its own
cell or in the 3^dim block around it (9 cells in 2D, 27 in 3D).

Storage is a CSR layout rebuilt from scratch on every `build()`:
    cell_start[c] : cell_start[c + 1]  ->  slice of `sorted_particles`
holding the indices of the particles binned in linear cell c.

Out-of-domain particles follow an explicit policy:
- CLAMP  : the particle is binned into the nearest boundary cell. Because
           clamping integer cell coordinates never increases their distance,
           two particles closer than the cutoff stay in adjacent cells and
           neighbor search remains exact.
- REJECT : DomainBoundaryError is raised.
The relation builder bins its source particles through this same class, so
partition and relations always apply one policy.
"""

from __future__ import annotations

import itertools
import logging
import math
from enum import Enum

import numpy as np

from sphsys.core.errors import ConfigurationError, DomainBoundaryError, NumericalInstabilityError

logger = logging.getLogger(__name__)


class OutOfDomainPolicy(str, Enum):
    CLAMP = "clamp"
    REJECT = "reject"


class CellLinkedList:
    """
    Uniform cell grid for one real body. Deterministic cell iteration.
    """

    def __init__(
        self,
        domain_lower,
        domain_upper,
        cutoff_radius: float,
        policy: OutOfDomainPolicy | str = OutOfDomainPolicy.CLAMP,
    ):
        self.cutoff_radius = float(cutoff_radius)
        if not self.cutoff_radius > 0.0:
            raise ConfigurationError(f"cutoff radius must be > 0, got {cutoff_radius}")

        self.lower = np.asarray(domain_lower, dtype=np.float64)
        self.upper = np.asarray(domain_upper, dtype=np.float64)
        if self.lower.shape != self.upper.shape or self.lower.ndim != 1:
            raise ConfigurationError("domain lower/upper must be vectors of equal length")
        if np.any(self.upper <= self.lower):
            raise ConfigurationError(f"empty partition domain: lower={self.lower}, upper={self.upper}")

        try:
            self.policy = OutOfDomainPolicy(policy)
        except ValueError:
            raise ConfigurationError(f"unknown out-of-domain policy: {policy!r}") from None

        self.dim = int(self.lower.shape[0])
        extent = self.upper - self.lower
        self.number_of_cells = np.maximum(np.floor(extent / self.cutoff_radius).astype(np.int64), 1)
        # cell side per axis; >= cutoff by construction
        self.cell_size = extent / self.number_of_cells
        self.total_cells = int(np.prod(self.number_of_cells))

        self.cell_start = np.zeros((self.total_cells + 1,), dtype=np.int64)
        self.sorted_particles = np.zeros((0,), dtype=np.int64)
        self.particle_cell = np.zeros((0,), dtype=np.int64)
        self.out_of_domain = np.zeros((0,), dtype=np.int64)
        self._stencils: dict[int, np.ndarray] = {}

    # -- cell lookup ------------------------------------------------------

    def cell_coordinates(self, positions: np.ndarray) -> np.ndarray:
        """Integer cell coordinates (M, dim) for positions (M, dim), policy applied."""
        return self._locate(positions)[0]

    def _locate(self, positions: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        positions = np.asarray(positions, dtype=np.float64).reshape(-1, self.dim)
        if not np.isfinite(positions).all():
            bad = np.flatnonzero(~np.isfinite(positions).all(axis=1))
            raise NumericalInstabilityError(
                f"{bad.size} particle position(s) are NaN/Inf; first index {int(bad[0])}",
                indices=bad,
            )

        coords = np.floor((positions - self.lower) / self.cell_size).astype(np.int64)
        outside = np.flatnonzero(np.any((coords < 0) | (coords >= self.number_of_cells), axis=1))

        if outside.size:
            if self.policy is OutOfDomainPolicy.REJECT:
                raise DomainBoundaryError(
                    f"{outside.size} particle(s) outside partition domain "
                    f"[{self.lower}, {self.upper}]; first index {int(outside[0])}",
                    indices=outside,
                )
            logger.warning(
                "clamped %d out-of-domain particle(s) into boundary cells", outside.size
            )
            coords = np.clip(coords, 0, self.number_of_cells - 1)

        return coords, outside

    def cell_ids(self, positions: np.ndarray) -> np.ndarray:
        coords = self.cell_coordinates(positions)
        return np.ravel_multi_index(tuple(coords.T), tuple(self.number_of_cells))

    def cell_id_from_coordinates(self, coords) -> int:
        return int(np.ravel_multi_index(tuple(int(c) for c in coords), tuple(self.number_of_cells)))

    # -- build ------------------------------------------------------------

    def build(self, positions: np.ndarray, active: np.ndarray | None = None) -> None:
        """
        Clear and re-insert every (active) particle.

        Counting sort on linear cell ids: per-cell counts give the CSR
        offsets, and a stable sort keeps particles ordered by index inside
        each cell.
        """
        positions = np.asarray(positions, dtype=np.float64)
        n = positions.shape[0]
        ids = np.arange(n, dtype=np.int64) if active is None else np.flatnonzero(active)

        if ids.size:
            coords, outside = self._locate(positions[ids])
            cells = np.ravel_multi_index(tuple(coords.T), tuple(self.number_of_cells))
        else:
            cells = np.zeros((0,), dtype=np.int64)
            outside = np.zeros((0,), dtype=np.int64)
        self.out_of_domain = ids[outside]

        order = np.argsort(cells, kind="stable")
        counts = np.bincount(cells, minlength=self.total_cells)

        self.cell_start = np.zeros((self.total_cells + 1,), dtype=np.int64)
        np.cumsum(counts, out=self.cell_start[1:])
        self.sorted_particles = ids[order]

        self.particle_cell = np.full((n,), -1, dtype=np.int64)
        self.particle_cell[ids] = cells

    # -- queries ----------------------------------------------------------

    def particles_in_cell(self, cell_id: int) -> np.ndarray:
        return self.sorted_particles[self.cell_start[cell_id]:self.cell_start[cell_id + 1]]

    def occupied_cells(self) -> np.ndarray:
        return np.flatnonzero(np.diff(self.cell_start) > 0)

    def _stencil(self, depth: int) -> np.ndarray:
        if depth not in self._stencils:
            offsets = list(itertools.product(range(-depth, depth + 1), repeat=self.dim))
            self._stencils[depth] = np.array(offsets, dtype=np.int64)
        return self._stencils[depth]

    def get_cell_neighbors(self, cell_id: int, depth: int = 1) -> np.ndarray:
        """
        Ids of the cells in the (2*depth+1)^dim block around `cell_id`
        (itself included), restricted to the grid.
        """
        center = np.array(np.unravel_index(int(cell_id), tuple(self.number_of_cells)), dtype=np.int64)
        coords = center[None, :] + self._stencil(depth)
        inside = np.all((coords >= 0) & (coords < self.number_of_cells), axis=1)
        coords = coords[inside]
        return np.ravel_multi_index(tuple(coords.T), tuple(self.number_of_cells))

    def candidates(self, cell_id: int, depth: int = 1) -> np.ndarray:
        """All particles binned in the stencil around `cell_id`."""
        chunks = [self.particles_in_cell(c) for c in self.get_cell_neighbors(cell_id, depth)]
        if not chunks:
            return np.zeros((0,), dtype=np.int64)
        return np.concatenate(chunks)

    def stencil_depth(self, radius: float) -> int:
        """Number of cell layers needed to cover `radius`."""
        return max(1, int(math.ceil(float(radius) / float(np.min(self.cell_size)) - 1e-12)))

    def query(self, i: int, positions: np.ndarray) -> list[int]:
        """Neighbors j != i of binned particle i with distance < cutoff."""
        cell = int(self.particle_cell[i])
        if cell < 0:
            return []
        cand = self.candidates(cell)
        cand = cand[cand != i]
        d = np.linalg.norm(positions[cand] - positions[i], axis=1)
        return [int(j) for j in cand[d < self.cutoff_radius]]
