"""
Minimal shape collaborators used by bodies and the scene builder.

Only what the core consumes is provided here:
- bounding-box queries (domain containment and the body overlap rule),
- point-in-region tests (particle seeding),
- normal directions (wall normals pointing into the fluid).

Boolean combination of shapes is deliberately not part of this module.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import numpy as np

from sphsys.core.errors import ConfigurationError


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned box [lower, upper]."""

    lower: np.ndarray
    upper: np.ndarray

    @classmethod
    def from_points(cls, points: np.ndarray) -> BoundingBox:
        points = np.asarray(points, dtype=np.float64)
        return cls(lower=points.min(axis=0), upper=points.max(axis=0))

    @property
    def dim(self) -> int:
        return int(self.lower.shape[0])

    def contains_box(self, other: BoundingBox) -> bool:
        return bool(np.all(self.lower <= other.lower) and np.all(other.upper <= self.upper))

    def is_disjoint(self, other: BoundingBox) -> bool:
        # touching faces count as disjoint
        return bool(np.any(self.upper <= other.lower) or np.any(other.upper <= self.lower))

    def is_compatible_with(self, other: BoundingBox) -> bool:
        """Two bodies may coexist if they are disjoint or one contains the other."""
        return self.is_disjoint(other) or self.contains_box(other) or other.contains_box(self)

    def expanded(self, margin: float) -> BoundingBox:
        return BoundingBox(lower=self.lower - margin, upper=self.upper + margin)


class Shape(Protocol):
    """Geometry consumed by bodies and the particle generator."""

    def contains(self, points: np.ndarray) -> np.ndarray:
        ...

    def bounding_box(self) -> BoundingBox:
        ...

    def normal_direction(self, point: np.ndarray) -> np.ndarray:
        ...


class Box:
    """Axis-aligned solid box."""

    def __init__(self, lower, upper):
        self.lower = np.asarray(lower, dtype=np.float64)
        self.upper = np.asarray(upper, dtype=np.float64)
        if self.lower.shape != self.upper.shape:
            raise ConfigurationError("box lower/upper must have the same shape")
        if np.any(self.upper <= self.lower):
            raise ConfigurationError(f"degenerate box: lower={self.lower}, upper={self.upper}")

    def contains(self, points: np.ndarray) -> np.ndarray:
        points = np.atleast_2d(points)
        return np.all((points >= self.lower) & (points <= self.upper), axis=1)

    def bounding_box(self) -> BoundingBox:
        return BoundingBox(lower=self.lower.copy(), upper=self.upper.copy())

    def normal_direction(self, point: np.ndarray) -> np.ndarray:
        """Outward normal of the nearest face."""
        point = np.asarray(point, dtype=np.float64)
        dim = self.lower.shape[0]
        dist_lo = np.abs(point - self.lower)
        dist_hi = np.abs(self.upper - point)
        d_lo = int(np.argmin(dist_lo))
        d_hi = int(np.argmin(dist_hi))
        n = np.zeros((dim,), dtype=np.float64)
        if dist_lo[d_lo] <= dist_hi[d_hi]:
            n[d_lo] = -1.0
        else:
            n[d_hi] = 1.0
        return n


class BoxShell:
    """
    Container wall: the region between an inner box and the same box grown
    by `thickness` on every side. Normals point toward the inner box, i.e.
    from the wall into the contained fluid.
    """

    def __init__(self, inner: Box, thickness: float):
        if thickness <= 0.0:
            raise ConfigurationError("wall thickness must be > 0")
        self.inner = inner
        self.thickness = float(thickness)
        self.outer = Box(inner.lower - self.thickness, inner.upper + self.thickness)

    def contains(self, points: np.ndarray) -> np.ndarray:
        points = np.atleast_2d(points)
        inside_inner = np.all((points > self.inner.lower) & (points < self.inner.upper), axis=1)
        return self.outer.contains(points) & ~inside_inner

    def bounding_box(self) -> BoundingBox:
        return self.outer.bounding_box()

    def normal_direction(self, point: np.ndarray) -> np.ndarray:
        point = np.asarray(point, dtype=np.float64)
        closest = np.clip(point, self.inner.lower, self.inner.upper)
        d = closest - point
        dn = float(np.linalg.norm(d))
        if dn > 0.0:
            return d / dn
        # point on or inside the inner box: pull toward the interior
        return -self.inner.normal_direction(point)
