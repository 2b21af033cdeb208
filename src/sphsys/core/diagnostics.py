"""
Observability: per-step diagnostics ("vital signs") and sanity checks.

What this module does:
- Defines a structured `StepDiagnostics` snapshot of one fluid body after a
  step: velocity, density, relative density error, pressure and neighbor
  counts over the active particles.
- `check_numerical_sanity` raises NumericalInstabilityError when a body's
  state became meaningless (NaN/Inf, or non-positive density of a fluid).

Both are strictly read-only: they never modify the particle state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from sphsys.core.bodies import FluidBody, SPHBody
from sphsys.core.errors import NumericalInstabilityError
from sphsys.neighbors.relations import InnerRelation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StepDiagnostics:
    """
    Structured diagnostics of one body after one step.

    All min/mean/max values are computed on active particles only.
    """

    step: int
    dt: float
    time: float
    body: str
    n_active: int

    v_max: float

    rho_min: float
    rho_mean: float
    rho_max: float

    rho_rel_err_min: float
    rho_rel_err_mean: float
    rho_rel_err_max: float

    p_min: float
    p_mean: float
    p_max: float

    neigh_min: int
    neigh_mean: float
    neigh_max: int

    def format_line(self) -> str:
        return (
            f"[STEP {self.step:04d}] t={self.time:.4e} dt={self.dt:.3e} "
            f"|v|max={self.v_max:.3e} "
            f"rho(min/avg/max)={self.rho_min:.2f}/{self.rho_mean:.2f}/{self.rho_max:.2f} "
            f"err% (avg)={100.0 * self.rho_rel_err_mean:.2f} "
            f"p(min/avg/max)={self.p_min:.2f}/{self.p_mean:.2f}/{self.p_max:.2f} "
            f"neigh(min/avg/max)={self.neigh_min}/{self.neigh_mean:.1f}/{self.neigh_max}"
        )


def compute_step_diagnostics(
    step: int,
    dt: float,
    time: float,
    body: SPHBody,
    inner_relation: InnerRelation | None = None,
) -> StepDiagnostics:
    """
    Compute diagnostics for a body without mutating its state.

    Args:
        step: 1-based step index for logging.
        dt: time step used in this step.
        time: physical time after the step.
        body: the body to report on.
        inner_relation: optional inner relation of `body`; when given, the
            neighbor counts of its current configuration are reported.

    Returns:
        StepDiagnostics with min/mean/max values over active particles.
    """
    particles = body.particles
    rho0 = body.reference_density
    ids = particles.active_indices

    if ids.size == 0:
        # Degenerate body: avoid reductions on empty arrays.
        return StepDiagnostics(
            step=int(step), dt=float(dt), time=float(time), body=body.name, n_active=0,
            v_max=0.0,
            rho_min=0.0, rho_mean=0.0, rho_max=0.0,
            rho_rel_err_min=0.0, rho_rel_err_mean=0.0, rho_rel_err_max=0.0,
            p_min=0.0, p_mean=0.0, p_max=0.0,
            neigh_min=0, neigh_mean=0.0, neigh_max=0,
        )

    v_max = float(np.max(np.linalg.norm(particles.vel[ids], axis=1)))

    rho = particles.rho[ids]
    rel_err = (rho - rho0) / rho0
    p = particles.p[ids]

    if inner_relation is not None and len(inner_relation.inner_configuration) == particles.n:
        neigh_counts = inner_relation.inner_configuration.neighbor_counts()[ids]
    else:
        neigh_counts = np.zeros((ids.size,), dtype=np.int64)

    return StepDiagnostics(
        step=int(step),
        dt=float(dt),
        time=float(time),
        body=body.name,
        n_active=int(ids.size),
        v_max=v_max,
        rho_min=float(np.min(rho)),
        rho_mean=float(np.mean(rho)),
        rho_max=float(np.max(rho)),
        rho_rel_err_min=float(np.min(rel_err)),
        rho_rel_err_mean=float(np.mean(rel_err)),
        rho_rel_err_max=float(np.max(rel_err)),
        p_min=float(np.min(p)),
        p_mean=float(np.mean(p)),
        p_max=float(np.max(p)),
        neigh_min=int(np.min(neigh_counts)),
        neigh_mean=float(np.mean(neigh_counts)),
        neigh_max=int(np.max(neigh_counts)),
    )


def check_numerical_sanity(bodies: list[SPHBody]) -> None:
    """Raise NumericalInstabilityError on the first body with a broken state."""
    for body in bodies:
        particles = body.particles
        if particles is None:
            continue
        ids = particles.active_indices

        for name in ("pos", "vel", "rho", "p"):
            values = particles.get_variable(name)[ids]
            finite = np.isfinite(values) if values.ndim == 1 else np.isfinite(values).all(axis=1)
            if not finite.all():
                bad = ids[~finite]
                raise NumericalInstabilityError(
                    f"body {body.name!r}: {bad.size} particle(s) with non-finite {name}; first index {int(bad[0])}",
                    body_name=body.name,
                    indices=bad,
                )

        if isinstance(body, FluidBody):
            non_positive = particles.rho[ids] <= 0.0
            if non_positive.any():
                bad = ids[non_positive]
                raise NumericalInstabilityError(
                    f"body {body.name!r}: {bad.size} particle(s) with non-positive density; "
                    f"first index {int(bad[0])}",
                    body_name=body.name,
                    indices=bad,
                )
