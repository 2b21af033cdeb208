"""
Time step size estimates (CFL conditions) as reductions over a body.

- AcousticTimeStepSize:   dt = cfl * h / (c0 + |v|_max)
- AdvectionTimeStepSize:  dt = cfl * h / max(|v|_max, U_ref)

Both return the estimate clipped to [dt_min, dt_max].
"""

from __future__ import annotations

import numpy as np

from sphsys.core.bodies import FluidBody
from sphsys.core.errors import ConfigurationError
from sphsys.sph.dynamics import LocalDynamics, ParticleLoop, ReduceDynamics


class _SpeedReduction(LocalDynamics):
    combine = staticmethod(max)
    initial_value = 0.0

    def __init__(self, body: FluidBody, cfl: float, dt_min: float, dt_max: float):
        if not isinstance(body, FluidBody):
            raise ConfigurationError(f"time step size needs a fluid body, got {body!r}")
        if cfl <= 0.0:
            raise ConfigurationError(f"CFL number must be > 0, got {cfl}")
        if not 0.0 < dt_min <= dt_max:
            raise ConfigurationError(f"need 0 < dt_min <= dt_max, got dt_min={dt_min}, dt_max={dt_max}")
        super().__init__(body)
        self.cfl = float(cfl)
        self.dt_min = float(dt_min)
        self.dt_max = float(dt_max)
        self.h = body.h

    def setup_dynamics(self, dt: float = 0.0) -> None:
        self.vel = self.particles.vel

    def reduce(self, index_i: int, dt: float = 0.0) -> float:
        return float(np.linalg.norm(self.vel[index_i]))

    def _clip(self, dt: float) -> float:
        return float(np.clip(dt, self.dt_min, self.dt_max))


class AcousticTimeStepSize(_SpeedReduction):
    def __init__(self, body: FluidBody, cfl: float = 0.6, dt_min: float = 1e-8, dt_max: float = np.inf):
        super().__init__(body, cfl, dt_min, dt_max)
        self.c0 = body.material.c0

    def output(self, vel_max: float) -> float:
        return self._clip(self.cfl * self.h / (self.c0 + vel_max))


class AdvectionTimeStepSize(_SpeedReduction):
    def __init__(
        self,
        body: FluidBody,
        reference_speed: float,
        cfl: float = 0.25,
        dt_min: float = 1e-8,
        dt_max: float = np.inf,
    ):
        if reference_speed <= 0.0:
            raise ConfigurationError(f"reference speed must be > 0, got {reference_speed}")
        super().__init__(body, cfl, dt_min, dt_max)
        self.reference_speed = float(reference_speed)

    def output(self, vel_max: float) -> float:
        return self._clip(self.cfl * self.h / max(vel_max, self.reference_speed))


class TimeStepSize:
    """
    Callable time step for the driver: the minimum over several reductions,
    evaluated on the current state.
    """

    def __init__(self, estimators: list, loop: ParticleLoop | None = None):
        if not estimators:
            raise ConfigurationError("need at least one time step estimator")
        self.reductions = [ReduceDynamics(e, loop) for e in estimators]

    def __call__(self) -> float:
        return min(r.exec() for r in self.reductions)
