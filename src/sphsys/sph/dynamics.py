"""
Local dynamics engine: per-particle operators and the executors that loop
them over a body.

An operator is a plain object bound to one body. It may define

    setup_dynamics(dt)      once per execution, before any particle pass
    initialization(i, dt)   per particle, before the interaction pass
    interaction(i, dt)      per particle, reads neighbors, writes only to
                            the operator's own accumulation buffers at i
    update(i, dt)           per particle, applies the buffers to the state

Executors:
- InteractionDynamics: initialization pass, interaction pass, update pass.
  Each pass finishes for every particle before the next one starts
  (gather-then-apply); no particle is advanced while another still reads it.
- SimpleDynamics: update pass only (no neighbor reads).
- ReduceDynamics: fold of a per-particle value (max, min, sum).

Passes run through a ParticleLoop: sequentially, or fork-join over a thread
pool in contiguous index chunks. Exceptions raised by a worker propagate to
the caller when the pass joins.
"""

from __future__ import annotations

import concurrent.futures
import logging
import operator
from typing import Callable, Protocol

import numpy as np

from sphsys.core.bodies import SolidBody, SPHBody
from sphsys.core.errors import ConfigurationError

logger = logging.getLogger(__name__)


class Integrable(Protocol):
    def interaction(self, index_i: int, dt: float = 0.0) -> None:
        ...

    def update(self, index_i: int, dt: float = 0.0) -> None:
        ...


class ParticleLoop:
    """Fork-join loop over particle indices."""

    def __init__(self, workers: int = 1, min_chunk: int = 64):
        if workers < 1:
            raise ConfigurationError(f"number of workers must be >= 1, got {workers}")
        self.workers = int(workers)
        self.min_chunk = max(int(min_chunk), 1)

    @property
    def is_parallel(self) -> bool:
        return self.workers > 1

    def _chunks(self, indices: np.ndarray) -> list[np.ndarray]:
        n_chunks = min(self.workers, max(indices.size // self.min_chunk, 1))
        return [c for c in np.array_split(indices, n_chunks) if c.size]

    def run(self, fn: Callable[[int, float], None], indices: np.ndarray, dt: float) -> None:
        indices = np.asarray(indices, dtype=np.int64)
        if not self.is_parallel or indices.size <= self.min_chunk:
            for i in indices:
                fn(int(i), dt)
            return

        def worker(chunk: np.ndarray) -> None:
            for i in chunk:
                fn(int(i), dt)

        with concurrent.futures.ThreadPoolExecutor(max_workers=self.workers) as executor:
            # consuming the results re-raises worker exceptions here
            list(executor.map(worker, self._chunks(indices)))

    def reduce(
        self,
        fn: Callable[[int, float], float],
        indices: np.ndarray,
        dt: float,
        combine: Callable[[float, float], float],
        initial: float,
    ) -> float:
        indices = np.asarray(indices, dtype=np.int64)

        def fold(chunk: np.ndarray) -> float:
            value = initial
            for i in chunk:
                value = combine(value, fn(int(i), dt))
            return value

        if not self.is_parallel or indices.size <= self.min_chunk:
            return fold(indices)

        with concurrent.futures.ThreadPoolExecutor(max_workers=self.workers) as executor:
            partial = list(executor.map(fold, self._chunks(indices)))

        value = initial
        for v in partial:
            value = combine(value, v)
        return value


SEQUENTIAL = ParticleLoop(workers=1)


class LocalDynamics:
    """Base of all per-particle operators; binds the body and its particles."""

    def __init__(self, body: SPHBody):
        if body.particles is None:
            raise ConfigurationError(f"body {body.name!r} has no particles")
        self.body = body
        self.sph_body = body

    @property
    def particles(self):
        return self.body.particles

    def setup_dynamics(self, dt: float = 0.0) -> None:
        pass


class BaseDynamics:
    def __init__(self, local_dynamics, loop: ParticleLoop | None = None):
        self.local_dynamics = local_dynamics
        self.loop = loop or SEQUENTIAL

    @property
    def body(self) -> SPHBody:
        return self.local_dynamics.body

    def _indices(self) -> np.ndarray:
        return self.body.particles.active_indices

    def _setup(self, dt: float) -> None:
        setup = getattr(self.local_dynamics, "setup_dynamics", None)
        if setup is not None:
            setup(dt)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({type(self.local_dynamics).__name__}, body={self.body.name!r})"


class InteractionDynamics(BaseDynamics):
    """initialization -> interaction -> update, each pass a full barrier."""

    def __init__(self, local_dynamics: Integrable, loop: ParticleLoop | None = None):
        if not hasattr(local_dynamics, "interaction"):
            raise ConfigurationError(f"{type(local_dynamics).__name__} has no interaction()")
        super().__init__(local_dynamics, loop)

    def exec(self, dt: float = 0.0) -> None:
        self._setup(dt)
        indices = self._indices()
        op = self.local_dynamics

        initialization = getattr(op, "initialization", None)
        if initialization is not None:
            self.loop.run(initialization, indices, dt)

        self.loop.run(op.interaction, indices, dt)

        update = getattr(op, "update", None)
        if update is not None:
            self.loop.run(update, indices, dt)


class SimpleDynamics(BaseDynamics):
    def __init__(self, local_dynamics, loop: ParticleLoop | None = None):
        if not hasattr(local_dynamics, "update"):
            raise ConfigurationError(f"{type(local_dynamics).__name__} has no update()")
        super().__init__(local_dynamics, loop)

    def exec(self, dt: float = 0.0) -> None:
        self._setup(dt)
        self.loop.run(self.local_dynamics.update, self._indices(), dt)


class ReduceDynamics(BaseDynamics):
    """
    Fold `reduce(i, dt)` over all active particles with the operator's
    `combine` and `initial_value`; `output(value)` post-processes the result.
    """

    def __init__(self, local_dynamics, loop: ParticleLoop | None = None):
        for attr in ("reduce", "combine", "initial_value"):
            if not hasattr(local_dynamics, attr):
                raise ConfigurationError(f"{type(local_dynamics).__name__} has no {attr}")
        super().__init__(local_dynamics, loop)

    def exec(self, dt: float = 0.0) -> float:
        self._setup(dt)
        op = self.local_dynamics
        value = self.loop.reduce(op.reduce, self._indices(), dt, op.combine, op.initial_value)
        output = getattr(op, "output", None)
        return output(value) if output is not None else value


class TimeStepInitialization(LocalDynamics):
    """Resets the prior (non-pressure) acceleration to the body force."""

    def __init__(self, body: SPHBody, gravity=None):
        super().__init__(body)
        g = np.zeros((body.dim,), dtype=np.float64) if gravity is None else np.asarray(gravity, dtype=np.float64)
        if g.shape != (body.dim,):
            raise ConfigurationError(f"gravity must have shape ({body.dim},), got {g.shape}")
        self.gravity = g

    def setup_dynamics(self, dt: float = 0.0) -> None:
        self.acc_prior = self.particles.acc_prior

    def update(self, index_i: int, dt: float = 0.0) -> None:
        self.acc_prior[index_i] = self.gravity


class NormalDirectionFromShape(LocalDynamics):
    """Wall normals from the body shape, pointing into the fluid."""

    def __init__(self, body: SolidBody):
        if body.shape is None:
            raise ConfigurationError(f"body {body.name!r} has no shape to take normals from")
        super().__init__(body)

    def setup_dynamics(self, dt: float = 0.0) -> None:
        self.pos = self.particles.pos
        self.normal = self.particles.register_variable("normal", vector=True)

    def update(self, index_i: int, dt: float = 0.0) -> None:
        self.normal[index_i] = self.body.shape.normal_direction(self.pos[index_i])


class MaximumSpeed(LocalDynamics):
    """Reduction: max |v| over the body."""

    combine = staticmethod(max)
    initial_value = 0.0

    def setup_dynamics(self, dt: float = 0.0) -> None:
        self.vel = self.particles.vel

    def reduce(self, index_i: int, dt: float = 0.0) -> float:
        return float(np.linalg.norm(self.vel[index_i]))


class TotalMomentum(LocalDynamics):
    """Reduction: sum of m v over the body (conservation checks)."""

    combine = staticmethod(operator.add)

    def __init__(self, body: SPHBody):
        super().__init__(body)
        self.initial_value = np.zeros((body.dim,), dtype=np.float64)

    def setup_dynamics(self, dt: float = 0.0) -> None:
        self.mass = self.particles.mass
        self.vel = self.particles.vel

    def reduce(self, index_i: int, dt: float = 0.0) -> np.ndarray:
        return self.mass[index_i] * self.vel[index_i]
