from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

import numpy as np

from sphsys.core.diagnostics import check_numerical_sanity
from sphsys.core.errors import ConfigurationError, NumericalInstabilityError
from sphsys.core.system import SPHSystem

logger = logging.getLogger(__name__)


def _section(scene: dict, name: str) -> dict:
    value = scene.get(name, {})
    if not isinstance(value, dict):
        raise ConfigurationError(f"scene section {name!r} must be an object")
    return value


def _vector(values, dim: int, name: str) -> np.ndarray:
    arr = np.asarray(values, dtype=np.float64)
    if arr.shape != (dim,):
        raise ConfigurationError(f"{name} must have {dim} components, got {list(np.atleast_1d(arr))}")
    return arr


@dataclass(frozen=True)
class SimConfig:
    """
    Immutable run configuration of one scene.

    A fluid block [fluid_min, fluid_max] inside a tank [domain_min,
    domain_max] closed by a wall of `boundary_layers` particle layers.
    """

    dim: int
    domain_min: np.ndarray
    domain_max: np.ndarray
    fluid_min: np.ndarray
    fluid_max: np.ndarray
    spacing: float

    rho0: float
    c0: float
    mu: float = 0.0

    kernel: str = "cubic_spline"
    h_ratio: float = 1.3
    boundary_layers: int | None = None
    out_of_domain_policy: str = "clamp"

    g: np.ndarray | None = None
    initial_velocity: np.ndarray | None = None

    # "lagrangian" or "eulerian"; Riemann solver per half
    scheme: str = "lagrangian"
    riemann_first_half: str = "acoustic"
    riemann_second_half: str = "acoustic"
    density_summation: bool = True
    farfield_rho: float | None = None
    farfield_velocity: np.ndarray | None = None

    # Time stepping (CFL-based or fixed)
    end_time: float = 1.0
    use_cfl: bool = True
    cfl_lambda: float = 0.6
    dt_min: float = 1e-8
    dt_max: float = 1e-2
    dt_fixed: float = 1e-4
    max_dt_reductions: int = 0
    check_sanity: bool = True
    log_every: int = 10

    workers: int = 1

    def __post_init__(self) -> None:
        # no body force unless given
        g = np.zeros(self.dim) if self.g is None else np.asarray(self.g, dtype=np.float64)
        object.__setattr__(self, "g", g)

    @classmethod
    def from_scene(cls, scene: dict) -> SimConfig:
        """Read the JSON scene layout (meta/domain/fluid/material/kernel/forces/solver/time/parallel)."""
        try:
            dim = int(_section(scene, "meta")["dimensions"])
            domain = _section(scene, "domain")
            fluid = _section(scene, "fluid")
            material = _section(scene, "material")
            if dim not in (1, 2, 3):
                raise ConfigurationError(f"dimensions must be 1, 2 or 3, got {dim}")
            if fluid.get("type", "block") != "block":
                raise ConfigurationError(f"unsupported fluid type: {fluid['type']!r}")

            kernel = _section(scene, "kernel")
            forces = _section(scene, "forces")
            solver = _section(scene, "solver")
            time_cfg = _section(scene, "time")
            parallel = _section(scene, "parallel")

            riemann = solver.get("riemann", "acoustic")
            farfield = solver.get("farfield")
            initial_velocity = fluid.get("initial_velocity")
            layers = domain.get("boundary_layers")

            cfg = cls(
                dim=dim,
                domain_min=_vector(domain["min"], dim, "domain.min"),
                domain_max=_vector(domain["max"], dim, "domain.max"),
                fluid_min=_vector(fluid["min"], dim, "fluid.min"),
                fluid_max=_vector(fluid["max"], dim, "fluid.max"),
                spacing=float(fluid["spacing"]),
                rho0=float(material["rho0"]),
                c0=float(material["c0"]),
                mu=float(material.get("mu", 0.0)),
                kernel=str(kernel.get("type", "cubic_spline")),
                h_ratio=float(kernel.get("h_ratio", 1.3)),
                boundary_layers=None if layers is None else int(layers),
                out_of_domain_policy=str(domain.get("out_of_domain", "clamp")),
                g=_vector(forces.get("gravity", [0.0] * dim), dim, "forces.gravity"),
                initial_velocity=None if initial_velocity is None else _vector(initial_velocity, dim, "fluid.initial_velocity"),
                scheme=str(solver.get("type", "lagrangian")).lower(),
                riemann_first_half=str(solver.get("riemann_first_half", riemann)),
                riemann_second_half=str(solver.get("riemann_second_half", riemann)),
                density_summation=bool(solver.get("density_summation", True)),
                farfield_rho=None if farfield is None else float(farfield["rho"]),
                farfield_velocity=None if farfield is None else _vector(farfield["velocity"], dim, "solver.farfield.velocity"),
                end_time=float(time_cfg.get("end_time", 1.0)),
                use_cfl=(time_cfg.get("mode", "cfl") == "cfl"),
                cfl_lambda=float(time_cfg.get("cfl", 0.6)),
                dt_min=float(time_cfg.get("dt_min", 1e-8)),
                dt_max=float(time_cfg.get("dt_max", 1e-2)),
                dt_fixed=float(time_cfg.get("dt_fixed", 1e-4)),
                max_dt_reductions=int(time_cfg.get("max_dt_reductions", 0)),
                check_sanity=bool(time_cfg.get("check_sanity", True)),
                log_every=int(time_cfg.get("log_every", 10)),
                workers=int(parallel.get("workers", 1)),
            )
        except ConfigurationError:
            raise
        except KeyError as exc:
            raise ConfigurationError(f"scene is missing required key {exc}") from exc
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"invalid scene value: {exc}") from exc
        cfg.validate()
        return cfg

    def validate(self) -> None:
        if self.spacing <= 0.0:
            raise ConfigurationError("spacing must be > 0")
        if self.g.shape != (self.dim,):
            raise ConfigurationError(f"gravity must have {self.dim} components, got {self.g.shape}")
        if np.any(self.domain_max <= self.domain_min):
            raise ConfigurationError("domain.max must be > domain.min in every axis")
        if np.any(self.fluid_max <= self.fluid_min):
            raise ConfigurationError("fluid.max must be > fluid.min in every axis")
        if np.any(self.fluid_min < self.domain_min) or np.any(self.fluid_max > self.domain_max):
            raise ConfigurationError("fluid block must lie inside the domain")
        if self.scheme not in ("lagrangian", "eulerian"):
            raise ConfigurationError(f"Unknown solver type: {self.scheme!r}")
        if (self.farfield_rho is None) != (self.farfield_velocity is None):
            raise ConfigurationError("far field needs both rho and velocity")
        if self.farfield_rho is not None and self.scheme != "eulerian":
            raise ConfigurationError("a far field is only supported by the eulerian solver")
        if self.end_time <= 0.0:
            raise ConfigurationError("end_time must be > 0")
        if not self.use_cfl and self.dt_fixed <= 0.0:
            raise ConfigurationError("dt_fixed must be > 0")
        if self.max_dt_reductions < 0:
            raise ConfigurationError("max_dt_reductions must be >= 0")
        if self.workers < 1:
            raise ConfigurationError("parallel.workers must be >= 1")


class DriverPhase(str, Enum):
    PARTITION_REBUILD = "partition_rebuild"
    RELATION_REBUILD = "relation_rebuild"
    PREPARATION = "preparation"
    FIRST_HALF = "first_half"
    SECOND_HALF = "second_half"
    BOUNDARY_CORRECTION = "boundary_correction"
    TIME_ADVANCE = "time_advance"


@dataclass
class SplittingScheme:
    """
    Executors (objects with `exec(dt)`) run by the driver in each phase.

    preparation          body forces, viscosity, density re-initialization
    first_half           pressure relaxation
    second_half          density relaxation; empty for a one-half scheme
    boundary_corrections surface indication, far-field correction
    """

    first_half: list = field(default_factory=list)
    second_half: list = field(default_factory=list)
    preparation: list = field(default_factory=list)
    boundary_corrections: list = field(default_factory=list)


class TimeIntegrationDriver:
    """
    Per-step state machine:

        PARTITION_REBUILD -> RELATION_REBUILD -> PREPARATION -> FIRST_HALF
        -> SECOND_HALF -> BOUNDARY_CORRECTION -> TIME_ADVANCE

    Rebuilds are global barriers; every executor finishes its passes before
    the next one starts. Empty phases (no second half, no corrections) are
    skipped. `run()` stops exactly at `end_time`.

    Physical time is accumulated with a compensated (Kahan) sum.

    With `max_dt_reductions > 0` a step whose state fails the sanity check is
    rolled back to its start and repeated with half the time step, at most
    that many times; then the error propagates.
    """

    def __init__(
        self,
        system: SPHSystem,
        relations: list,
        scheme: SplittingScheme,
        time_step: float | Callable[[], float],
        end_time: float,
        check_sanity: bool = True,
        max_dt_reductions: int = 0,
        on_step: Callable[[TimeIntegrationDriver], None] | None = None,
        on_phase: Callable[[DriverPhase], None] | None = None,
    ):
        if end_time <= 0.0:
            raise ConfigurationError(f"end time must be > 0, got {end_time}")
        if not callable(time_step) and float(time_step) <= 0.0:
            raise ConfigurationError(f"time step must be > 0, got {time_step}")
        if max_dt_reductions < 0:
            raise ConfigurationError("max_dt_reductions must be >= 0")

        self.system = system
        self.relations = list(relations)
        self.scheme = scheme
        self.time_step = time_step
        self.end_time = float(end_time)
        self.check_sanity = bool(check_sanity)
        self.max_dt_reductions = int(max_dt_reductions)
        self.on_step = on_step
        self.on_phase = on_phase

        self.phase: DriverPhase | None = None
        self.step_count = 0
        self.last_dt = 0.0
        self._time = 0.0
        self._time_compensation = 0.0

    @property
    def physical_time(self) -> float:
        return self._time

    @property
    def finished(self) -> bool:
        return self.end_time - self._time <= 1e-12 * max(1.0, self.end_time)

    def _enter(self, phase: DriverPhase) -> None:
        self.phase = phase
        if self.on_phase is not None:
            self.on_phase(phase)

    def next_dt(self) -> float:
        dt = float(self.time_step()) if callable(self.time_step) else float(self.time_step)
        if not np.isfinite(dt) or dt <= 0.0:
            raise NumericalInstabilityError(f"time step estimate is not positive: {dt}")
        return dt

    def _advance_time(self, dt: float) -> None:
        y = dt - self._time_compensation
        t = self._time + y
        self._time_compensation = (t - self._time) - y
        self._time = t

    def _advance_state(self, dt: float) -> None:
        self._enter(DriverPhase.PARTITION_REBUILD)
        self.system.update_cell_linked_lists()

        self._enter(DriverPhase.RELATION_REBUILD)
        for relation in self.relations:
            relation.update_configuration()

        for phase, executors in (
            (DriverPhase.PREPARATION, self.scheme.preparation),
            (DriverPhase.FIRST_HALF, self.scheme.first_half),
            (DriverPhase.SECOND_HALF, self.scheme.second_half),
            (DriverPhase.BOUNDARY_CORRECTION, self.scheme.boundary_corrections),
        ):
            if not executors:
                continue
            self._enter(phase)
            for executor in executors:
                executor.exec(dt)

        if self.check_sanity:
            check_numerical_sanity(self.system.bodies)

    def step(self, dt: float | None = None) -> float:
        """Advance one step; returns the dt actually used."""
        dt = self.next_dt() if dt is None else float(dt)
        snapshot = self.system.snapshot() if self.max_dt_reductions > 0 else None

        reductions = 0
        while True:
            try:
                self._advance_state(dt)
                break
            except NumericalInstabilityError as exc:
                if snapshot is None or reductions >= self.max_dt_reductions:
                    raise
                reductions += 1
                self.system.restore(snapshot)
                dt *= 0.5
                logger.warning(
                    "step %d failed (%s); retrying with dt=%.3e (reduction %d/%d)",
                    self.step_count + 1, exc, dt, reductions, self.max_dt_reductions,
                )

        self._enter(DriverPhase.TIME_ADVANCE)
        self._advance_time(dt)
        self.step_count += 1
        self.last_dt = dt
        if self.on_step is not None:
            self.on_step(self)
        return dt

    def run_steps(self, n: int, dt: float | None = None) -> float:
        """At most n steps; stops at end_time, clipping the last dt like run()."""
        for _ in range(int(n)):
            if self.finished:
                logger.info("end time %.6g reached before %d steps", self.end_time, n)
                break
            step_dt = self.next_dt() if dt is None else float(dt)
            self.step(min(step_dt, self.end_time - self._time))
        return self._time

    def run(self) -> float:
        """Step until the physical time reaches end_time; the last dt is clipped."""
        while not self.finished:
            dt = min(self.next_dt(), self.end_time - self._time)
            self.step(dt)
        self._time = self.end_time
        self._time_compensation = 0.0
        logger.info("reached end time %.6g after %d steps", self.end_time, self.step_count)
        return self._time
