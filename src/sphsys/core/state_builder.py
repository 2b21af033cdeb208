"""
Scene builder: turns a JSON scene into a ready-to-run system.

- a fluid block sampled on a cell-centered lattice with spacing dx
  (particle volume dx^dim, mass rho0 dx^dim);
- a container wall of `boundary_layers` lattice layers around the domain
  (several layers so fluid particles near the wall keep a full kernel
  support), with normals pointing into the fluid;
- the inner/contact relations and the splitting scheme of the selected
  solver.

The partition domain is the tank grown by the wall thickness plus one
cutoff radius, so every particle starts inside it.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

import numpy as np

from sphsys.core.bodies import FluidBody, SolidBody, SPHAdaptation
from sphsys.core.geometry import Box, BoxShell
from sphsys.core.materials import WeaklyCompressibleFluid
from sphsys.core.simulator import SimConfig, SplittingScheme, TimeIntegrationDriver
from sphsys.core.system import SPHSystem
from sphsys.neighbors.relations import ComplexRelation, ContactRelation, InnerRelation
from sphsys.sph.density import DensitySummation
from sphsys.sph.dynamics import (
    InteractionDynamics,
    NormalDirectionFromShape,
    ParticleLoop,
    SimpleDynamics,
    TimeStepInitialization,
)
from sphsys.sph.eulerian import (
    EulerianIntegration1stHalfWithWall,
    EulerianIntegration2ndHalfWithWall,
    NonReflectiveBoundaryCorrection,
    SmearedSurfaceIndication,
)
from sphsys.sph.fluid_integration import Integration1stHalfWithWall, Integration2ndHalfWithWall
from sphsys.sph.surface import FreeSurfaceIndication
from sphsys.sph.time_step import AcousticTimeStepSize, TimeStepSize
from sphsys.sph.viscosity import ViscousAcceleration

logger = logging.getLogger(__name__)


def lattice_points(lower: np.ndarray, upper: np.ndarray, spacing: float) -> np.ndarray:
    """Cell-centered lattice filling [lower, upper]."""
    lower = np.asarray(lower, dtype=np.float64)
    upper = np.asarray(upper, dtype=np.float64)
    counts = np.maximum(np.round((upper - lower) / spacing).astype(np.int64), 1)
    axes = [lower[d] + (np.arange(counts[d], dtype=np.float64) + 0.5) * spacing for d in range(lower.shape[0])]
    grids = np.meshgrid(*axes, indexing="ij")
    return np.stack([g.ravel() for g in grids], axis=1)


def sample_box_wall(tank: Box, spacing: float, layers: int) -> tuple[np.ndarray, BoxShell]:
    """
    Sample the container wall as static particles in multiple layers
    around `tank`.
    """
    shell = BoxShell(tank, thickness=layers * spacing)
    points = lattice_points(shell.outer.lower, shell.outer.upper, spacing)
    return points[shell.contains(points)], shell


@dataclass
class Scene:
    config: SimConfig
    system: SPHSystem
    water: FluidBody
    wall: SolidBody
    inner: InnerRelation
    wall_contact: ContactRelation
    complex: ComplexRelation
    scheme: SplittingScheme
    time_step: float | TimeStepSize
    loop: ParticleLoop

    @property
    def relations(self) -> list:
        return [self.complex]

    def make_driver(self, on_step=None, on_phase=None) -> TimeIntegrationDriver:
        cfg = self.config
        return TimeIntegrationDriver(
            self.system,
            self.relations,
            self.scheme,
            self.time_step,
            end_time=cfg.end_time,
            check_sanity=cfg.check_sanity,
            max_dt_reductions=cfg.max_dt_reductions,
            on_step=on_step,
            on_phase=on_phase,
        )


def _lagrangian_scheme(cfg: SimConfig, scene_parts: dict, loop: ParticleLoop) -> SplittingScheme:
    water, complex_relation = scene_parts["water"], scene_parts["complex"]
    scheme = SplittingScheme()
    scheme.preparation.append(SimpleDynamics(TimeStepInitialization(water, cfg.g), loop))
    if cfg.density_summation:
        scheme.preparation.append(InteractionDynamics(DensitySummation(complex_relation, free_surface=True), loop))
    if cfg.mu > 0.0:
        scheme.preparation.append(InteractionDynamics(ViscousAcceleration(complex_relation), loop))
    scheme.first_half.append(
        InteractionDynamics(Integration1stHalfWithWall(complex_relation, cfg.riemann_first_half), loop)
    )
    scheme.second_half.append(
        InteractionDynamics(Integration2ndHalfWithWall(complex_relation, cfg.riemann_second_half), loop)
    )
    return scheme


def _eulerian_scheme(cfg: SimConfig, scene_parts: dict, loop: ParticleLoop) -> SplittingScheme:
    water, inner, complex_relation = scene_parts["water"], scene_parts["inner"], scene_parts["complex"]
    scheme = SplittingScheme()
    scheme.preparation.append(SimpleDynamics(TimeStepInitialization(water, cfg.g), loop))
    if cfg.mu > 0.0:
        scheme.preparation.append(InteractionDynamics(ViscousAcceleration(complex_relation), loop))
    scheme.first_half.append(
        InteractionDynamics(EulerianIntegration1stHalfWithWall(complex_relation, cfg.riemann_first_half), loop)
    )
    scheme.second_half.append(
        InteractionDynamics(EulerianIntegration2ndHalfWithWall(complex_relation, cfg.riemann_second_half), loop)
    )
    if cfg.farfield_rho is not None:
        scheme.boundary_corrections.extend([
            InteractionDynamics(FreeSurfaceIndication(complex_relation), loop),
            InteractionDynamics(SmearedSurfaceIndication(inner), loop),
            InteractionDynamics(
                NonReflectiveBoundaryCorrection(inner, cfg.farfield_rho, cfg.farfield_velocity), loop
            ),
        ])
    return scheme


def build_scene(scene: dict | SimConfig) -> Scene:
    cfg = scene if isinstance(scene, SimConfig) else SimConfig.from_scene(scene)
    dim = cfg.dim
    spacing = cfg.spacing

    adaptation = SPHAdaptation(spacing=spacing, h_ratio=cfg.h_ratio, kernel_name=cfg.kernel)
    cutoff = adaptation.kernel(dim).cutoff_radius(adaptation.h)
    layers = cfg.boundary_layers if cfg.boundary_layers is not None else int(math.ceil(cutoff / spacing - 1e-9))
    if layers < 1:
        layers = 1

    tank = Box(cfg.domain_min, cfg.domain_max)
    margin = layers * spacing + cutoff
    system = SPHSystem(
        cfg.domain_min - margin,
        cfg.domain_max + margin,
        resolution_ref=spacing,
        out_of_domain_policy=cfg.out_of_domain_policy,
    )

    # --- fluid block
    fluid = WeaklyCompressibleFluid(rho0=cfg.rho0, c0=cfg.c0, mu=cfg.mu)
    water = FluidBody(system, "water", fluid, adaptation=adaptation, shape=Box(cfg.fluid_min, cfg.fluid_max))
    fluid_pos = lattice_points(cfg.fluid_min, cfg.fluid_max, spacing)
    velocities = None
    if cfg.initial_velocity is not None:
        velocities = np.repeat(cfg.initial_velocity[None, :], fluid_pos.shape[0], axis=0)
    water.generate_particles(fluid_pos, spacing ** dim, velocities=velocities)

    # --- wall (static)
    wall_pos, shell = sample_box_wall(tank, spacing, layers)
    wall = SolidBody(system, "wall", adaptation=adaptation, shape=shell)
    wall.generate_particles(wall_pos, spacing ** dim)
    SimpleDynamics(NormalDirectionFromShape(wall)).exec()

    # --- relations
    inner = InnerRelation(water)
    wall_contact = ContactRelation(water, [wall])
    complex_relation = ComplexRelation(inner, wall_contact)

    loop = ParticleLoop(workers=cfg.workers)
    parts = {"water": water, "inner": inner, "complex": complex_relation}
    if cfg.scheme == "eulerian":
        scheme = _eulerian_scheme(cfg, parts, loop)
    else:
        scheme = _lagrangian_scheme(cfg, parts, loop)

    if cfg.use_cfl:
        time_step = TimeStepSize([AcousticTimeStepSize(water, cfg.cfl_lambda, cfg.dt_min, cfg.dt_max)], loop)
    else:
        time_step = cfg.dt_fixed

    logger.info(
        "scene: %dD, %s scheme, %d fluid + %d wall particles, dx=%.4g h=%.4g cutoff=%.4g layers=%d",
        dim, cfg.scheme, water.particles.n, wall.particles.n, spacing, adaptation.h, cutoff, layers,
    )
    return Scene(
        config=cfg,
        system=system,
        water=water,
        wall=wall,
        inner=inner,
        wall_contact=wall_contact,
        complex=complex_relation,
        scheme=scheme,
        time_step=time_step,
        loop=loop,
    )
