import numpy as np
import pytest

from sphsys.core.bodies import FluidBody, SolidBody, SPHAdaptation
from sphsys.core.errors import ConfigurationError
from sphsys.core.materials import WeaklyCompressibleFluid
from sphsys.core.system import SPHSystem
from sphsys.neighbors.relations import ComplexRelation, ContactRelation, InnerRelation
from sphsys.sph.dynamics import InteractionDynamics, SimpleDynamics, TimeStepInitialization
from sphsys.sph.fluid_integration import (
    Integration1stHalf,
    Integration1stHalfWithWall,
    Integration2ndHalf,
    Integration2ndHalfWithWall,
)
from sphsys.sph.riemann import AcousticRiemannSolver, NoRiemannSolver

WATER = WeaklyCompressibleFluid(rho0=1000.0, c0=10.0)
DX = 0.1


def _jittered_block(n: int = 8, seed: int = 0) -> np.ndarray:
    rng = np.random.default_rng(seed)
    axis = (np.arange(n) + 0.5) * DX
    gx, gy = np.meshgrid(axis, axis, indexing="ij")
    pos = np.stack([gx.ravel(), gy.ravel()], axis=1)
    return pos + rng.uniform(-0.2 * DX, 0.2 * DX, size=pos.shape)


def _water(positions):
    system = SPHSystem((-1.0, -1.0), (2.0, 2.0), resolution_ref=DX)
    water = FluidBody(system, "water", WATER, adaptation=SPHAdaptation(spacing=DX))
    water.generate_particles(positions)
    return system, water


def _water_over_wall(fluid_positions):
    """Fluid particles above a flat 3-layer wall at y < 0 with normals +y."""
    system = SPHSystem((-1.0, -1.0), (1.0, 1.0), resolution_ref=DX)
    water = FluidBody(system, "water", WATER, adaptation=SPHAdaptation(spacing=DX))
    water.generate_particles(fluid_positions)

    xs = np.linspace(-0.5, 0.5, 11)
    wall_pos = np.array([[x, y] for y in (-0.05, -0.15, -0.25) for x in xs])
    wall = SolidBody(system, "wall", adaptation=SPHAdaptation(spacing=DX))
    wall.generate_particles(wall_pos)
    wall.particles.get_variable("normal")[:] = [0.0, 1.0]

    system.update_cell_linked_lists()
    complex_relation = ComplexRelation(InnerRelation(water), ContactRelation(water, [wall]))
    complex_relation.update_configuration()
    return water, wall, complex_relation


def _interact(op, n: int) -> None:
    op.setup_dynamics(0.0)
    for i in range(n):
        op.interaction(i)


@pytest.mark.parametrize("solver", [NoRiemannSolver, AcousticRiemannSolver])
def test_pressure_forces_obey_newtons_third_law(solver):
    """
    With equal masses the pair forces cancel: sum_i m_i acc_i = 0 for any
    pressure field.
    """
    system, water = _water(_jittered_block())
    system.update_cell_linked_lists()
    inner = InnerRelation(water)
    inner.update_configuration()

    n = water.particles.n
    water.particles.p[:] = np.random.default_rng(1).uniform(-500.0, 500.0, size=n)

    op = Integration1stHalf(inner, solver)
    _interact(op, n)

    forces = water.particles.mass[:, None] * op.acc
    total = forces.sum(axis=0)
    scale = np.abs(forces).sum()
    assert scale > 0.0
    assert np.allclose(total, 0.0, atol=1e-10 * scale)


def test_density_relaxation_is_antisymmetric_for_a_pair():
    """Two approaching particles: equal density rates, opposite accelerations."""
    system, water = _water(np.array([[0.5, 0.5], [0.6, 0.5]]))
    water.particles.vel[:] = [[0.5, 0.0], [-0.5, 0.0]]
    system.update_cell_linked_lists()
    inner = InnerRelation(water)
    inner.update_configuration()

    op = Integration2ndHalf(inner, AcousticRiemannSolver)
    _interact(op, 2)

    # compression
    assert op.drho_dt[0] > 0.0
    assert np.isclose(op.drho_dt[0], op.drho_dt[1])
    assert np.allclose(op.acc[0], -op.acc[1])
    # the dissipation pushes the pair apart
    assert op.acc[0][0] < 0.0


def test_isolated_particle_only_feels_gravity():
    """No neighbors: no pressure force, no density change; v = g dt after a step."""
    system, water = _water(np.array([[0.5, 0.5]]))
    system.update_cell_linked_lists()
    inner = InnerRelation(water)
    inner.update_configuration()

    g = np.array([0.0, -9.81])
    dt = 1e-3
    SimpleDynamics(TimeStepInitialization(water, g)).exec(dt)
    first = InteractionDynamics(Integration1stHalf(inner))
    second = InteractionDynamics(Integration2ndHalf(inner))
    first.exec(dt)
    second.exec(dt)

    particles = water.particles
    assert np.allclose(particles.vel[0], g * dt)
    assert np.isclose(particles.rho[0], WATER.rho0)
    assert np.allclose(particles.get_variable("acc")[0], 0.0)
    assert particles.get_variable("drho_dt")[0] == 0.0
    # half drift with v = 0, half drift with v = g dt
    assert np.allclose(particles.pos[0], [0.5, 0.5] + 0.5 * g * dt * dt)


def test_first_half_initialization_applies_state_equation():
    system, water = _water(np.array([[0.5, 0.5]]))
    system.update_cell_linked_lists()
    inner = InnerRelation(water)
    inner.update_configuration()

    water.particles.rho[0] = 1001.0
    InteractionDynamics(Integration1stHalf(inner)).exec(1e-3)
    assert np.isclose(water.particles.p[0], WATER.c0 ** 2 * 1.0)
    assert np.isclose(water.particles.vol[0], water.particles.mass[0] / 1001.0)


def test_wall_repels_pressurized_particle():
    water, _, complex_relation = _water_over_wall(np.array([[0.0, 0.05]]))
    water.particles.p[0] = 100.0

    op = Integration1stHalfWithWall(complex_relation)
    _interact(op, 1)

    assert op.acc[0][1] > 0.0
    assert abs(op.acc[0][0]) < 1e-9 * abs(op.acc[0][1])


def test_wall_holds_particle_at_rest_against_gravity():
    """The hydrostatic wall pressure pushes back against the prior acceleration."""
    water, _, complex_relation = _water_over_wall(np.array([[0.0, 0.05]]))
    water.particles.acc_prior[0] = [0.0, -9.81]

    op = Integration1stHalfWithWall(complex_relation)
    _interact(op, 1)
    assert op.acc[0][1] > 0.0


def test_particle_at_rest_without_pressure_feels_no_wall_force():
    water, _, complex_relation = _water_over_wall(np.array([[0.0, 0.05]]))

    first = Integration1stHalfWithWall(complex_relation)
    second = Integration2ndHalfWithWall(complex_relation)
    _interact(first, 1)
    assert np.allclose(first.acc[0], 0.0)
    _interact(second, 1)
    assert np.allclose(second.acc[0], 0.0)
    assert second.drho_dt[0] == 0.0


def test_wall_decelerates_and_compresses_approaching_particle():
    water, _, complex_relation = _water_over_wall(np.array([[0.0, 0.05]]))
    water.particles.vel[0] = [0.0, -1.0]

    op = Integration2ndHalfWithWall(complex_relation)
    _interact(op, 1)

    assert op.drho_dt[0] > 0.0
    assert op.acc[0][1] > 0.0
    assert op.acc[0][0] == 0.0


def test_integration_needs_fluid_body_and_complex_relation():
    system = SPHSystem((-1.0, -1.0), (1.0, 1.0), resolution_ref=DX)
    wall = SolidBody(system, "wall")
    wall.generate_particles(np.array([[0.0, 0.0]]))
    with pytest.raises(ConfigurationError):
        Integration1stHalf(InnerRelation(wall))

    water = FluidBody(system, "water", WATER)
    water.generate_particles(np.array([[0.5, 0.5]]))
    with pytest.raises(ConfigurationError):
        Integration1stHalfWithWall(InnerRelation(water))

    with pytest.raises(ConfigurationError):
        Integration1stHalf(InnerRelation(water), "roe")


def _pair(distance: float):
    system, water = _water(np.array([[0.5, 0.5], [0.5 + distance, 0.5]]))
    system.update_cell_linked_lists()
    inner = InnerRelation(water)
    inner.update_configuration()
    return water, inner


def test_first_half_density_dissipation_reaches_the_density():
    """The acoustic 1st half changes the density after a full step."""
    rho_after = {}
    for solver in (AcousticRiemannSolver, NoRiemannSolver):
        water, inner = _pair(DX)
        water.particles.rho[:] = [1002.0, 999.0]
        InteractionDynamics(Integration1stHalf(inner, solver)).exec(1e-3)
        InteractionDynamics(Integration2ndHalf(inner, NoRiemannSolver)).exec(1e-3)
        rho_after[solver] = water.particles.rho.copy()

    assert not np.allclose(rho_after[AcousticRiemannSolver], rho_after[NoRiemannSolver], rtol=0.0, atol=1e-9)
    # dissipation smooths the density jump
    jump = rho_after[AcousticRiemannSolver][0] - rho_after[AcousticRiemannSolver][1]
    assert jump < rho_after[NoRiemannSolver][0] - rho_after[NoRiemannSolver][1]


@pytest.mark.parametrize("solver", [NoRiemannSolver, AcousticRiemannSolver])
def test_symmetric_pair_at_rest_has_zero_net_force(solver):
    """Equal pressure, no relative velocity, half a cutoff apart."""
    cutoff = _pair(DX)[0].cutoff_radius
    water, inner = _pair(0.5 * cutoff)
    particles = water.particles
    particles.p[:] = 50.0
    mass = particles.mass

    first = Integration1stHalf(inner, solver)
    _interact(first, 2)
    assert np.any(first.acc[0] != 0.0)
    assert np.allclose(mass[0] * first.acc[0] + mass[1] * first.acc[1], 0.0, atol=1e-12)
    assert np.allclose(first.drho_dt, 0.0)

    second = Integration2ndHalf(inner, solver)
    _interact(second, 2)
    assert np.allclose(mass[0] * second.acc[0] + mass[1] * second.acc[1], 0.0, atol=1e-12)
    assert np.allclose(second.acc, 0.0)
    assert np.allclose(second.drho_dt, 0.0)
