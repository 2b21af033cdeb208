import numpy as np

from sphsys.core.bodies import FluidBody, SolidBody, SPHAdaptation
from sphsys.core.materials import WeaklyCompressibleFluid
from sphsys.core.system import SPHSystem
from sphsys.neighbors.relations import ComplexRelation, ContactRelation, InnerRelation
from sphsys.sph.dynamics import InteractionDynamics, SimpleDynamics, TimeStepInitialization
from sphsys.sph.eulerian import (
    EulerianIntegration1stHalf,
    EulerianIntegration1stHalfWithWall,
    EulerianIntegration2ndHalf,
    NonReflectiveBoundaryCorrection,
    SmearedSurfaceIndication,
)
from sphsys.sph.surface import FreeSurfaceIndication

WATER = WeaklyCompressibleFluid(rho0=1.0, c0=10.0)
DX = 0.1


def _water(positions, lower=(-1.0, -1.0), upper=(2.0, 2.0)):
    system = SPHSystem(lower, upper, resolution_ref=DX)
    water = FluidBody(system, "water", WATER, adaptation=SPHAdaptation(spacing=DX))
    water.generate_particles(positions)
    system.update_cell_linked_lists()
    inner = InnerRelation(water)
    inner.update_configuration()
    return water, inner


def _block(nx: int, ny: int) -> np.ndarray:
    gx, gy = np.meshgrid((np.arange(nx) + 0.5) * DX, (np.arange(ny) + 0.5) * DX, indexing="ij")
    return np.stack([gx.ravel(), gy.ravel()], axis=1)


def test_pair_fluxes_are_antisymmetric():
    """What one particle loses in mass and momentum its partner gains."""
    water, inner = _water(np.array([[0.5, 0.5], [0.6, 0.55]]))
    particles = water.particles
    particles.vel[:] = [[0.3, -0.1], [-0.2, 0.4]]
    particles.rho[:] = [1.01, 0.99]
    particles.p[:] = WATER.pressure(particles.rho)

    momentum = EulerianIntegration1stHalf(inner)
    mass = EulerianIntegration2ndHalf(inner)
    for op in (momentum, mass):
        op.setup_dynamics(0.0)
        op.interaction(0)
        op.interaction(1)

    assert np.allclose(momentum.dmom_dt[0], -momentum.dmom_dt[1])
    assert np.isclose(mass.drho_dt[0], -mass.drho_dt[1])
    assert np.any(momentum.dmom_dt[0] != 0.0)


def test_momentum_is_initialized_from_velocity():
    water, inner = _water(np.array([[0.5, 0.5]]))
    water.particles.vel[0] = [2.0, 1.0]
    water.particles.rho[0] = 1.5
    EulerianIntegration1stHalf(inner)
    assert np.allclose(water.particles.get_variable("mom")[0], [3.0, 1.5])


def test_isolated_particle_keeps_position_and_feels_only_gravity():
    water, inner = _water(np.array([[0.5, 0.5]]))
    g = np.array([0.0, -9.81])
    dt = 1e-3

    SimpleDynamics(TimeStepInitialization(water, g)).exec(dt)
    InteractionDynamics(EulerianIntegration1stHalf(inner)).exec(dt)
    InteractionDynamics(EulerianIntegration2ndHalf(inner)).exec(dt)

    particles = water.particles
    assert np.allclose(particles.pos[0], [0.5, 0.5])
    assert np.allclose(particles.vel[0], g * dt)
    assert np.allclose(particles.get_variable("mom")[0], WATER.rho0 * g * dt)
    assert np.isclose(particles.rho[0], WATER.rho0)
    assert np.isclose(particles.p[0], 0.0)


def test_uniform_state_is_steady():
    """A uniform flow through a uniform lattice produces no net flux in the interior."""
    water, inner = _water(_block(9, 9))
    particles = water.particles
    particles.vel[:] = [1.0, 0.0]

    momentum = EulerianIntegration1stHalf(inner)
    mass = EulerianIntegration2ndHalf(inner)
    momentum.setup_dynamics(0.0)
    mass.setup_dynamics(0.0)
    center = 4 * 9 + 4
    momentum.interaction(center)
    mass.interaction(center)

    assert np.allclose(momentum.dmom_dt[center], 0.0, atol=1e-9)
    assert abs(mass.drho_dt[center]) < 1e-9


def test_wall_pushes_pressurized_fluid_away():
    system = SPHSystem((-1.0, -1.0), (1.0, 1.0), resolution_ref=DX)
    water = FluidBody(system, "water", WATER, adaptation=SPHAdaptation(spacing=DX))
    water.generate_particles(np.array([[0.0, 0.05]]))
    wall = SolidBody(system, "wall", adaptation=SPHAdaptation(spacing=DX))
    xs = np.linspace(-0.5, 0.5, 11)
    wall.generate_particles(np.array([[x, y] for y in (-0.05, -0.15, -0.25) for x in xs]))
    wall.particles.get_variable("normal")[:] = [0.0, 1.0]
    system.update_cell_linked_lists()
    complex_relation = ComplexRelation(InnerRelation(water), ContactRelation(water, [wall]))
    complex_relation.update_configuration()

    water.particles.p[0] = 50.0
    op = EulerianIntegration1stHalfWithWall(complex_relation)
    op.setup_dynamics(0.0)
    op.interaction(0)
    assert op.dmom_dt[0][1] > 0.0


def test_smeared_surface_marks_neighbors_of_the_surface():
    """A row of particles: the first is on the surface, the next two within reach."""
    positions = np.array([[0.05 + k * DX, 0.5] for k in range(6)])
    water, inner = _water(positions)
    indicator = water.particles.register_variable("indicator", dtype=np.int64, initial=0)
    indicator[0] = 1

    op = SmearedSurfaceIndication(inner)
    InteractionDynamics(op).exec()

    smeared = water.particles.get_variable("smeared_surface")
    # cutoff = 2 * 1.3 * dx = 0.26: particles 1 and 2 see particle 0
    assert smeared.tolist() == [0, 1, 1, 0, 0, 0]


def _farfield_block():
    """Block with its surface flagged and normals set by FreeSurfaceIndication."""
    water, inner = _water(_block(10, 10))
    InteractionDynamics(FreeSurfaceIndication(inner)).exec()
    InteractionDynamics(SmearedSurfaceIndication(inner)).exec()
    return water, inner


def test_far_field_state_is_a_fixed_point():
    """Particles already in the far-field state are left unchanged."""
    water, inner = _farfield_block()
    particles = water.particles
    vel_farfield = np.array([0.5, 0.0])
    particles.vel[:] = vel_farfield
    particles.rho[:] = 1.0
    particles.p[:] = 0.0

    correction = NonReflectiveBoundaryCorrection(inner, 1.0, vel_farfield)
    InteractionDynamics(correction).exec()

    indicator = particles.get_variable("indicator")
    assert indicator.sum() > 0
    assert np.allclose(particles.rho, 1.0)
    assert np.allclose(particles.vel, vel_farfield)
    assert np.allclose(particles.get_variable("mom"), vel_farfield)


def test_supersonic_inflow_imposes_far_field():
    """On the upstream (left) surface the far-field state is imposed as is."""
    water, inner = _farfield_block()
    particles = water.particles
    vel_farfield = np.array([2.0 * WATER.c0, 0.0])
    particles.rho[:] = 1.02

    InteractionDynamics(NonReflectiveBoundaryCorrection(inner, 0.98, vel_farfield)).exec()

    left_middle = 0 * 10 + 5
    interior = 5 * 10 + 5
    assert particles.get_variable("indicator")[left_middle] == 1
    assert np.isclose(particles.rho[left_middle], 0.98)
    assert np.allclose(particles.vel[left_middle], vel_farfield)
    assert np.isclose(particles.p[left_middle], WATER.pressure(0.98))
    # interior particles are not touched
    assert np.isclose(particles.rho[interior], 1.02)
    assert np.allclose(particles.vel[interior], 0.0)


def test_subsonic_outflow_blends_interior_and_far_field():
    water, inner = _farfield_block()
    particles = water.particles
    particles.rho[:] = 1.0
    particles.p[:] = 0.0
    vel_farfield = np.array([0.2 * WATER.c0, 0.0])

    InteractionDynamics(NonReflectiveBoundaryCorrection(inner, 1.0, vel_farfield)).exec()

    right_middle = 9 * 10 + 5
    # outflow face: normal +x, interior at rest, far field moving out
    vel_normal = particles.vel[right_middle][0]
    assert 0.0 < vel_normal < vel_farfield[0]
    assert np.isclose(vel_normal, 0.5 * vel_farfield[0])
    assert particles.rho[right_middle] < 1.0


def test_boundary_average_includes_the_particle_itself():
    """
    Supersonic outflow takes the averaged state, weighted W0 Vol_i for the
    particle itself and W_ij Vol_j for its interior neighbors.
    """
    water, inner = _water(np.array([[0.5, 0.5], [0.6, 0.5], [0.7, 0.5]]))
    particles = water.particles
    particles.rho[:] = [1.1, 1.0, 1.0]
    vel_farfield = np.array([-2.0 * WATER.c0, 0.0])

    correction = NonReflectiveBoundaryCorrection(inner, 1.0, vel_farfield)
    particles.get_variable("indicator")[0] = 1
    particles.get_variable("normal")[0] = [-1.0, 0.0]
    InteractionDynamics(correction).exec()

    neighborhood = inner.inner_configuration[0]
    self_weight = water.kernel.W0(water.h) * particles.vol[0]
    weights = neighborhood.W_ij * particles.vol[neighborhood.j]
    expected = (self_weight * 1.1 + weights.sum() * 1.0) / (self_weight + weights.sum())

    assert np.isclose(particles.get_variable("inner_weight_summation")[0], self_weight + weights.sum())
    assert 1.0 < particles.rho[0] < 1.1
    assert np.isclose(particles.rho[0], expected)
    assert np.allclose(particles.vel[0], 0.0)
    # interior particles keep their state
    assert np.allclose(particles.rho[1:], 1.0)
