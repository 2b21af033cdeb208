import numpy as np
import pytest

from sphsys.core.errors import ConfigurationError
from sphsys.core.materials import WeaklyCompressibleFluid
from sphsys.sph.riemann import AcousticRiemannSolver, FluidState, NoRiemannSolver, create_riemann_solver

WATER = WeaklyCompressibleFluid(rho0=1000.0, c0=10.0)


@pytest.mark.parametrize("solver_cls", [NoRiemannSolver, AcousticRiemannSolver])
def test_identical_states_are_returned_unchanged(solver_cls):
    """Equal left/right states: the interface state is that state."""
    solver = solver_cls(WATER, WATER)
    state = FluidState(rho=1002.0, vel=np.array([0.3, -1.2]), p=200.0)
    star = solver.get_interface_state(state, state, np.array([0.6, 0.8]))

    assert np.isclose(star.rho, 1002.0)
    assert np.allclose(star.vel, [0.3, -1.2])
    assert np.isclose(star.p, 200.0)


def test_solvers_agree_when_normal_velocities_are_equal():
    """
    Zero normal velocity jump: the acoustic pressure correction and the
    limited velocity correction both vanish.
    """
    e_ij = np.array([1.0, 0.0])
    state_i = FluidState(rho=1000.5, vel=np.array([1.0, 0.5]), p=50.0)
    state_j = FluidState(rho=999.0, vel=np.array([1.0, -0.3]), p=-100.0)

    plain = NoRiemannSolver(WATER).get_interface_state(state_i, state_j, e_ij)
    acoustic = AcousticRiemannSolver(WATER).get_interface_state(state_i, state_j, e_ij)

    assert np.isclose(plain.p, acoustic.p)
    assert np.isclose(plain.rho, acoustic.rho)
    assert np.allclose(plain.vel, acoustic.vel)
    assert np.allclose(plain.vel, [1.0, 0.1])


def test_acoustic_pressure_adds_impedance_weighted_jump():
    """p* = p_avg + 0.5 * rho0 c0 / 2 * (u_i - u_j) for equal materials."""
    e_ij = np.array([0.0, 1.0])
    # i above j, approaching each other: u_i = -e.v_i = 0.2, u_j = -e.v_j = -0.2
    state_i = FluidState(rho=1000.0, vel=np.array([0.0, -0.2]), p=10.0)
    state_j = FluidState(rho=1000.0, vel=np.array([0.0, 0.2]), p=30.0)

    star = AcousticRiemannSolver(WATER).get_interface_state(state_i, state_j, e_ij)
    z = WATER.reference_impedance
    p_avg = 20.0
    assert np.isclose(star.p, p_avg + 0.5 * (z / 2.0) * 0.4)
    # compression raises the interface density by (p* - p_avg) / c^2
    assert np.isclose(star.rho, 1000.0 + (star.p - p_avg) / WATER.c0 ** 2)


def test_acoustic_velocity_correction_is_limited():
    """Small normal jump: the correction is scaled by 3 |u_jump| / c."""
    e_ij = np.array([1.0, 0.0])
    state_i = FluidState(rho=1000.0, vel=np.array([-0.01, 0.0]), p=100.0)
    state_j = FluidState(rho=1000.0, vel=np.array([0.0, 0.0]), p=0.0)

    star = AcousticRiemannSolver(WATER).get_interface_state(state_i, state_j, e_ij)
    u_jump = 0.01
    limiter = 3.0 * u_jump / WATER.c0
    expected = -0.005 - 100.0 / (2.0 * WATER.reference_impedance) * limiter
    assert np.isclose(star.vel[0], expected)
    assert star.vel[1] == 0.0


def test_dissipation_hooks():
    z = WATER.reference_impedance
    plain = NoRiemannSolver(WATER)
    acoustic = AcousticRiemannSolver(WATER)

    assert plain.dissipative_u_jump(123.0) == 0.0
    assert plain.dissipative_p_jump(0.7) == 0.0
    assert np.isclose(acoustic.dissipative_u_jump(123.0), 123.0 / z)
    assert np.isclose(acoustic.dissipative_p_jump(0.7), 0.5 * z * 0.7)


def test_impedance_weighting_between_different_fluids():
    """The stiffer side dominates the averaged velocity, the softer side the pressure."""
    heavy = WeaklyCompressibleFluid(rho0=1000.0, c0=10.0)
    light = WeaklyCompressibleFluid(rho0=1.0, c0=10.0)
    solver = NoRiemannSolver(heavy, light)
    star = solver.get_interface_state(
        FluidState(rho=1000.0, vel=np.array([1.0]), p=0.0),
        FluidState(rho=1.0, vel=np.array([0.0]), p=100.0),
        np.array([1.0]),
    )
    assert star.vel[0] > 0.99
    assert star.p > 99.0


def test_create_riemann_solver_by_name():
    assert type(create_riemann_solver("acoustic", WATER)) is AcousticRiemannSolver
    assert type(create_riemann_solver("no_riemann", WATER)) is NoRiemannSolver
    assert type(create_riemann_solver("none", WATER, WATER)) is NoRiemannSolver
    with pytest.raises(ConfigurationError):
        create_riemann_solver("hllc", WATER)
