from __future__ import annotations

from dataclasses import dataclass

from sphsys.core.errors import ConfigurationError


@dataclass(frozen=True)
class WeaklyCompressibleFluid:
    """
    Weakly-compressible fluid with a linear state equation:

        p = c0^2 (rho - rho0)

    This is the k(rho - rho0) state equation of the WCSPH loop with the
    stiffness written as k = c0^2, so that c0 is the artificial sound speed
    that also enters the acoustic impedance rho0 * c0 of the Riemann solvers.
    """

    rho0: float
    c0: float
    mu: float = 0.0  # dynamic viscosity

    def __post_init__(self) -> None:
        if self.rho0 <= 0.0:
            raise ConfigurationError(f"reference density must be > 0, got {self.rho0}")
        if self.c0 <= 0.0:
            raise ConfigurationError(f"reference sound speed must be > 0, got {self.c0}")
        if self.mu < 0.0:
            raise ConfigurationError(f"viscosity must be >= 0, got {self.mu}")

    @property
    def reference_impedance(self) -> float:
        return self.rho0 * self.c0

    @property
    def kinematic_viscosity(self) -> float:
        return self.mu / self.rho0

    def pressure(self, rho):
        return self.c0 * self.c0 * (rho - self.rho0)

    def density_from_pressure(self, p):
        return self.rho0 + p / (self.c0 * self.c0)

    def sound_speed(self, p=None, rho=None) -> float:
        return self.c0


@dataclass(frozen=True)
class Solid:
    """Rigid wall material; only a reference density is needed for wall ghost states."""

    rho0: float = 1.0

    def __post_init__(self) -> None:
        if self.rho0 <= 0.0:
            raise ConfigurationError(f"reference density must be > 0, got {self.rho0}")
