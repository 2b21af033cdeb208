"""
Exception taxonomy for the SPH core.

- ConfigurationError: invalid setup detected at construction (fatal).
- NumericalInstabilityError: the particle state became physically meaningless
  (negative density, NaN/Inf), detected by sanity checks after a step.
- DomainBoundaryError: a particle left the partition domain while the
  partition runs with the REJECT policy.
"""

from __future__ import annotations


class SPHError(Exception):
    """Base class of all errors raised by sphsys."""


class ConfigurationError(SPHError, ValueError):
    """Invalid bodies, resolutions, domains or scene parameters."""


class NumericalInstabilityError(SPHError, ArithmeticError):
    """Non-finite or non-physical particle state."""

    def __init__(self, message: str, body_name: str | None = None, indices=None):
        super().__init__(message)
        self.body_name = body_name
        self.indices = indices


class DomainBoundaryError(SPHError, ValueError):
    """Particle outside the partition domain under the REJECT policy."""

    def __init__(self, message: str, indices=None):
        super().__init__(message)
        self.indices = indices
