"""
Smoothing kernels W(r, h) and their radial derivative dW/dr.

All kernels share one contract (see `Kernel`):
- W(r, h) >= 0 for r in [0, cutoff_radius(h)), W = 0 outside;
- dW(r, h) is the derivative with respect to r (<= 0 inside the support);
- the integral of W over the support is 1 for every h.

The gradient with respect to particle i is recovered by the relations as
    grad_i W_ij = dW(r_ij, h) * e_ij,   e_ij = (x_i - x_j) / r_ij.

Both functions accept scalars or numpy arrays of distances.

References:
- Monaghan (1992), Smoothed Particle Hydrodynamics (cubic spline M4).
- Wendland (1995), piecewise polynomial, positive definite and compactly
  supported radial functions (C2 kernel).
"""

from __future__ import annotations

import math
from typing import Protocol

import numpy as np

from sphsys.core.errors import ConfigurationError


class Kernel(Protocol):
    """Interchangeable kernel strategy."""

    dim: int
    kernel_size: float

    def cutoff_radius(self, h: float) -> float:
        ...

    def W(self, r, h: float):
        ...

    def dW(self, r, h: float):
        ...

    def W0(self, h: float) -> float:
        ...


def _check_h(h: float) -> float:
    h = float(h)
    if h <= 0.0:
        raise ValueError("h must be > 0")
    return h


def _as_output(values: np.ndarray, scalar: bool):
    return float(values) if scalar else values


class CubicSplineKernel:
    """
    Cubic spline (M4) kernel with support radius 2h:

        W(q) = sigma * { 1 - 1.5 q^2 + 0.75 q^3     0 <= q < 1
                       { 0.25 (2 - q)^3             1 <= q < 2
                       { 0                          q >= 2

    with sigma1 = 2/(3h), sigma2 = 10/(7 pi h^2), sigma3 = 1/(pi h^3).
    """

    kernel_size = 2.0

    def __init__(self, dim: int):
        if dim not in (1, 2, 3):
            raise ConfigurationError("dim must be 1, 2 or 3")
        self.dim = int(dim)

    def _sigma(self, h: float) -> float:
        if self.dim == 1:
            return 2.0 / (3.0 * h)
        if self.dim == 2:
            return 10.0 / (7.0 * math.pi * h * h)
        return 1.0 / (math.pi * h ** 3)

    def cutoff_radius(self, h: float) -> float:
        return self.kernel_size * _check_h(h)

    def W(self, r, h: float):
        h = _check_h(h)
        scalar = np.isscalar(r)
        q = np.asarray(r, dtype=np.float64) / h
        sigma = self._sigma(h)

        w = np.where(
            q < 1.0,
            1.0 - 1.5 * q ** 2 + 0.75 * q ** 3,
            0.25 * np.clip(2.0 - q, 0.0, None) ** 3,
        )
        return _as_output(sigma * w, scalar)

    def dW(self, r, h: float):
        h = _check_h(h)
        scalar = np.isscalar(r)
        q = np.asarray(r, dtype=np.float64) / h
        sigma = self._sigma(h)

        # d/dq of the piecewise polynomial above
        dw_dq = np.where(
            q < 1.0,
            -3.0 * q + 2.25 * q ** 2,
            -0.75 * np.clip(2.0 - q, 0.0, None) ** 2,
        )
        return _as_output(sigma * dw_dq / h, scalar)

    def W0(self, h: float) -> float:
        return self._sigma(_check_h(h))


class WendlandC2Kernel:
    """
    Wendland C2 kernel with support radius 2h:

        2D/3D: W(q) = sigma (1 - q/2)^4 (2q + 1)
        1D:    W(q) = sigma (1 - q/2)^3 (1.5q + 1)

    with sigma1 = 5/(8h), sigma2 = 7/(4 pi h^2), sigma3 = 21/(16 pi h^3).
    """

    kernel_size = 2.0

    def __init__(self, dim: int):
        if dim not in (1, 2, 3):
            raise ConfigurationError("dim must be 1, 2 or 3")
        self.dim = int(dim)

    def _sigma(self, h: float) -> float:
        if self.dim == 1:
            return 5.0 / (8.0 * h)
        if self.dim == 2:
            return 7.0 / (4.0 * math.pi * h * h)
        return 21.0 / (16.0 * math.pi * h ** 3)

    def cutoff_radius(self, h: float) -> float:
        return self.kernel_size * _check_h(h)

    def W(self, r, h: float):
        h = _check_h(h)
        scalar = np.isscalar(r)
        q = np.asarray(r, dtype=np.float64) / h
        a = np.clip(1.0 - 0.5 * q, 0.0, None)

        if self.dim == 1:
            w = a ** 3 * (1.5 * q + 1.0)
        else:
            w = a ** 4 * (2.0 * q + 1.0)
        return _as_output(self._sigma(h) * w, scalar)

    def dW(self, r, h: float):
        h = _check_h(h)
        scalar = np.isscalar(r)
        q = np.asarray(r, dtype=np.float64) / h
        a = np.clip(1.0 - 0.5 * q, 0.0, None)

        if self.dim == 1:
            dw_dq = -3.0 * q * a ** 2
        else:
            dw_dq = -5.0 * q * a ** 3
        return _as_output(self._sigma(h) * dw_dq / h, scalar)

    def W0(self, h: float) -> float:
        return self._sigma(_check_h(h))


_KERNELS = {
    "cubic_spline": CubicSplineKernel,
    "wendland_c2": WendlandC2Kernel,
}


def create_kernel(name: str, dim: int) -> Kernel:
    try:
        kernel_cls = _KERNELS[str(name).lower()]
    except KeyError:
        raise ConfigurationError(f"Unknown kernel type: {name!r} (expected one of {sorted(_KERNELS)})") from None
    return kernel_cls(dim)


def kernel_gradient(kernel: Kernel, r_vec: np.ndarray, h: float) -> np.ndarray:
    """
    Full gradient vector grad_i W(x_i - x_j, h) for one displacement r_vec.

    At r = 0 the direction is undefined; for symmetric kernels the gradient
    is zero there.
    """
    r_vec = np.asarray(r_vec, dtype=np.float64)
    rn = float(np.linalg.norm(r_vec))
    if rn == 0.0:
        return np.zeros_like(r_vec)
    return kernel.dW(rn, h) * r_vec / rn
