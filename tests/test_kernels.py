import math

import numpy as np
import pytest

from sphsys.core.errors import ConfigurationError
from sphsys.sph.kernels import CubicSplineKernel, WendlandC2Kernel, create_kernel, kernel_gradient

KERNEL_CLASSES = [CubicSplineKernel, WendlandC2Kernel]


def _integrate_over_support(kernel, h: float, n: int = 20000) -> float:
    """Midpoint rule of the radially symmetric integral of W over its support."""
    R = kernel.cutoff_radius(h)
    dr = R / n
    r = (np.arange(n, dtype=np.float64) + 0.5) * dr
    w = kernel.W(r, h)
    if kernel.dim == 1:
        shell = 2.0 * np.ones_like(r)
    elif kernel.dim == 2:
        shell = 2.0 * math.pi * r
    else:
        shell = 4.0 * math.pi * r * r
    return float(np.sum(w * shell) * dr)


@pytest.mark.parametrize("kernel_cls", KERNEL_CLASSES)
@pytest.mark.parametrize("dim", [1, 2, 3])
def test_kernel_normalization_is_independent_of_h(kernel_cls, dim):
    """
    The integral of W over its support converges to the same constant (1)
    for every smoothing length.
    """
    kernel = kernel_cls(dim)
    values = [_integrate_over_support(kernel, h) for h in (0.01, 0.1, 1.0, 3.7)]
    for v in values:
        assert np.isclose(v, 1.0, rtol=1e-5)
    assert np.allclose(values, values[0], rtol=1e-6)


@pytest.mark.parametrize("kernel_cls", KERNEL_CLASSES)
def test_kernel_support_is_compact(kernel_cls):
    """W > 0 inside [0, 2h), W = 0 and dW = 0 at and beyond 2h."""
    h = 0.04
    kernel = kernel_cls(2)
    assert kernel.cutoff_radius(h) == pytest.approx(2.0 * h)

    assert kernel.W(0.5 * h, h) > 0.0
    assert kernel.W(1.99 * h, h) > 0.0
    assert kernel.W(2.0 * h, h) == 0.0
    assert kernel.W(2.5 * h, h) == 0.0
    assert kernel.dW(2.5 * h, h) == 0.0


@pytest.mark.parametrize("kernel_cls", KERNEL_CLASSES)
def test_kernel_is_non_negative_and_decreasing(kernel_cls):
    """Weights are non-negative and dW <= 0 over the whole support."""
    h = 0.3
    kernel = kernel_cls(3)
    r = np.linspace(0.0, 2.2 * h, 500)
    w = kernel.W(r, h)
    dw = kernel.dW(r, h)
    assert np.all(w >= 0.0)
    assert np.all(dw <= 1e-15)
    assert np.all(np.diff(w) <= 1e-12)


@pytest.mark.parametrize("kernel_cls", KERNEL_CLASSES)
def test_kernel_derivative_matches_finite_difference(kernel_cls):
    """dW(r, h) is the derivative of W with respect to r."""
    h = 0.5
    kernel = kernel_cls(2)
    eps = 1e-6
    for r in (0.1 * h, 0.7 * h, 1.0 * h, 1.5 * h, 1.9 * h):
        fd = (kernel.W(r + eps, h) - kernel.W(r - eps, h)) / (2.0 * eps)
        assert np.isclose(kernel.dW(r, h), fd, rtol=1e-5, atol=1e-8)


@pytest.mark.parametrize("kernel_cls", KERNEL_CLASSES)
def test_kernel_accepts_scalars_and_arrays(kernel_cls):
    kernel = kernel_cls(2)
    h = 0.1
    r = np.array([0.0, 0.05, 0.15, 0.3])
    w = kernel.W(r, h)
    assert isinstance(kernel.W(0.05, h), float)
    assert w.shape == (4,)
    assert np.isclose(w[1], kernel.W(0.05, h))
    assert np.isclose(kernel.W0(h), kernel.W(0.0, h))


def test_kernel_gradient_is_antisymmetric_and_radial():
    """grad_i W(x_i - x_j) = -grad_j W, parallel to r_ij; zero at r = 0."""
    kernel = WendlandC2Kernel(2)
    h = 0.04
    r = np.array([0.013, -0.007])

    g1 = kernel_gradient(kernel, r, h)
    g2 = kernel_gradient(kernel, -r, h)
    assert np.allclose(g1, -g2, rtol=0.0, atol=1e-14)
    # points from i towards j for a decreasing kernel
    assert np.dot(g1, r) < 0.0
    assert np.isclose(g1[0] * r[1] - g1[1] * r[0], 0.0, atol=1e-9)
    assert np.allclose(kernel_gradient(kernel, np.zeros(2), h), 0.0)


def test_create_kernel_by_name():
    assert isinstance(create_kernel("cubic_spline", 2), CubicSplineKernel)
    assert isinstance(create_kernel("Wendland_C2", 3), WendlandC2Kernel)
    with pytest.raises(ConfigurationError):
        create_kernel("gaussian", 2)
    with pytest.raises(ConfigurationError):
        CubicSplineKernel(4)
