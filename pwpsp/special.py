"""Spherical Bessel functions of the first kind.

The radial Fourier transform of f(r) Y_lm(r_hat) is

    f_l(q) = 4*pi * integral r^2 f(r) j_l(q r) dr

so j_l is evaluated once per radial mesh point and plane wave. The closed
forms (e.g. j_1(x) = (sin x - x cos x) / x^2) cancel catastrophically as
x -> 0, so below BESSEL_SERIES_CUTOFF the power series

    j_l(x) = x^l / (2l+1)!! * sum_k (-x^2/2)^k / (k! (2l+3)(2l+5)...(2l+2k+1))

is used instead. This makes j_0(0) = 1 and j_l(0) = 0 (l > 0) exact.
"""

import jax.numpy as jnp

BESSEL_SERIES_CUTOFF = 1.0
_N_SERIES_TERMS = 10
L_MAX_BESSEL = 5


def _double_factorial(n: int) -> float:
    result = 1.0
    for k in range(n, 0, -2):
        result *= k
    return result


def _bessel_series(l: int, x: jnp.ndarray) -> jnp.ndarray:
    """Power series of j_l around x = 0."""
    x2 = x * x
    term = jnp.ones_like(x)
    total = term
    for k in range(1, _N_SERIES_TERMS):
        term = -term * x2 / (2.0 * k * (2 * l + 2 * k + 1))
        total = total + term
    return x**l / _double_factorial(2 * l + 1) * total


def _bessel_closed_form(l: int, x: jnp.ndarray) -> jnp.ndarray:
    s = jnp.sin(x)
    c = jnp.cos(x)
    if l == 0:
        return s / x
    elif l == 1:
        return (s - x * c) / x**2
    elif l == 2:
        return ((3.0 - x**2) * s - 3.0 * x * c) / x**3
    elif l == 3:
        return ((15.0 - 6.0 * x**2) * s + (x**3 - 15.0 * x) * c) / x**4
    elif l == 4:
        return ((105.0 - 45.0 * x**2 + x**4) * s + (10.0 * x**3 - 105.0 * x) * c) / x**5
    else:
        return (
            (945.0 - 420.0 * x**2 + 15.0 * x**4) * s
            - (945.0 * x - 105.0 * x**3 + x**5) * c
        ) / x**6


def spherical_bessel_j(l: int, x: jnp.ndarray) -> jnp.ndarray:
    """Spherical Bessel function j_l(x), stable for small and zero arguments.

    Args:
        l: Order, 0 <= l <= L_MAX_BESSEL.
        x: Argument(s).

    Returns:
        j_l(x) with the shape of x.
    """
    if not 0 <= l <= L_MAX_BESSEL:
        raise ValueError(f"l={l} not implemented (max l={L_MAX_BESSEL})")
    x = jnp.asarray(x)
    if not jnp.issubdtype(x.dtype, jnp.floating):
        x = x.astype(jnp.result_type(float))
    small = jnp.abs(x) < BESSEL_SERIES_CUTOFF
    # Keep the closed form away from x = 0 even on the branch jnp.where discards
    x_safe = jnp.where(small, BESSEL_SERIES_CUTOFF, x)
    return jnp.where(small, _bessel_series(l, x), _bessel_closed_form(l, x_safe))
