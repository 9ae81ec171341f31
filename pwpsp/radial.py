"""Radial grids and linear interpolation on them.

Pseudopotential tables are sampled on a one-dimensional radial mesh that can
be linear (r_i = r_0 + i*h) or logarithmic (r_i = r_0 * exp(i*h)). Each mesh
point carries an integration weight dr_i, so that for either kind of mesh

    integral f(r) dr  ~  sum_i f(r_i) * dr_i

For a logarithmic mesh dr_i = h * r_i, i.e. the derivative dr/di.
"""

from dataclasses import dataclass
from typing import NamedTuple

import jax.numpy as jnp
import numpy as np

from pwpsp.exceptions import DomainError, InvalidPseudopotentialError


def check_finite(name: str, values) -> np.ndarray:
    """Return values as a host array, rejecting NaN and Inf entries."""
    arr = np.asarray(values, dtype=np.float64)
    if not np.all(np.isfinite(arr)):
        raise InvalidPseudopotentialError(f"{name} contains non-finite values")
    return arr


@dataclass(frozen=True)
class RadialGrid:
    """Radial mesh with integration weights.

    Attributes:
        r: (n,) strictly increasing, positive mesh points in Bohr.
        dr: (n,) integration weights (mesh derivative) in Bohr.
    """
    r: jnp.ndarray
    dr: jnp.ndarray

    @classmethod
    def from_arrays(cls, r, dr, dtype=jnp.float64) -> "RadialGrid":
        """Validate a mesh and its weights and store them with the given dtype.

        Args:
            r: (n,) mesh points.
            dr: (n,) integration weights.
            dtype: Floating-point type of the stored arrays.

        Returns:
            RadialGrid instance.
        """
        r_np = check_finite("radial grid", r)
        dr_np = check_finite("radial grid derivative", dr)
        if r_np.ndim != 1 or r_np.size < 2:
            raise InvalidPseudopotentialError("radial grid must be a 1D sequence of at least 2 points")
        if dr_np.shape != r_np.shape:
            raise InvalidPseudopotentialError(
                f"radial grid has {r_np.size} points but its derivative has {dr_np.size}"
            )
        if r_np[0] <= 0.0:
            raise InvalidPseudopotentialError(
                f"radial grid must start at r > 0, got r[0] = {r_np[0]}"
            )
        if np.any(np.diff(r_np) <= 0.0):
            raise InvalidPseudopotentialError("radial grid must be strictly increasing")
        return cls(r=jnp.asarray(r_np, dtype=dtype), dr=jnp.asarray(dr_np, dtype=dtype))

    def __len__(self) -> int:
        return int(self.r.shape[0])

    def prefix(self, n: int) -> "RadialGrid":
        """The first n points of the mesh, used for compactly supported tables."""
        if not 1 <= n <= len(self):
            raise InvalidPseudopotentialError(
                f"cannot take {n} points of a {len(self)}-point radial grid"
            )
        return RadialGrid(r=self.r[:n], dr=self.dr[:n])

    def integrate(self, f: jnp.ndarray) -> jnp.ndarray:
        """Quadrature sum_i f_i * dr_i over the first len(f) mesh points."""
        n = f.shape[-1]
        return jnp.sum(f * self.dr[:n], axis=-1)

    def is_linear(self, rtol: float = 1e-8) -> bool:
        """Whether mesh points are uniformly spaced."""
        if len(self) < 3:
            return True
        steps = np.diff(np.asarray(self.r))
        return bool(np.allclose(steps, steps[0], rtol=rtol, atol=0.0))


class LinearInterpolant(NamedTuple):
    """Piecewise-linear interpolant of tabulated values.

    Evaluation returns the tabulated values exactly at the nodes and is
    linear in between. Points outside [x[0], x[-1]] raise DomainError.
    Queries are compared with the nodes in the nodes' dtype.
    """
    x: jnp.ndarray  # (n,) nodes
    y: jnp.ndarray  # (n,) values

    @property
    def domain(self) -> tuple[float, float]:
        return float(self.x[0]), float(self.x[-1])

    def __call__(self, t):
        t = jnp.asarray(t, dtype=self.x.dtype)
        t_np = np.asarray(t)
        lo = np.asarray(self.x[0])
        hi = np.asarray(self.x[-1])
        if not np.all(np.isfinite(t_np)) or np.any(t_np < lo) or np.any(t_np > hi):
            raise DomainError(
                f"interpolation point outside the tabulated range [{lo}, {hi}]"
            )
        # jnp.interp clips to the last interval, which rounds at the last node
        return jnp.where(t == self.x[-1], self.y[-1], jnp.interp(t, self.x, self.y))


def linear_interpolation(grid: RadialGrid, values: jnp.ndarray) -> LinearInterpolant:
    """Build an interpolant of values tabulated on the first len(values) mesh points.

    Args:
        grid: Radial mesh. Must have at least as many points as values.
        values: (m,) tabulated function, m <= len(grid).

    Returns:
        LinearInterpolant over grid.prefix(m).
    """
    if values.shape[0] < 2:
        raise InvalidPseudopotentialError("cannot interpolate a table of fewer than 2 points")
    sub = grid.prefix(values.shape[0])
    return LinearInterpolant(x=sub.r, y=values)
