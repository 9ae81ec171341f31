"""Physical constants in atomic units (Hartree)."""

import jax.numpy as jnp

# In atomic units: hbar = m_e = e = 4*pi*eps_0 = 1
RYDBERG_TO_HARTREE = 0.5
HARTREE_TO_RYDBERG = 2.0

# Pi
PI = jnp.pi
FOUR_PI = 4.0 * jnp.pi
