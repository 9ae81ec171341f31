"""Shared pytest configuration."""

import jax

# Enable 64-bit precision (essential for radial quadratures)
jax.config.update("jax_enable_x64", True)
