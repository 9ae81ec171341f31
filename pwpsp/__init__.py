"""
Tabulated norm-conserving pseudopotentials for plane-wave DFT in JAX.

This package evaluates norm-conserving pseudopotentials given on a radial
mesh in the Unified Pseudopotential Format (UPF):
- Local potential in real space (linear interpolation) and reciprocal space
  (radial quadrature with the -Z/r tail treated analytically)
- Kleinman-Bylander projectors in real and reciprocal space
  (Fourier-Bessel quadrature)
- Long-range energy correction of the local potential
"""

from pwpsp.exceptions import (
    PseudopotentialError, UnsupportedFeatureError,
    InvalidPseudopotentialError, DomainError,
)
from pwpsp.psp import NormConservingPsp
from pwpsp.radial import RadialGrid, LinearInterpolant
from pwpsp.upf import PspUpf

__version__ = "0.1.0"
__all__ = [
    "PspUpf", "NormConservingPsp", "RadialGrid", "LinearInterpolant",
    "PseudopotentialError", "UnsupportedFeatureError",
    "InvalidPseudopotentialError", "DomainError",
]
