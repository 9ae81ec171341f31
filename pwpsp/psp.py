"""Common interface of norm-conserving pseudopotentials.

A norm-conserving pseudopotential in Kleinman-Bylander form is

    V_ps = V_loc(r) + sum_{l,m,i,j} |p^l_{m,i}> h^l_{ij} <p^l_{m,j}|

Hamiltonian assembly only needs V_loc and the radial projectors p^l_i in
real and reciprocal space, the ionic charge and the energy correction, so
every pseudopotential flavor (tabulated, analytic, ...) exposes exactly
that set of evaluators.
"""

from abc import ABC, abstractmethod


class NormConservingPsp(ABC):
    """Evaluators shared by all norm-conserving pseudopotential flavors."""

    lmax: int

    @abstractmethod
    def charge_ionic(self) -> int:
        """Valence charge of the pseudo-ion."""

    @abstractmethod
    def count_n_proj_radial(self, l: int) -> int:
        """Number of radial projectors in angular momentum channel l."""

    @abstractmethod
    def eval_projector_real(self, i: int, l: int, r):
        """Radial projector p^l_i at real-space distance r > 0."""

    @abstractmethod
    def eval_projector_fourier(self, i: int, l: int, q):
        """Radial Fourier transform of p^l_i at momentum |q|."""

    @abstractmethod
    def eval_local_real(self, r):
        """Local potential at real-space distance r."""

    @abstractmethod
    def eval_local_fourier(self, q):
        """Fourier transform of the local potential at |q| > 0."""

    @abstractmethod
    def eval_energy_correction(self, n_electrons):
        """Energy correction from the non-Coulombic part of the local potential."""

    def count_n_proj(self, l: int | None = None) -> int:
        """Number of projectors including magnetic quantum numbers.

        Args:
            l: Angular momentum channel. If None, sum over all channels.

        Returns:
            (2l+1) * n_l for one channel, or the total over l = 0..lmax.
        """
        if l is None:
            return sum(self.count_n_proj(l) for l in range(self.lmax + 1))
        return (2 * l + 1) * self.count_n_proj_radial(l)

    @property
    def has_nonlocal(self) -> bool:
        return self.count_n_proj() > 0
