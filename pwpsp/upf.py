"""Norm-conserving pseudopotentials tabulated in the Unified Pseudopotential Format.

A UPF pseudopotential gives, on a radial mesh r_k with weights dr_k:
    - the local potential V_loc(r_k)
    - Kleinman-Bylander projectors stored as r_k * beta^l_i(r_k), each on a
      prefix of the mesh (the projectors are compactly supported)
    - the coupling coefficients h^l_ij (PP_DIJ)

Reciprocal-space quantities are obtained by radial quadrature on the mesh:

    beta^l_i(q) = 4*pi * sum_k j_l(q r_k) r_k^2 beta^l_i(r_k) dr_k

    V_loc(q) = 4*pi/q * (sum_k sin(q r_k) (r_k V_loc(r_k) + Z) dr_k - Z/q)

The local potential behaves as -Z/r at large r, whose transform diverges.
The tail -Z/r is therefore removed before the quadrature and its analytic
transform -4*pi*Z/q^2 added back. The q = 0 component is left to the caller.

Everything the evaluators need (interpolants, r*dr weighted tables) is
built once in the constructor; the record is read-only afterwards.
"""

from collections.abc import Mapping, Sequence

import jax.numpy as jnp
import numpy as np

from pwpsp.constants import FOUR_PI, HARTREE_TO_RYDBERG, RYDBERG_TO_HARTREE
from pwpsp.exceptions import (
    DomainError, InvalidPseudopotentialError, UnsupportedFeatureError,
)
from pwpsp.logger import log
from pwpsp.psp import NormConservingPsp
from pwpsp.radial import RadialGrid, check_finite, linear_interpolation
from pwpsp.special import L_MAX_BESSEL, spherical_bessel_j


# (feature name, predicate on the UPF header)
_UNSUPPORTED_FEATURES = (
    ("non-linear core correction", lambda h: bool(h.get("core_correction", False))),
    ("spin-orbit coupling", lambda h: bool(h.get("has_so", False))),
    ("semilocal potential", lambda h: h.get("pseudo_type") == "SL"),
    ("ultrasoft", lambda h: h.get("pseudo_type") == "US"),
    ("projector-augmented wave", lambda h: h.get("pseudo_type") == "PAW"),
    ("GIPAW reconstruction data", lambda h: bool(h.get("has_gipaw", False))),
    ("bare Coulomb potential", lambda h: h.get("pseudo_type") == "1/r"),
)


def check_supported(header: Mapping) -> None:
    """Reject UPF headers declaring features this implementation does not handle.

    All offending features are collected before raising, so a file with
    several incompatibilities is diagnosed in one pass.

    Args:
        header: UPF header mapping (PP_HEADER attributes).

    Raises:
        UnsupportedFeatureError: If any unsupported feature is declared.
    """
    unsupported = [name for name, declared in _UNSUPPORTED_FEATURES if declared(header)]
    if unsupported:
        log.info("Rejecting pseudopotential with unsupported features: %s",
                 ", ".join(unsupported))
        raise UnsupportedFeatureError(unsupported)


def group_by_angular_momentum(entries: Sequence[Mapping], key: str,
                              n_channels: int) -> list[list]:
    """Split tagged UPF entries into per-channel lists.

    Args:
        entries: UPF entries, each with an "angular_momentum" tag.
        key: Field of each entry to collect (e.g. "radial_function").
        n_channels: Number of channels l = 0..n_channels-1.

    Returns:
        groups[l] with the selected fields of channel l, in file order.
    """
    groups = [[] for _ in range(n_channels)]
    for entry in entries:
        l = int(entry["angular_momentum"])
        if not 0 <= l < n_channels:
            raise InvalidPseudopotentialError(
                f"entry with angular momentum {l} outside channels 0..{n_channels - 1}"
            )
        groups[l].append(entry[key])
    return groups


def split_coupling_matrix(d_ion, n_proj: Sequence[int]) -> list[np.ndarray]:
    """Cut the combined PP_DIJ matrix into one square block per channel.

    Channel l occupies the n_proj[l] rows and columns following all
    channels < l.

    Args:
        d_ion: (n, n) combined coupling matrix, n >= sum(n_proj).
        n_proj: Number of projectors per channel.

    Returns:
        List of (n_l, n_l) blocks.
    """
    d_ion = np.asarray(d_ion, dtype=np.float64)
    if d_ion.size == 0:
        d_ion = np.zeros((0, 0))
    d_ion = np.atleast_2d(d_ion)
    total = sum(n_proj)
    if d_ion.shape[0] != d_ion.shape[1] or d_ion.shape[0] < total:
        raise InvalidPseudopotentialError(
            f"coupling matrix of shape {d_ion.shape} cannot hold {total} projectors"
        )

    blocks = []
    start = 0
    for n_l in n_proj:
        blocks.append(d_ion[start:start + n_l, start:start + n_l])
        start += n_l
    return blocks


class PspUpf(NormConservingPsp):
    """Norm-conserving pseudopotential tabulated on a radial mesh.

    All energies are in Hartree. Channels are indexed by l = 0..lmax and
    projectors within a channel by i = 0..n_l-1.

    Attributes:
        Zion: Valence charge. UPF: z_valence.
        lmax: Maximal angular momentum of the non-local part. UPF: l_max.
        grid: Radial mesh and integration weights. UPF: PP_R, PP_RAB.
        vloc: (n,) local potential on the mesh. UPF: PP_LOCAL.
        r_projs: r_projs[l][i] = r * beta^l_i(r) on a mesh prefix. UPF: PP_BETA.
        h: h[l] = (n_l, n_l) coupling coefficients. UPF: PP_DIJ.
        pswfcs: Pseudo-atomic wavefunctions per channel. UPF: PP_CHI (not evaluated).
        pswfc_occs: Their occupations (not evaluated).
        rhoatom: Pseudo-atomic valence density. UPF: PP_RHOATOM (not evaluated).
        vloc_interp: Linear interpolant of vloc.
        r_projs_interp: Linear interpolants of r_projs.
        r_vloc_corr_dr: (r V_loc(r) + Z) dr on the mesh.
        r2_projs_dr: r^2 beta^l_i(r) dr on each projector's mesh prefix.
        identifier: String identifying the pseudopotential.
        description: Free-form description. UPF: comment.
        dtype: Floating-point type of every stored array.
    """

    def __init__(
        self,
        Zion: int,
        lmax: int,
        rgrid,
        drgrid,
        vloc,
        r_projs,
        h,
        pswfcs=(),
        pswfc_occs=(),
        rhoatom=(),
        identifier: str = "",
        description: str = "",
        dtype=jnp.float64,
    ):
        """Build a pseudopotential from data already converted to Hartree units.

        Args:
            Zion: Valence charge.
            lmax: Maximal angular momentum channel (-1 for no non-local part).
            rgrid: (n,) radial mesh.
            drgrid: (n,) mesh integration weights.
            vloc: (n,) local potential in Hartree.
            r_projs: r_projs[l][i], r * beta on the first m <= n mesh points.
            h: h[l], (n_l, n_l) symmetric coupling matrices in 1/Hartree.
            pswfcs: Optional pseudo-wavefunctions per channel.
            pswfc_occs: Optional occupations matching pswfcs.
            rhoatom: Optional pseudo-atomic density on the mesh.
            identifier: Label of this pseudopotential.
            description: Free-form description.
            dtype: Floating-point type used for all stored arrays.
        """
        if int(Zion) != Zion:
            raise InvalidPseudopotentialError(f"valence charge must be an integer, got {Zion}")
        if len(r_projs) != lmax + 1 or len(h) != lmax + 1:
            raise InvalidPseudopotentialError(
                f"expected {lmax + 1} projector channels and coupling blocks, "
                f"got {len(r_projs)} and {len(h)}"
            )
        if lmax > L_MAX_BESSEL:
            raise UnsupportedFeatureError([f"angular momentum channels above l={L_MAX_BESSEL}"])

        self.Zion = int(Zion)
        self.lmax = int(lmax)
        self.dtype = dtype
        self.identifier = identifier
        self.description = description
        self.grid = RadialGrid.from_arrays(rgrid, drgrid, dtype=dtype)
        n_grid = len(self.grid)

        vloc_np = check_finite("local potential", vloc)
        if vloc_np.shape != (n_grid,):
            raise InvalidPseudopotentialError(
                f"local potential has {vloc_np.size} values on a {n_grid}-point grid"
            )
        self.vloc = jnp.asarray(vloc_np, dtype=dtype)

        self.r_projs = tuple(
            tuple(self._tabulated(f"projector l={l} i={i}", beta, n_grid)
                  for i, beta in enumerate(r_projs_l))
            for l, r_projs_l in enumerate(r_projs)
        )
        self.h = tuple(
            self._coupling_block(l, h_l, len(self.r_projs[l])) for l, h_l in enumerate(h)
        )

        if len(pswfcs) != len(pswfc_occs):
            raise InvalidPseudopotentialError(
                "pseudo-wavefunctions and occupations have different channel counts"
            )
        self.pswfcs = tuple(
            tuple(self._tabulated(f"wavefunction l={l} i={i}", chi, n_grid)
                  for i, chi in enumerate(pswfcs_l))
            for l, pswfcs_l in enumerate(pswfcs)
        )
        self.pswfc_occs = tuple(
            jnp.asarray(check_finite(f"occupations l={l}", occs_l), dtype=dtype)
            for l, occs_l in enumerate(pswfc_occs)
        )
        for l, (chis, occs) in enumerate(zip(self.pswfcs, self.pswfc_occs)):
            if len(chis) != occs.shape[0]:
                raise InvalidPseudopotentialError(
                    f"channel l={l} has {len(chis)} wavefunctions but {occs.shape[0]} occupations"
                )
        rho_np = check_finite("atomic charge density", rhoatom)
        if rho_np.size > n_grid:
            raise InvalidPseudopotentialError("atomic charge density is longer than the grid")
        self.rhoatom = jnp.asarray(rho_np, dtype=dtype)

        # Interpolants, for real-space evaluation
        self.vloc_interp = linear_interpolation(self.grid, self.vloc)
        self.r_projs_interp = tuple(
            tuple(linear_interpolation(self.grid, r_proj) for r_proj in r_projs_l)
            for r_projs_l in self.r_projs
        )

        # Quadrature weights, for reciprocal-space evaluation
        r = self.grid.r
        dr = self.grid.dr
        self.r_vloc_corr_dr = (r * self.vloc + self.Zion) * dr
        self.r2_projs_dr = tuple(
            tuple(r[:r_proj.shape[0]] * r_proj * dr[:r_proj.shape[0]] for r_proj in r_projs_l)
            for r_projs_l in self.r_projs
        )

        log.debug(
            "Built UPF pseudopotential %r: Zion=%d, lmax=%d, %d grid points (%s), "
            "projectors per channel %s",
            identifier, self.Zion, self.lmax, n_grid,
            "linear" if self.grid.is_linear() else "non-linear",
            [len(r_projs_l) for r_projs_l in self.r_projs],
        )
        self._frozen = True

    def __setattr__(self, name, value):
        if getattr(self, "_frozen", False):
            raise AttributeError(f"{type(self).__name__} is read-only after construction")
        super().__setattr__(name, value)

    def __repr__(self) -> str:
        return (f"PspUpf(identifier={self.identifier!r}, Zion={self.Zion}, "
                f"lmax={self.lmax}, n_grid={len(self.grid)})")

    @classmethod
    def from_upf(cls, pseudo: Mapping, identifier: str = "", dtype=jnp.float64) -> "PspUpf":
        """Build a pseudopotential from parsed UPF data.

        Does not support:
            - Non-linear core correction
            - Fully-relativistic / spin-orbit pseudos
            - Bare Coulomb / all-electron potentials
            - Semilocal potentials
            - Ultrasoft potentials
            - Projector-augmented wave potentials
            - GIPAW reconstruction data

        UPF files come in two unit schemes for projectors and coupling
        coefficients: beta [Ry Bohr^{-1/2}], h [Ry^{-1}] or beta [Bohr^{-1/2}],
        h [Ry]. Only beta h beta enters calculations, so the choice does not
        matter physically. HGH pseudos in UPF use the first scheme, which is
        assumed here so intermediate quantities compare directly with
        analytical HGH.

        Args:
            pseudo: Mapping with keys "header", "radial_grid",
                "radial_grid_derivative", "local_potential", "beta_projectors",
                "D_ion" and optionally "atomic_wave_functions",
                "total_charge_density".
            identifier: Label of this pseudopotential, e.g. the file path.
            dtype: Floating-point type used for all stored arrays.

        Returns:
            PspUpf instance in Hartree units.
        """
        header = pseudo["header"]
        check_supported(header)

        lmax = int(header["l_max"])
        n_channels = lmax + 1

        # Ry -> Ha
        vloc = np.asarray(pseudo["local_potential"], dtype=np.float64) * RYDBERG_TO_HARTREE
        betas = group_by_angular_momentum(
            pseudo.get("beta_projectors", []), "radial_function", n_channels
        )
        r_projs = [
            [np.asarray(beta, dtype=np.float64) * RYDBERG_TO_HARTREE for beta in betas_l]
            for betas_l in betas
        ]

        # 1/Ry -> 1/Ha
        h = [
            block * HARTREE_TO_RYDBERG
            for block in split_coupling_matrix(
                pseudo.get("D_ion", np.zeros((0, 0))), [len(b) for b in r_projs]
            )
        ]

        wfcs = pseudo.get("atomic_wave_functions", [])
        n_wfc_channels = max([n_channels] + [int(w["angular_momentum"]) + 1 for w in wfcs])
        pswfcs = group_by_angular_momentum(wfcs, "radial_function", n_wfc_channels)
        pswfc_occs = group_by_angular_momentum(wfcs, "occupation", n_wfc_channels)

        return cls(
            header["z_valence"], lmax,
            pseudo["radial_grid"], pseudo["radial_grid_derivative"],
            vloc, r_projs, h,
            pswfcs=pswfcs,
            pswfc_occs=pswfc_occs,
            rhoatom=pseudo.get("total_charge_density", []),
            identifier=identifier,
            description=header.get("comment", ""),
            dtype=dtype,
        )

    def _tabulated(self, name: str, values, n_grid: int) -> jnp.ndarray:
        arr = check_finite(name, values)
        if arr.ndim != 1 or not 2 <= arr.size <= n_grid:
            raise InvalidPseudopotentialError(
                f"{name} must hold between 2 and {n_grid} values, got shape {arr.shape}"
            )
        return jnp.asarray(arr, dtype=self.dtype)

    def _coupling_block(self, l: int, h_l, n_l: int) -> jnp.ndarray:
        block = check_finite(f"coupling matrix l={l}", h_l)
        if block.size == 0:
            block = np.zeros((0, 0))
        if block.shape != (n_l, n_l):
            raise InvalidPseudopotentialError(
                f"coupling matrix l={l} has shape {block.shape}, expected {(n_l, n_l)}"
            )
        if not np.allclose(block, block.T, rtol=1e-10, atol=1e-12):
            raise InvalidPseudopotentialError(f"coupling matrix l={l} is not symmetric")
        return jnp.asarray(block, dtype=self.dtype)

    def _check_projector_index(self, i: int, l: int) -> None:
        if not 0 <= l <= self.lmax:
            raise IndexError(f"angular momentum l={l} outside channels 0..{self.lmax}")
        n_l = len(self.r_projs[l])
        if not 0 <= i < n_l:
            raise IndexError(f"projector i={i} outside 0..{n_l - 1} for channel l={l}")

    def _argument(self, name: str, x, allow_zero: bool) -> jnp.ndarray:
        """Check a radius, momentum or electron count and convert it to the record's dtype."""
        x_np = np.asarray(x, dtype=np.float64)
        if not np.all(np.isfinite(x_np)):
            raise DomainError(f"{name} must be finite")
        if np.any(x_np < 0.0):
            raise DomainError(f"{name} must be non-negative")
        if not allow_zero and np.any(x_np == 0.0):
            raise DomainError(f"{name} = 0 is not supported; handle it as a special case")
        return jnp.asarray(x, dtype=self.dtype)

    def charge_ionic(self) -> int:
        return self.Zion

    def count_n_proj_radial(self, l: int) -> int:
        return len(self.r_projs[l])

    def eval_projector_real(self, i: int, l: int, r):
        """Evaluate the i-th projector of channel l at real-space distance r.

        Linear interpolation on the mesh. The file stores r * beta(r), so the
        result is divided by r and r = 0 raises DomainError.

        Args:
            i: Projector index within the channel (0-based).
            l: Angular momentum channel.
            r: Distance(s) in Bohr inside the projector's support.

        Returns:
            beta^l_i(r), same shape as r.
        """
        self._check_projector_index(i, l)
        r = self._argument("r", r, allow_zero=False)
        return self.r_projs_interp[l][i](r) / r

    def eval_projector_fourier(self, i: int, l: int, q):
        """Evaluate the radial Fourier transform of the i-th projector of channel l.

        4*pi * sum_k j_l(q r_k) (r_k^2 beta^l_i(r_k) dr_k)

        Args:
            i: Projector index within the channel (0-based).
            l: Angular momentum channel.
            q: Momentum magnitude(s) |k+G| >= 0 in 1/Bohr.

        Returns:
            beta^l_i(q), same shape as q.
        """
        self._check_projector_index(i, l)
        q = self._argument("q", q, allow_zero=True)
        r2_proj_dr = self.r2_projs_dr[l][i]
        r = self.grid.r[:r2_proj_dr.shape[0]]
        jl = spherical_bessel_j(l, q[..., None] * r)
        return FOUR_PI * jnp.sum(jl * r2_proj_dr, axis=-1)

    def eval_local_real(self, r):
        """Evaluate the local potential at distance r by linear interpolation."""
        r = self._argument("r", r, allow_zero=True)
        return self.vloc_interp(r)

    def eval_local_fourier(self, q):
        """Evaluate the Fourier transform of the local potential for q > 0.

        4*pi/q * (sum_k sin(q r_k) (r_k V(r_k) + Z) dr_k - Z/q)

        Args:
            q: Momentum magnitude(s) |G| > 0 in 1/Bohr.

        Returns:
            V_loc(q), same shape as q.
        """
        q = self._argument("q", q, allow_zero=False)
        s = jnp.sum(jnp.sin(q[..., None] * self.grid.r) * self.r_vloc_corr_dr, axis=-1)
        return FOUR_PI * (s - self.Zion / q) / q

    def eval_energy_correction(self, n_electrons):
        """Energy correction of the non-Coulombic part of the local potential.

        4*pi * N_elec * sum_k r_k (r_k V(r_k) + Z) dr_k
        """
        n_electrons = self._argument("n_electrons", n_electrons, allow_zero=True)
        return FOUR_PI * n_electrons * jnp.dot(self.grid.r, self.r_vloc_corr_dr)
