"""Exceptions raised while building or evaluating pseudopotentials.

Construction errors abort record creation, so a caller never holds a
partially built pseudopotential. Evaluation errors abort only the failing
query; the record stays valid for subsequent calls.

Example:
    >>> from pwpsp import PspUpf
    >>> from pwpsp.exceptions import UnsupportedFeatureError
    >>>
    >>> try:
    ...     psp = PspUpf.from_upf(pseudo)
    ... except UnsupportedFeatureError as e:
    ...     print(f"Cannot use this file: {e.features}")
"""

from __future__ import annotations


class PseudopotentialError(Exception):
    """Base exception for all pseudopotential errors."""
    pass


class UnsupportedFeatureError(PseudopotentialError, ValueError):
    """Raised when the input declares physics this implementation does not handle.

    Attributes:
        features: Every unsupported feature found, in detection order.
    """

    def __init__(self, features: list[str]):
        self.features = list(features)
        super().__init__(
            "Pseudopotential contains the following unsupported "
            f"features/quantities: {', '.join(self.features)}"
        )


class InvalidPseudopotentialError(PseudopotentialError, ValueError):
    """Raised when tabulated data is structurally inconsistent."""
    pass


class DomainError(PseudopotentialError, ValueError):
    """Raised when an evaluator is queried outside its numerical domain."""
    pass
