"""Exception types raised while validating and evaluating vine copulas."""

from __future__ import annotations


class VineCopulaError(ValueError):
    """Base class for all torchvinepdf errors."""


class StructureError(VineCopulaError):
    """The vine array is not square or a column violates the distinct-prefix rule."""

    def __init__(self, message: str, *, column: int | None = None):
        super().__init__(message)
        self.column = column


class ShapeError(VineCopulaError):
    """Dimensions of data, vine array and family/parameter grids disagree."""


class ParameterError(VineCopulaError):
    """A pair-copula parameter lies outside its family's domain.

    ``row`` and ``col`` are the 1-based coordinates of the offending cell in
    the family/parameter grids (row = tree, col = edge within the tree).
    """

    def __init__(self, message: str, *, row: int | None = None, col: int | None = None, family: str | None = None):
        super().__init__(message)
        self.row = row
        self.col = col
        self.family = family

    @classmethod
    def at(cls, family: str, row: int, col: int) -> "ParameterError":
        return cls(
            f"invalid parameter for {family} copula at ({row},{col})",
            row=row,
            col=col,
            family=family,
        )


class DomainError(VineCopulaError):
    """A density or h-function was evaluated outside the open unit square."""
