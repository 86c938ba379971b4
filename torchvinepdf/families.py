"""BicopFamily enum — copula family identifiers."""

from __future__ import annotations

from enum import Enum


class BicopFamily(str, Enum):
    indep = "indep"
    gauss = "gauss"
    t = "t"
    clayton = "clayton"
    gumbel = "gumbel"
    frank = "frank"
    joe = "joe"
    amhaq = "amhaq"
    fgm = "fgm"
    plackett = "plackett"
    tawn = "tawn"
    surclayton = "surclayton"
    surgumbel = "surgumbel"
    surjoe = "surjoe"


_ALIASES = {
    "ind": BicopFamily.indep,
    "independence": BicopFamily.indep,
    "gaussian": BicopFamily.gauss,
    "normal": BicopFamily.gauss,
    "student": BicopFamily.t,
    "student-t": BicopFamily.t,
    "student_t": BicopFamily.t,
    "amh": BicopFamily.amhaq,
    "ali-mikhail-haq": BicopFamily.amhaq,
    "farlie-gumbel-morgenstern": BicopFamily.fgm,
    "survival-clayton": BicopFamily.surclayton,
    "survival_clayton": BicopFamily.surclayton,
    "survival-gumbel": BicopFamily.surgumbel,
    "survival_gumbel": BicopFamily.surgumbel,
    "survival-joe": BicopFamily.surjoe,
    "survival_joe": BicopFamily.surjoe,
}

# Survival families evaluate their base family on (1-u1, 1-u2).
_SURVIVAL_BASE = {
    BicopFamily.surclayton: BicopFamily.clayton,
    BicopFamily.surgumbel: BicopFamily.gumbel,
    BicopFamily.surjoe: BicopFamily.joe,
}

_NPARS = {
    BicopFamily.indep: 0,
    BicopFamily.gauss: 1,
    BicopFamily.t: 2,
    BicopFamily.clayton: 1,
    BicopFamily.gumbel: 1,
    BicopFamily.frank: 1,
    BicopFamily.joe: 1,
    BicopFamily.amhaq: 1,
    BicopFamily.fgm: 1,
    BicopFamily.plackett: 1,
    BicopFamily.tawn: 3,
}


def survival_base(fam: BicopFamily) -> BicopFamily | None:
    return _SURVIVAL_BASE.get(fam)


def family_npars(fam: BicopFamily) -> int:
    base = _SURVIVAL_BASE.get(fam, fam)
    return _NPARS[base]


def family_is_exchangeable(fam: BicopFamily) -> bool:
    """Whether c(u1, u2) == c(u2, u1) for every parameter value."""
    return fam != BicopFamily.tawn


def normalize_family(fam: str | BicopFamily) -> BicopFamily:
    if isinstance(fam, BicopFamily):
        return fam
    if not isinstance(fam, str):
        raise ValueError(f"Unknown BicopFamily: {fam!r}")
    key = fam.strip().lower()
    if key in _ALIASES:
        return _ALIASES[key]
    try:
        return BicopFamily(key)
    except ValueError as e:
        raise ValueError(f"Unknown BicopFamily: {fam!r}") from e
