"""Vine copula model — validation and density evaluation."""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from typing import Any, Sequence

import torch

from .bicop import Bicop, check_parameters
from .controls import EvalControls
from .errors import DomainError, ParameterError, ShapeError, StructureError
from .families import normalize_family
from .rvine_structure import RVineArray, active_edges
from .stats import clamp_unit, in_open_unit

logger = logging.getLogger(__name__)


def _check_grid_shape(grid, d: int, name: str) -> None:
    if d == 1 and grid is None:
        return
    try:
        nrows = len(grid)
        ncols = [len(row) for row in grid]
    except TypeError as e:
        raise ShapeError(f"{name} must be a ({d - 1}x{d - 1}) grid") from e
    if nrows != d - 1 or any(c != d - 1 for c in ncols):
        raise ShapeError(f"{name} must be a ({d - 1}x{d - 1}) grid, got {nrows} rows with lengths {ncols}")


def _check_pair_copulas_shape(pair_copulas: Sequence[Sequence[Bicop]], d: int) -> None:
    if len(pair_copulas) != d - 1:
        raise ShapeError(f"pair_copulas must have {d - 1} trees, got {len(pair_copulas)}")
    for t in range(d - 1):
        expected = d - 1 - t
        if len(pair_copulas[t]) != expected:
            raise ShapeError(f"pair_copulas[{t}] must have {expected} edges, got {len(pair_copulas[t])}")


def build_pair_copulas(family, theta, d: int) -> list[list[Bicop]]:
    """Validate the family/parameter grids and turn them into per-tree ``Bicop`` lists.

    Only the active cells (tree ``t``, edge ``e < d-1-t``) are read. The first
    invalid cell, in tree-major order, raises :class:`ParameterError` with its
    1-based grid coordinates.
    """
    _check_grid_shape(family, d, "family")
    _check_grid_shape(theta, d, "theta")
    pcs: list[list[Bicop | None]] = [[None] * (d - 1 - t) for t in range(d - 1)]
    for e in sorted(active_edges(d), key=lambda x: (x.tree, x.edge)):
        raw = family[e.tree][e.edge]
        try:
            fam = normalize_family(raw)
        except ValueError as err:
            raise ParameterError(
                f"unknown copula family {raw!r} at ({e.tree + 1},{e.edge + 1})",
                row=e.tree + 1,
                col=e.edge + 1,
                family=str(raw),
            ) from err
        par = theta[e.tree][e.edge]
        if not check_parameters(fam, par):
            raise ParameterError.at(fam.value, e.tree + 1, e.edge + 1)
        pcs[e.tree][e.edge] = Bicop(fam, par)
    return pcs


class _PseudoObsTable:
    """Triangular cache of pseudo-observations, one 1-D tensor per (row, col)."""

    def __init__(self, d: int, name: str):
        self.d = d
        self.name = name
        self._cells: list[list[torch.Tensor | None]] = [[None] * d for _ in range(d)]

    def get(self, row: int, col: int) -> torch.Tensor:
        if not (0 <= row <= col < self.d):
            raise StructureError(
                f"vine array is not feasible: {self.name} pseudo-observation ({row + 1},{col + 1}) is outside the array"
            )
        val = self._cells[row][col]
        if val is None:
            raise StructureError(
                f"vine array is not feasible: {self.name} pseudo-observation ({row + 1},{col + 1}) is not available"
            )
        return val

    def set(self, row: int, col: int, value: torch.Tensor) -> None:
        self._cells[row][col] = value


@dataclass
class Vinecop:
    """Torch implementation of the R-vine copula density.

    ``structure`` is a validated :class:`RVineArray`; ``pair_copulas[t][e]``
    is the pair copula of tree ``t`` (0-based) and edge ``e``, i.e. cell
    ``(t, e)`` of the family/parameter grids.
    """

    structure: RVineArray
    pair_copulas: list[list[Bicop]]

    def __post_init__(self):
        _check_pair_copulas_shape(self.pair_copulas, self.structure.d)

    @classmethod
    def from_arrays(cls, A, family, theta) -> "Vinecop":
        structure = RVineArray.from_array(A)
        return cls(structure=structure, pair_copulas=build_pair_copulas(family, theta, structure.d))

    @classmethod
    def from_dvine_order(cls, order: int | Sequence[int], family, theta) -> "Vinecop":
        structure = RVineArray.from_dvine_order(order)
        return cls(structure=structure, pair_copulas=build_pair_copulas(family, theta, structure.d))

    @classmethod
    def from_cvine_order(cls, order: int | Sequence[int], family, theta) -> "Vinecop":
        structure = RVineArray.from_cvine_order(order)
        return cls(structure=structure, pair_copulas=build_pair_copulas(family, theta, structure.d))

    @classmethod
    def independence(cls, A) -> "Vinecop":
        structure = RVineArray.from_array(A)
        d = structure.d
        return cls(structure=structure, pair_copulas=[[Bicop() for _ in range(d - 1 - t)] for t in range(d - 1)])

    @classmethod
    def from_json(cls, s: str | dict[str, Any]) -> "Vinecop":
        obj = json.loads(s) if isinstance(s, str) else s
        if "structure" not in obj or "pair copulas" not in obj:
            raise ValueError("invalid Vinecop json: expected keys 'structure' and 'pair copulas'")
        structure = RVineArray.from_json(obj["structure"])
        pc_node = obj["pair copulas"]
        pcs: list[list[Bicop]] = []
        for tree in range(structure.d - 1):
            tree_json = pc_node.get(f"tree{tree}", {})
            pcs.append([Bicop.from_json(tree_json[f"pc{edge}"]) for edge in range(structure.d - 1 - tree)])
        return cls(structure=structure, pair_copulas=pcs)

    def to_json(self) -> dict[str, Any]:
        pcs: dict[str, Any] = {}
        for t, tree in enumerate(self.pair_copulas):
            pcs[f"tree{t}"] = {f"pc{e}": pc.to_json() for e, pc in enumerate(tree)}
        return {"structure": self.structure.to_json(), "pair copulas": pcs}

    @property
    def dim(self) -> int:
        return int(self.structure.d)

    @property
    def families(self) -> list[list[str]]:
        return [[pc.family.value for pc in tree] for tree in self.pair_copulas]

    @property
    def parameters(self) -> list[list[torch.Tensor]]:
        return [[pc.parameters for pc in tree] for tree in self.pair_copulas]

    @property
    def npars(self) -> int:
        return sum(pc.npars for tree in self.pair_copulas for pc in tree)

    def get_pair_copula(self, tree: int, edge: int) -> Bicop:
        return self.pair_copulas[int(tree)][int(edge)]

    def str(self) -> str:
        """Human-readable string representation."""
        lines = [f"<torchvinepdf.Vinecop> Vinecop model with {self.dim} variables"]
        lines.append(f"{'tree':>4}  {'edge':>4}  {'conditioned variables':>22}  {'conditioning variables':>23}  {'family':>10}  {'parameters':>20}")
        for e in sorted(active_edges(self.dim), key=lambda x: (x.tree, x.edge)):
            pc = self.pair_copulas[e.tree][e.edge]
            a, b = self.structure.conditioned(e.row, e.col)
            cond = ", ".join(str(x) for x in self.structure.conditioning(e.row, e.col))
            pstr = ", ".join(f"{v:.2f}" for v in pc.parameters.tolist())
            lines.append(f"{e.tree + 1:>4}  {e.edge + 1:>4}  {f'{a}, {b}':>22}  {cond:>23}  {pc.family.value:>10}  {pstr:>20}")
        return "\n".join(lines)

    def _format_data(self, u, controls: EvalControls) -> torch.Tensor:
        device = controls.resolve_device(u)
        try:
            u = torch.as_tensor(u, dtype=controls.dtype, device=device)
        except (TypeError, ValueError, RuntimeError) as e:
            raise ShapeError("u must be a 2D numeric array") from e
        if u.ndim != 2:
            raise ShapeError(f"u must be 2D, got shape {tuple(u.shape)}")
        if u.shape[1] != self.dim:
            raise ShapeError(f"u must have {self.dim} columns to match the vine array, got {u.shape[1]}")
        if controls.clamp_inputs:
            u = clamp_unit(u, controls.eps)
        if not in_open_unit(u):
            raise DomainError("observations must lie in the open interval (0,1)")
        return u

    def pdf(self, u: torch.Tensor, *, controls: EvalControls | None = None) -> torch.Tensor:
        """Evaluate the vine copula density for each row of ``u``."""
        if controls is None:
            controls = EvalControls()
        u = self._format_data(u, controls)
        return self._pdf_canonical(self.structure.permute(u), controls)

    def _pdf_canonical(self, u: torch.Tensor, controls: EvalControls) -> torch.Tensor:
        d = self.dim
        n = int(u.shape[0])
        pdf = torch.ones((n,), device=u.device, dtype=u.dtype)
        if d == 1 or n == 0:
            return pdf

        logger.debug("evaluating %d-dimensional vine density on %d rows", d, n)
        needed_backward = self.structure.needed_backward
        forward = _PseudoObsTable(d, "forward")
        backward = _PseudoObsTable(d, "backward")
        for k in range(d):
            forward.set(0, k, u[:, k])
            backward.set(0, k, u[:, k])

        for e in active_edges(d):
            i, k = e.row, e.col
            if i == 0:
                logger.debug("column %d: %d pair copulas", k + 1, k)
            cop = self.pair_copulas[e.tree][e.edge]
            z1 = forward.get(i, k)
            m = int(self.structure.max_array[i, k].item()) - 1
            if self.structure.reads_forward(i, k):
                z2 = forward.get(i, m)
            else:
                z2 = backward.get(i, m)

            uu = torch.stack([z2, z1], dim=1)
            pdf = pdf * cop.pdf(uu)

            forward.set(i + 1, k, cop.hfunc1(uu, eps=controls.eps))
            if needed_backward[i + 1][k] or not controls.skip_unneeded_hfuncs:
                backward.set(i + 1, k, cop.hfunc2(uu, eps=controls.eps))

        return pdf

    def loglik(self, u: torch.Tensor, *, controls: EvalControls | None = None) -> float:
        return float(torch.log(self.pdf(u, controls=controls)).sum().item())

    def aic(self, u: torch.Tensor) -> float:
        return -2.0 * self.loglik(u) + 2.0 * float(self.npars)

    def bic(self, u: torch.Tensor) -> float:
        n = float(torch.as_tensor(u).shape[0])
        return -2.0 * self.loglik(u) + math.log(n) * float(self.npars)


def vinepdf(u, A, family, theta, *, controls: EvalControls | None = None) -> torch.Tensor:
    """Density of a simplified R-vine copula at each row of ``u``.

    Parameters
    ----------
    u : (n, d) array-like
        Pseudo-observations in the open unit hypercube.
    A : (d, d) integer array-like
        Vine array in upper-triangular layout (see :mod:`torchvinepdf.rvine_structure`).
        Feasibility of the array is not checked beyond the distinct-prefix rule.
    family : (d-1, d-1) grid of str
        Family of pair copula ``(tree, edge)``; only cells with
        ``edge < d-1-tree`` are read.
    theta : (d-1, d-1) grid
        Matching parameters, e.g. ``[rho, nu]`` for the ``t`` family.
    controls : EvalControls, optional

    Returns
    -------
    torch.Tensor
        Length-``n`` vector of densities in the row order of ``u``.
    """
    if controls is None:
        controls = EvalControls()
    structure = RVineArray.from_array(A)
    d = structure.d

    try:
        u_shape = tuple(torch.as_tensor(u).shape)
    except (TypeError, ValueError, RuntimeError) as e:
        raise ShapeError("u must be a 2D numeric array") from e
    if len(u_shape) != 2:
        raise ShapeError(f"u must be 2D, got shape {u_shape}")
    if u_shape[1] != d:
        raise ShapeError(f"u has {u_shape[1]} columns but the vine array is {d}x{d}")

    vc = Vinecop(structure=structure, pair_copulas=build_pair_copulas(family, theta, d))
    logger.debug("validated %d-dimensional vine with %d pair copulas", d, d * (d - 1) // 2)
    return vc.pdf(u, controls=controls)
