"""R-vine array validation, canonical relabeling and conditioning indices.

Vine arrays use the upper-triangular layout: column ``j`` (1-based) holds the
diagonal ("designated") variable ``A[j,j]`` and, in rows ``1..j-1``, the
partners of that variable in trees ``1..j-1``. Tree-``i`` edge of column
``j`` couples ``A[i,j]`` with ``A[j,j]`` given ``A[1..i-1,j]``. Example for a
5-dimensional R-vine (1-2-3 chain with 4 and 5 attached to 3)::

    1 1 2 3 3
      2 1 2 4
        3 1 2
          4 1
            5
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Iterator, NamedTuple, Sequence

import torch

from .errors import StructureError

logger = logging.getLogger(__name__)


class VineEdge(NamedTuple):
    """One pair copula of the vine.

    ``row``/``col`` index the vine array (0-based, ``row < col``), ``tree`` and
    ``edge`` index the family/parameter grids (0-based).
    """

    row: int
    col: int
    tree: int
    edge: int


def active_edges(d: int) -> Iterator[VineEdge]:
    """Enumerate the pair copulas of a ``d``-dimensional vine in evaluation order.

    Columns ascend and, within a column, trees ascend, so every edge only
    depends on pseudo-observations of earlier trees.
    """
    for k in range(1, int(d)):
        for i in range(k):
            yield VineEdge(row=i, col=k, tree=i, edge=k - i - 1)


def _as_int_matrix(A) -> torch.Tensor:
    try:
        M = torch.as_tensor(A)
    except (TypeError, ValueError, RuntimeError) as e:
        raise StructureError("vine array A has to be an integer matrix") from e
    if M.ndim != 2 or M.shape[0] != M.shape[1]:
        raise StructureError("vine array A has to be a quadratic matrix")
    if M.shape[0] == 0:
        raise StructureError("vine array A must not be empty")
    if M.is_floating_point():
        if not bool(torch.isfinite(M).all()) or not torch.equal(M, torch.round(M)):
            raise StructureError("vine array A must contain integer labels")
    elif M.dtype == torch.bool or M.is_complex():
        raise StructureError("vine array A must contain integer labels")
    return M.detach().cpu().to(torch.int64)


def validate_structure(A) -> torch.Tensor:
    """Check that ``A`` is square and that every column prefix ``A[1..j, j]`` is distinct.

    This does not prove that ``A`` encodes a feasible R-vine; callers are
    expected to pass a proper vine array (e.g. from :func:`dvine_array`).
    Returns the array as an ``int64`` tensor.
    """
    M = _as_int_matrix(A)
    d = int(M.shape[0])
    for j in range(d):
        col = M[: j + 1, j].tolist()
        if len(set(col)) != j + 1:
            raise StructureError(
                f"input A is not a vine array: column {j + 1} has repeated labels {col}",
                column=j + 1,
            )
    return M


def canonicalize_structure(A) -> tuple[torch.Tensor, list[int]]:
    """Relabel ``A`` so that ``A'[j, j] == j`` (1-based labels).

    Returns ``(A', perm)`` where ``perm[j-1]`` is the original label of the
    variable now called ``j``. Only labels change; rows, columns and all
    conditioned/conditioning relations are kept.
    """
    M = validate_structure(A)
    d = int(M.shape[0])
    perm = [int(M[j, j].item()) for j in range(d)]
    if len(set(perm)) != d:
        raise StructureError(f"diagonal of the vine array must hold {d} distinct labels, got {perm}")
    relabel = {lab: j + 1 for j, lab in enumerate(perm)}

    out = torch.zeros((d, d), dtype=torch.int64)
    for j in range(d):
        for i in range(j + 1):
            lab = int(M[i, j].item())
            if lab not in relabel:
                raise StructureError(
                    f"label {lab} in column {j + 1} does not appear on the diagonal of the vine array",
                    column=j + 1,
                )
            out[i, j] = relabel[lab]
    logger.debug("canonical relabeling of vine array: new label j <- old label %s", perm)
    return out, perm


def permutation_to_columns(perm: Sequence[int]) -> list[int]:
    """Map the labels in ``perm`` to 0-based data columns.

    Labels are ranked, so labels ``1..d`` map to columns ``0..d-1``.
    """
    ranks = {lab: c for c, lab in enumerate(sorted(int(p) for p in perm))}
    return [ranks[int(p)] for p in perm]


def permute_observations(u: torch.Tensor, perm: Sequence[int]) -> torch.Tensor:
    """Reorder the columns of ``u`` so that column ``j`` holds variable ``j`` of the canonical array."""
    cols = torch.tensor(permutation_to_columns(perm), dtype=torch.long, device=u.device)
    return u.index_select(1, cols)


def compute_max_array(canonical: torch.Tensor) -> torch.Tensor:
    """``M[i, k] = max(A'[0..i, k])`` for ``i < k``; zero elsewhere."""
    d = int(canonical.shape[0])
    max_array = torch.zeros((d, d), dtype=torch.int64)
    for k in range(1, d):
        running = 0
        for i in range(k):
            running = max(running, int(canonical[i, k].item()))
            max_array[i, k] = running
    return max_array


def compute_needed_backward(canonical: torch.Tensor, max_array: torch.Tensor) -> list[list[bool]]:
    """Flag the backward pseudo-observations ``v'[r][c]`` that some edge reads.

    Row 0 is the data itself and always available.
    """
    d = int(canonical.shape[0])
    needed = [[False] * d for _ in range(d)]
    for e in active_edges(d):
        m = int(max_array[e.row, e.col].item())
        if m != int(canonical[e.row, e.col].item()):
            needed[e.row][m - 1] = True
    return needed


def dvine_array(order: int | Sequence[int]) -> torch.Tensor:
    """Vine array of the D-vine (path) ``order[0] - order[1] - ... - order[d-1]``."""
    o = list(range(1, int(order) + 1)) if isinstance(order, int) else [int(x) for x in order]
    d = len(o)
    A = torch.zeros((d, d), dtype=torch.int64)
    for j in range(d):
        A[j, j] = o[j]
        for i in range(j):
            A[i, j] = o[j - i - 1]
    return A


def cvine_array(order: int | Sequence[int]) -> torch.Tensor:
    """Vine array of the C-vine with root ``order[0]`` in tree 1, ``order[1]`` in tree 2, ..."""
    o = list(range(1, int(order) + 1)) if isinstance(order, int) else [int(x) for x in order]
    d = len(o)
    A = torch.zeros((d, d), dtype=torch.int64)
    for j in range(d):
        A[j, j] = o[j]
        for i in range(j):
            A[i, j] = o[i]
    return A


@dataclass(frozen=True)
class RVineArray:
    """Validated vine array together with everything the density recursion needs.

    - ``array``: the array as given (``int64``).
    - ``canonical``: relabeled array with ``canonical[j, j] == j + 1``.
    - ``order``: original label of each canonical variable.
    - ``columns``: data column feeding each canonical variable.
    - ``max_array``: conditioning indices on the canonical array.
    - ``needed_backward``: which backward pseudo-observations are read.
    """

    d: int
    array: torch.Tensor
    canonical: torch.Tensor
    order: list[int]
    columns: list[int]
    max_array: torch.Tensor
    needed_backward: list[list[bool]]

    @classmethod
    def from_array(cls, A) -> "RVineArray":
        M = validate_structure(A)
        canonical, perm = canonicalize_structure(M)
        max_array = compute_max_array(canonical)
        return cls(
            d=int(M.shape[0]),
            array=M,
            canonical=canonical,
            order=perm,
            columns=permutation_to_columns(perm),
            max_array=max_array,
            needed_backward=compute_needed_backward(canonical, max_array),
        )

    @classmethod
    def from_dvine_order(cls, order: int | Sequence[int]) -> "RVineArray":
        return cls.from_array(dvine_array(order))

    @classmethod
    def from_cvine_order(cls, order: int | Sequence[int]) -> "RVineArray":
        return cls.from_array(cvine_array(order))

    @property
    def dim(self) -> int:
        return int(self.d)

    def edges(self) -> Iterator[VineEdge]:
        return active_edges(self.d)

    def permute(self, u: torch.Tensor) -> torch.Tensor:
        """Reorder data columns into canonical variable order."""
        cols = torch.tensor(self.columns, dtype=torch.long, device=u.device)
        return u.index_select(1, cols)

    def reads_forward(self, row: int, col: int) -> bool:
        """Whether edge ``(row, col)`` takes its partner from the forward table."""
        return int(self.max_array[row, col].item()) == int(self.canonical[row, col].item())

    def conditioned(self, row: int, col: int) -> tuple[int, int]:
        """Original labels of the two conditioned variables of edge ``(row, col)``."""
        return int(self.array[row, col].item()), int(self.array[col, col].item())

    def conditioning(self, row: int, col: int) -> list[int]:
        """Original labels of the conditioning set of edge ``(row, col)``."""
        return [int(x) for x in self.array[:row, col].tolist()]

    def to_json(self) -> dict[str, Any]:
        return {"d": int(self.d), "array": self.array.tolist()}

    @classmethod
    def from_json(cls, s: str | dict[str, Any]) -> "RVineArray":
        obj = json.loads(s) if isinstance(s, str) else s
        if "array" not in obj:
            raise StructureError("invalid RVineArray json: expected key 'array'")
        return cls.from_array(obj["array"])

    def str(self) -> str:
        """Human-readable string representation."""
        lines = [f"<torchvinepdf.RVineArray> dim={self.d}"]
        for i in range(self.d):
            cells = ["" if j < i else str(int(self.array[i, j].item())) for j in range(self.d)]
            lines.append(" ".join(f"{c:>3}" for c in cells))
        return "\n".join(lines)
