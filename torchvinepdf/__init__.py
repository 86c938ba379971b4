"""torchvinepdf — Pure-PyTorch regular vine copula densities.

Evaluates the joint density of an R-vine copula given a vine array, a grid
of pair-copula families and a grid of parameters. GPU-ready and vectorized
over observations.
"""

from __future__ import annotations

__version__ = "0.1.0"

from .families import BicopFamily
from .bicop import Bicop, check_parameters, density, hfunction
from .controls import EvalControls
from .errors import DomainError, ParameterError, ShapeError, StructureError, VineCopulaError
from .rvine_structure import (
    RVineArray,
    VineEdge,
    active_edges,
    canonicalize_structure,
    compute_max_array,
    cvine_array,
    dvine_array,
    permute_observations,
    validate_structure,
)
from .vinecop import Vinecop, vinepdf

import torch


def get_device(verbose: bool = False) -> torch.device:
    """Return the best available device (CUDA if available, else CPU).

    Parameters
    ----------
    verbose : bool, optional
        If ``True``, print which device was selected.

    Returns
    -------
    torch.device
    """
    if torch.cuda.is_available():
        dev = torch.device("cuda")
    else:
        dev = torch.device("cpu")
    if verbose:
        print(f"torchvinepdf: using device '{dev}'")
    return dev


# ---------------------------------------------------------------------------
# Individual family shortcut names
# ---------------------------------------------------------------------------
indep = BicopFamily.indep
gauss = BicopFamily.gauss
t = BicopFamily.t
clayton = BicopFamily.clayton
gumbel = BicopFamily.gumbel
frank = BicopFamily.frank
joe = BicopFamily.joe
amhaq = BicopFamily.amhaq
fgm = BicopFamily.fgm
plackett = BicopFamily.plackett
tawn = BicopFamily.tawn
surclayton = BicopFamily.surclayton
surgumbel = BicopFamily.surgumbel
surjoe = BicopFamily.surjoe

# ---------------------------------------------------------------------------
# Family convenience lists
# ---------------------------------------------------------------------------
one_par = [BicopFamily.gauss, BicopFamily.clayton, BicopFamily.gumbel, BicopFamily.frank, BicopFamily.joe,
           BicopFamily.amhaq, BicopFamily.fgm, BicopFamily.plackett,
           BicopFamily.surclayton, BicopFamily.surgumbel, BicopFamily.surjoe]
two_par = [BicopFamily.t]
three_par = [BicopFamily.tawn]
parametric = one_par + two_par + three_par
archimedean = [BicopFamily.clayton, BicopFamily.gumbel, BicopFamily.frank, BicopFamily.joe, BicopFamily.amhaq,
               BicopFamily.surclayton, BicopFamily.surgumbel, BicopFamily.surjoe]
elliptical = [BicopFamily.gauss, BicopFamily.t]
extreme_value = [BicopFamily.tawn, BicopFamily.gumbel]
survival = [BicopFamily.surclayton, BicopFamily.surgumbel, BicopFamily.surjoe]
all = list(BicopFamily)


__all__ = [
    "BicopFamily",
    "Bicop",
    "check_parameters",
    "density",
    "hfunction",
    "EvalControls",
    "VineCopulaError",
    "StructureError",
    "ShapeError",
    "ParameterError",
    "DomainError",
    "RVineArray",
    "VineEdge",
    "active_edges",
    "validate_structure",
    "canonicalize_structure",
    "compute_max_array",
    "permute_observations",
    "dvine_array",
    "cvine_array",
    "Vinecop",
    "vinepdf",
    "get_device",
    # Individual family shortcut names
    "indep",
    "gauss",
    "t",
    "clayton",
    "gumbel",
    "frank",
    "joe",
    "amhaq",
    "fgm",
    "plackett",
    "tawn",
    "surclayton",
    "surgumbel",
    "surjoe",
    # Family convenience lists
    "one_par",
    "two_par",
    "three_par",
    "parametric",
    "archimedean",
    "elliptical",
    "extreme_value",
    "survival",
    "all",
]
