"""Evaluation controls for vine copula densities."""

from __future__ import annotations

from dataclasses import dataclass

import torch


@dataclass
class EvalControls:
    dtype: torch.dtype = torch.float64
    device: str | torch.device | None = None  # None: keep the device of the input tensor
    eps: float = 1e-10  # h-function outputs are clamped to [eps, 1 - eps]
    clamp_inputs: bool = False  # clamp observations into [eps, 1 - eps] instead of raising DomainError
    skip_unneeded_hfuncs: bool = True  # only compute backward h-functions that a later tree reads

    def __post_init__(self):
        if not isinstance(self.dtype, torch.dtype) or not self.dtype.is_floating_point:
            raise ValueError("dtype must be a floating point torch.dtype")
        if not (0.0 < float(self.eps) < 0.5):
            raise ValueError("eps must be in (0,0.5)")
        if self.device is not None:
            self.device = torch.device(self.device)

    def resolve_device(self, u) -> torch.device:
        if self.device is not None:
            return self.device
        if torch.is_tensor(u):
            return u.device
        return torch.device("cpu")

    def str(self) -> str:
        """Human-readable summary."""
        parts = [
            f"dtype: {self.dtype}",
            f"device: {self.device if self.device is not None else 'input'}",
            f"eps: {self.eps}",
            f"Clamp inputs: {self.clamp_inputs}",
            f"Skip unneeded h-functions: {self.skip_unneeded_hfuncs}",
        ]
        return "\n".join(parts)
