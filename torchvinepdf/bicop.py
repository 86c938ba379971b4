"""Bivariate copula implementation — density, h-functions and parameter domains."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import torch

from . import stats
from .errors import DomainError, ParameterError, ShapeError
from .families import (
    BicopFamily,
    family_is_exchangeable,
    family_npars,
    normalize_family,
    survival_base,
)


def _as_parameter_vector(parameters) -> torch.Tensor | None:
    if parameters is None:
        return torch.empty((0,), dtype=torch.float64)
    try:
        p = torch.as_tensor(parameters, dtype=torch.float64)
    except (TypeError, ValueError, RuntimeError):
        return None
    return p.detach().cpu().reshape(-1)


def _in_domain(fam: BicopFamily, p: list[float]) -> bool:
    base = survival_base(fam) or fam
    if base == BicopFamily.gauss:
        return -1.0 < p[0] < 1.0
    if base == BicopFamily.t:
        return -1.0 < p[0] < 1.0 and p[1] > 0.0
    if base in (BicopFamily.clayton, BicopFamily.plackett):
        return p[0] > 0.0
    if base in (BicopFamily.gumbel, BicopFamily.joe):
        return p[0] >= 1.0
    if base == BicopFamily.frank:
        return p[0] != 0.0
    if base == BicopFamily.amhaq:
        return -1.0 <= p[0] < 1.0
    if base == BicopFamily.fgm:
        return -1.0 <= p[0] <= 1.0
    if base == BicopFamily.tawn:
        return 0.0 <= p[0] <= 1.0 and 0.0 <= p[1] <= 1.0 and p[2] >= 1.0
    raise NotImplementedError(f"parameter domain not implemented for family={fam}")


def check_parameters(family: str | BicopFamily, parameters) -> bool:
    """Return True if ``parameters`` is admissible for ``family``.

    The independence copula accepts any (or no) parameter. Unknown family
    names are never admissible.
    """
    try:
        fam = normalize_family(family)
    except ValueError:
        return False
    if fam == BicopFamily.indep:
        return True
    p = _as_parameter_vector(parameters)
    if p is None or p.numel() != family_npars(fam):
        return False
    if not bool(torch.isfinite(p).all()):
        return False
    return _in_domain(fam, p.tolist())


# Above this |theta| the frank formulas are evaluated in log space.
_FRANK_LOG_SPACE = 20.0


def _frank_log_space_args(theta: torch.Tensor, u1: torch.Tensor):
    # Negative theta is the 90 degree rotation: c(u1, u2; -theta) = c(1 - u1, u2; theta).
    if float(theta) < 0.0:
        return -theta, 1.0 - u1
    return theta, u1


def _frank_log_denominator(theta: torch.Tensor, u1: torch.Tensor, u2: torch.Tensor) -> torch.Tensor:
    """log(e^{-theta u1} + e^{-theta u2} - e^{-theta (u1+u2)} - e^{-theta}) for theta > 0."""
    lo = torch.minimum(u1, u2)
    hi = torch.maximum(u1, u2)
    inner = torch.exp(-theta * (hi - lo)) - torch.exp(-theta * hi) - torch.exp(-theta * (1.0 - lo))
    return -theta * lo + torch.log1p(inner)


def _check_unit(u: torch.Tensor, what: str) -> None:
    if not stats.in_open_unit(u):
        raise DomainError(f"{what}: copula arguments must lie in the open interval (0,1)")


@dataclass
class Bicop:
    family: BicopFamily = BicopFamily.indep
    parameters: torch.Tensor | None = None

    def __post_init__(self):
        self.family = normalize_family(self.family)
        if self.family == BicopFamily.indep:
            self.parameters = torch.empty((0,), dtype=torch.float64)
            return
        if not check_parameters(self.family, self.parameters):
            raise ParameterError(
                f"invalid parameter for {self.family.value} copula: {self.parameters!r}",
                family=self.family.value,
            )
        self.parameters = _as_parameter_vector(self.parameters)

    def to_json(self) -> dict[str, Any]:
        return {
            "family": self.family.value,
            "parameters": self.parameters.detach().cpu().tolist(),
        }

    @staticmethod
    def from_json(obj: dict[str, Any]) -> "Bicop":
        return Bicop(family=normalize_family(obj["family"]), parameters=obj.get("parameters", []))

    @classmethod
    def from_family(cls, family: str | BicopFamily, parameters=None) -> "Bicop":
        return cls(family=normalize_family(family), parameters=parameters)

    def str(self) -> str:
        """Human-readable string representation."""
        p = self.parameters.reshape(-1)
        parts = ["<torchvinepdf.Bicop>", f"  family: {self.family.value}"]
        if p.numel() > 0:
            parts.append("  parameters: [" + ", ".join(f"{v:.4f}" for v in p.tolist()) + "]")
        return "\n".join(parts)

    @property
    def npars(self) -> int:
        return family_npars(self.family)

    def _par(self, idx: int, u: torch.Tensor) -> torch.Tensor:
        return self.parameters[idx].to(device=u.device, dtype=u.dtype)

    # ---- base family implementations (survival families map onto these) ----

    def _pdf0(self, fam: BicopFamily, u1: torch.Tensor, u2: torch.Tensor) -> torch.Tensor:
        tiny = torch.finfo(u1.dtype).tiny

        if fam == BicopFamily.indep:
            return torch.ones_like(u1)

        if fam == BicopFamily.gauss:
            rho = self._par(0, u1)
            x1 = stats.qnorm(u1)
            x2 = stats.qnorm(u2)
            r2 = 1.0 - rho * rho
            expo = -(rho * rho * (x1 * x1 + x2 * x2) - 2.0 * rho * x1 * x2) / (2.0 * r2)
            return torch.exp(expo) / torch.sqrt(r2)

        if fam == BicopFamily.t:
            rho = self._par(0, u1)
            nu = self._par(1, u1)
            n = u1.shape[0]
            x = stats.qt(torch.cat([u1, u2]), nu)
            x1, x2 = x[:n], x[n:]
            r2 = 1.0 - rho * rho
            # c(u1,u2) = f2(x1,x2;rho,nu) / (f_nu(x1)*f_nu(x2))
            log_c = (torch.lgamma((nu + 2.0) * 0.5) + torch.lgamma(nu * 0.5)
                     - 2.0 * torch.lgamma((nu + 1.0) * 0.5)
                     - 0.5 * torch.log(r2))
            log_c = log_c + (nu + 1.0) * 0.5 * (torch.log1p(x1 * x1 / nu) + torch.log1p(x2 * x2 / nu))
            Q = (x1 * x1 - 2.0 * rho * x1 * x2 + x2 * x2) / (nu * r2)
            log_c = log_c - (nu + 2.0) * 0.5 * torch.log1p(Q)
            return torch.exp(log_c)

        if fam == BicopFamily.clayton:
            theta = self._par(0, u1)
            s = (torch.pow(u1, -theta) + torch.pow(u2, -theta) - 1.0).clamp_min(tiny)
            logc = torch.log1p(theta)
            logc = logc + (-1.0 - theta) * (torch.log(u1) + torch.log(u2))
            logc = logc + (-2.0 - 1.0 / theta) * torch.log(s)
            return torch.exp(logc)

        if fam == BicopFamily.gumbel:
            theta = self._par(0, u1)
            l1 = (-torch.log(u1)).clamp_min(tiny)
            l2 = (-torch.log(u2)).clamp_min(tiny)
            s = (torch.pow(l1, theta) + torch.pow(l2, theta)).clamp_min(tiny)
            a = torch.pow(s, 1.0 / theta)
            logc = -a + l1 + l2 + (theta - 1.0) * (torch.log(l1) + torch.log(l2))
            logc = logc + (1.0 / theta - 2.0) * torch.log(s) + torch.log(a + theta - 1.0)
            return torch.exp(logc)

        if fam == BicopFamily.frank:
            theta = self._par(0, u1)
            if abs(float(theta)) > _FRANK_LOG_SPACE:
                th, w1 = _frank_log_space_args(theta, u1)
                logc = torch.log(th) + torch.log(-torch.expm1(-th)) - th * (w1 + u2)
                logc = logc - 2.0 * _frank_log_denominator(th, w1, u2)
                return torch.exp(logc)
            eu = torch.expm1(-theta * u1)
            ev = torch.expm1(-theta * u2)
            ed = torch.expm1(-theta)
            denom = ed + eu * ev
            return (-theta) * ed * (eu + 1.0) * (ev + 1.0) / (denom * denom)

        if fam == BicopFamily.joe:
            theta = self._par(0, u1)
            b1 = (1.0 - u1).clamp_min(tiny)
            b2 = (1.0 - u2).clamp_min(tiny)
            a1 = torch.pow(b1, theta)
            a2 = torch.pow(b2, theta)
            s = (a1 + a2 - a1 * a2).clamp_min(tiny)
            return torch.pow(s, 1.0 / theta - 2.0) * torch.pow(b1 * b2, theta - 1.0) * (theta - 1.0 + s)

        if fam == BicopFamily.amhaq:
            theta = self._par(0, u1)
            D = 1.0 - theta * (1.0 - u1) * (1.0 - u2)
            num = 1.0 + theta * ((1.0 + u1) * (1.0 + u2) - 3.0) + theta * theta * (1.0 - u1) * (1.0 - u2)
            return num / (D * D * D)

        if fam == BicopFamily.fgm:
            theta = self._par(0, u1)
            return 1.0 + theta * (1.0 - 2.0 * u1) * (1.0 - 2.0 * u2)

        if fam == BicopFamily.plackett:
            theta = self._par(0, u1)
            eta = theta - 1.0
            S = 1.0 + eta * (u1 + u2)
            R2 = (S * S - 4.0 * theta * eta * u1 * u2).clamp_min(tiny)
            return theta * (1.0 + eta * (u1 + u2 - 2.0 * u1 * u2)) / torch.pow(R2, 1.5)

        if fam == BicopFamily.tawn:
            # Extreme value copula with Pickands function A(t).
            psi1, psi2, theta, t, L, A, A1 = self._tawn_parts(u1, u2)
            tmp = torch.pow((psi2 * t).clamp_min(tiny), theta) + torch.pow((psi1 * (1.0 - t)).clamp_min(tiny), theta)
            tmp2 = psi2 * torch.pow((psi2 * t).clamp_min(tiny), theta - 1.0) - psi1 * torch.pow((psi1 * (1.0 - t)).clamp_min(tiny), theta - 1.0)
            tmp3 = (psi2 * psi2) * torch.pow((psi2 * t).clamp_min(tiny), theta - 2.0) + (psi1 * psi1) * torch.pow((psi1 * (1.0 - t)).clamp_min(tiny), theta - 2.0)
            A2 = (1.0 - theta) * torch.pow(tmp, 1.0 / theta - 2.0) * (tmp2 * tmp2) + torch.pow(tmp, 1.0 / theta - 1.0) * (theta - 1.0) * tmp3
            t3 = A * A + (1.0 - 2.0 * t) * A1 * A - (1.0 - t) * t * ((A1 * A1) + A2 / L)
            return torch.exp(L * A) * t3 / (u1 * u2)

        raise NotImplementedError(f"pdf not implemented for family={fam}")

    def _tawn_parts(self, u1: torch.Tensor, u2: torch.Tensor):
        tiny = torch.finfo(u1.dtype).tiny
        psi1 = self._par(0, u1)
        psi2 = self._par(1, u1)
        theta = self._par(2, u1)
        L = torch.log(u1) + torch.log(u2)
        t = (torch.log(u2) / L).clamp(0.0, 1.0)
        tmp = (torch.pow((psi2 * t).clamp_min(tiny), theta) + torch.pow((psi1 * (1.0 - t)).clamp_min(tiny), theta)).clamp_min(tiny)
        A = (1.0 - psi1) * (1.0 - t) + (1.0 - psi2) * t + torch.pow(tmp, 1.0 / theta)
        tmp2 = psi2 * torch.pow((psi2 * t).clamp_min(tiny), theta - 1.0) - psi1 * torch.pow((psi1 * (1.0 - t)).clamp_min(tiny), theta - 1.0)
        A1 = psi1 - psi2 + torch.pow(tmp, 1.0 / theta - 1.0) * tmp2
        return psi1, psi2, theta, t, L, A, A1

    def _hfunc1_0(self, fam: BicopFamily, u1: torch.Tensor, u2: torch.Tensor) -> torch.Tensor:
        # h1(u1,u2) = P(U2<=u2 | U1=u1)
        tiny = torch.finfo(u1.dtype).tiny

        if fam == BicopFamily.indep:
            return u2

        if fam == BicopFamily.gauss:
            rho = self._par(0, u1)
            x1 = stats.qnorm(u1)
            x2 = stats.qnorm(u2)
            return stats.pnorm((x2 - rho * x1) / torch.sqrt(1.0 - rho * rho))

        if fam == BicopFamily.t:
            rho = self._par(0, u1)
            nu = self._par(1, u1)
            n = u1.shape[0]
            x = stats.qt(torch.cat([u1, u2]), nu)
            x1, x2 = x[:n], x[n:]
            arg = (x2 - rho * x1) / torch.sqrt((nu + x1 * x1) * (1.0 - rho * rho) / (nu + 1.0))
            return stats.pt(arg, nu + 1.0)

        if fam == BicopFamily.clayton:
            theta = self._par(0, u1)
            s = (torch.pow(u1, -theta) + torch.pow(u2, -theta) - 1.0).clamp_min(tiny)
            return torch.pow(u1, -theta - 1.0) * torch.pow(s, -1.0 / theta - 1.0)

        if fam == BicopFamily.gumbel:
            theta = self._par(0, u1)
            l1 = (-torch.log(u1)).clamp_min(tiny)
            l2 = (-torch.log(u2)).clamp_min(tiny)
            s = (torch.pow(l1, theta) + torch.pow(l2, theta)).clamp_min(tiny)
            logh = -torch.pow(s, 1.0 / theta) + (1.0 / theta - 1.0) * torch.log(s)
            logh = logh + (theta - 1.0) * torch.log(l1) + l1
            return torch.exp(logh)

        if fam == BicopFamily.frank:
            theta = self._par(0, u1)
            if abs(float(theta)) > _FRANK_LOG_SPACE:
                th, w1 = _frank_log_space_args(theta, u1)
                logh = -th * w1 + torch.log(-torch.expm1(-th * u2)) - _frank_log_denominator(th, w1, u2)
                return torch.exp(logh)
            eu = torch.expm1(-theta * u1)
            ev = torch.expm1(-theta * u2)
            ed = torch.expm1(-theta)
            return (eu + 1.0) * ev / (ed + eu * ev)

        if fam == BicopFamily.joe:
            theta = self._par(0, u1)
            b1 = (1.0 - u1).clamp_min(tiny)
            b2 = (1.0 - u2).clamp_min(tiny)
            a1 = torch.pow(b1, theta)
            a2 = torch.pow(b2, theta)
            s = (a1 + a2 - a1 * a2).clamp_min(tiny)
            return torch.pow(b1, theta - 1.0) * (1.0 - a2) * torch.pow(s, 1.0 / theta - 1.0)

        if fam == BicopFamily.amhaq:
            theta = self._par(0, u1)
            D = 1.0 - theta * (1.0 - u1) * (1.0 - u2)
            return u2 * (1.0 - theta * (1.0 - u2)) / (D * D)

        if fam == BicopFamily.fgm:
            theta = self._par(0, u1)
            return u2 * (1.0 + theta * (1.0 - 2.0 * u1) * (1.0 - u2))

        if fam == BicopFamily.plackett:
            theta = self._par(0, u1)
            eta = theta - 1.0
            S = 1.0 + eta * (u1 + u2)
            R = torch.sqrt((S * S - 4.0 * theta * eta * u1 * u2).clamp_min(tiny))
            return 0.5 - 0.5 * (S - 2.0 * theta * u2) / R

        if fam == BicopFamily.tawn:
            _psi1, _psi2, _theta, t, L, A, A1 = self._tawn_parts(u1, u2)
            return torch.exp(L * A) * (A - t * A1) / u1

        raise NotImplementedError(f"hfunc1 not implemented for family={fam}")

    def _hfunc2_0(self, fam: BicopFamily, u1: torch.Tensor, u2: torch.Tensor) -> torch.Tensor:
        # h2(u1,u2) = P(U1<=u1 | U2=u2)
        if family_is_exchangeable(fam):
            return self._hfunc1_0(fam, u2, u1)

        if fam == BicopFamily.tawn:
            _psi1, _psi2, _theta, t, L, A, A1 = self._tawn_parts(u1, u2)
            return torch.exp(L * A) * (A + (1.0 - t) * A1) / u2

        raise NotImplementedError(f"hfunc2 not implemented for family={fam}")

    def _split(self, u: torch.Tensor, what: str) -> tuple[torch.Tensor, torch.Tensor]:
        u = torch.as_tensor(u)
        if u.ndim != 2 or u.shape[1] != 2:
            raise ShapeError(f"{what}: u must have shape (n,2), got {tuple(u.shape)}")
        _check_unit(u, f"{self.family.value} {what}")
        return u[:, 0], u[:, 1]

    # ---- public evaluation API ----

    def pdf(self, u: torch.Tensor) -> torch.Tensor:
        """Copula density c(u1, u2) for each row of the (n,2) tensor ``u``."""
        u1, u2 = self._split(u, "pdf")
        base = survival_base(self.family)
        if base is not None:
            out = self._pdf0(base, 1.0 - u1, 1.0 - u2)
        else:
            out = self._pdf0(self.family, u1, u2)
        return out.clamp_min(0.0)

    def hfunc1(self, u: torch.Tensor, *, eps: float = 1e-10) -> torch.Tensor:
        """P(U2 <= u2 | U1 = u1)."""
        u1, u2 = self._split(u, "hfunc1")
        base = survival_base(self.family)
        if base is not None:
            h = 1.0 - self._hfunc1_0(base, 1.0 - u1, 1.0 - u2)
        else:
            h = self._hfunc1_0(self.family, u1, u2)
        return stats.clamp_unit(h, eps)

    def hfunc2(self, u: torch.Tensor, *, eps: float = 1e-10) -> torch.Tensor:
        """P(U1 <= u1 | U2 = u2)."""
        u1, u2 = self._split(u, "hfunc2")
        base = survival_base(self.family)
        if base is not None:
            h = 1.0 - self._hfunc2_0(base, 1.0 - u1, 1.0 - u2)
        else:
            h = self._hfunc2_0(self.family, u1, u2)
        return stats.clamp_unit(h, eps)

    def loglik(self, u: torch.Tensor) -> float:
        return float(torch.log(self.pdf(u)).sum().item())


def density(family: str | BicopFamily, parameters, u1, u2) -> torch.Tensor:
    """Evaluate the pair-copula density c(u1, u2), vectorized over rows."""
    u1 = torch.as_tensor(u1, dtype=torch.float64) if not torch.is_tensor(u1) else u1
    u2 = torch.as_tensor(u2, device=u1.device, dtype=u1.dtype)
    return Bicop(family, parameters).pdf(torch.stack([u1.reshape(-1), u2.reshape(-1)], dim=1))


def hfunction(
    family: str | BicopFamily,
    parameters,
    conditioning,
    conditioned,
    *,
    first: str = "conditioning",
    eps: float = 1e-10,
) -> torch.Tensor:
    """Conditional distribution P(V <= conditioned | W = conditioning).

    ``first`` names the argument that plays the role of the copula's first
    variable; it only changes the result for asymmetric families (tawn).
    """
    if first not in ("conditioning", "conditioned"):
        raise ValueError("first must be 'conditioning' or 'conditioned'")
    w = torch.as_tensor(conditioning, dtype=torch.float64) if not torch.is_tensor(conditioning) else conditioning
    v = torch.as_tensor(conditioned, device=w.device, dtype=w.dtype)
    w = w.reshape(-1)
    v = v.reshape(-1)
    cop = Bicop(family, parameters)
    if first == "conditioning":
        return cop.hfunc1(torch.stack([w, v], dim=1), eps=eps)
    return cop.hfunc2(torch.stack([v, w], dim=1), eps=eps)
