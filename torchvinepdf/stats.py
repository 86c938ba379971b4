"""Statistical helper functions — normal and Student-t CDF/quantile in pure torch."""

from __future__ import annotations

import math
import torch


def _as_tensor(x, *, device=None, dtype=None):
    if torch.is_tensor(x):
        t = x
        if device is not None:
            t = t.to(device=device)
        if dtype is not None:
            t = t.to(dtype=dtype)
        return t
    return torch.as_tensor(x, device=device, dtype=dtype)


def dnorm(x: torch.Tensor) -> torch.Tensor:
    x = _as_tensor(x)
    inv_sqrt_2pi = 0.39894228040143270286
    return inv_sqrt_2pi * torch.exp(-0.5 * x * x)


def pnorm(x: torch.Tensor) -> torch.Tensor:
    x = _as_tensor(x)
    return 0.5 * (1.0 + torch.erf(x / math.sqrt(2.0)))


def qnorm(u: torch.Tensor) -> torch.Tensor:
    u = _as_tensor(u)
    # torch.special.ndtri is the inverse of the standard normal CDF
    return torch.special.ndtri(u)


def clamp_unit(u: torch.Tensor, eps: float = 1e-10) -> torch.Tensor:
    # Avoid infs in qnorm and log(0) etc.
    return u.clamp(min=eps, max=1.0 - eps)


def in_open_unit(u: torch.Tensor) -> bool:
    """True if every entry of ``u`` lies strictly inside (0, 1); NaN fails."""
    u = _as_tensor(u)
    if u.numel() == 0:
        return True
    return bool(((u > 0.0) & (u < 1.0)).all().item())


def _log_beta(a: torch.Tensor, b: torch.Tensor) -> torch.Tensor:
    a = _as_tensor(a)
    b = _as_tensor(b, device=a.device, dtype=a.dtype)
    return torch.lgamma(a) + torch.lgamma(b) - torch.lgamma(a + b)


def _betacf(a: torch.Tensor, b: torch.Tensor, x: torch.Tensor, *, max_iter: int = 200, eps: float = 3e-14) -> torch.Tensor:
    # Continued fraction for incomplete beta (Numerical Recipes / Cephes style).
    tiny = torch.finfo(a.dtype).tiny

    qab = a + b
    qap = a + 1.0
    qam = a - 1.0

    def _nz(v):
        # Keep the modified Lentz recurrences away from exact zeros.
        return torch.where(v.abs() < tiny, torch.full_like(v, tiny), v)

    c = torch.ones_like(x)
    d = _nz(1.0 - qab * x / qap).reciprocal()
    h = d.clone()

    for m in range(1, max_iter + 1):
        m2 = 2.0 * m

        aa = m * (b - m) * x / ((qam + m2) * (a + m2))
        d = _nz(1.0 + aa * d).reciprocal()
        c = _nz(1.0 + aa / c)
        h = h * d * c

        aa = -(a + m) * (qab + m) * x / ((a + m2) * (qap + m2))
        d = _nz(1.0 + aa * d).reciprocal()
        c = _nz(1.0 + aa / c)
        delta = d * c
        h = h * delta

        # Check convergence every 4 iterations to reduce .item() overhead
        if m % 4 == 0 and torch.max(torch.abs(delta - 1.0)).item() < eps:
            break
    return h


def betainc_reg(a: torch.Tensor, b: torch.Tensor, x: torch.Tensor) -> torch.Tensor:
    """Regularized incomplete beta I_x(a,b) in pure torch (no SciPy)."""
    x = _as_tensor(x)
    a = _as_tensor(a, device=x.device, dtype=x.dtype)
    b = _as_tensor(b, device=x.device, dtype=x.dtype)
    x = x.clamp(0.0, 1.0)

    tiny = torch.finfo(x.dtype).tiny
    shape = torch.broadcast_shapes(a.shape, b.shape, x.shape)

    # Endpoints are exact.
    out = torch.where(x >= 1.0, torch.ones(shape, device=x.device, dtype=x.dtype),
                      torch.zeros(shape, device=x.device, dtype=x.dtype))

    mask = ((x > 0.0) & (x < 1.0)).expand(shape)
    if not mask.any():
        return out

    xx = x.expand(shape)[mask]
    aa = a.expand(shape)[mask]
    bb = b.expand(shape)[mask]

    bt = torch.exp(aa * torch.log(xx.clamp_min(tiny)) + bb * torch.log((1.0 - xx).clamp_min(tiny)) - _log_beta(aa, bb))

    use_direct = xx < (aa + 1.0) / (aa + bb + 2.0)

    val = torch.empty_like(xx)
    if use_direct.any():
        idx = use_direct
        cf = _betacf(aa[idx], bb[idx], xx[idx])
        val[idx] = (bt[idx] * cf / aa[idx]).clamp(0.0, 1.0)
    if (~use_direct).any():
        idx = ~use_direct
        cf = _betacf(bb[idx], aa[idx], 1.0 - xx[idx])
        val[idx] = (1.0 - bt[idx] * cf / bb[idx]).clamp(0.0, 1.0)

    out = out.clone()
    out[mask] = val
    return out


def dt(x: torch.Tensor, nu: torch.Tensor) -> torch.Tensor:
    """Student-t probability density function (vectorized, pure torch)."""
    x = _as_tensor(x)
    nu = _as_tensor(nu, device=x.device, dtype=x.dtype)
    half_nu = nu * 0.5
    half_nup1 = (nu + 1.0) * 0.5
    log_pdf = (torch.lgamma(half_nup1) - torch.lgamma(half_nu)
               - 0.5 * torch.log(nu * math.pi)
               - half_nup1 * torch.log1p(x * x / nu))
    return torch.exp(log_pdf)


def pt(x: torch.Tensor, nu: torch.Tensor) -> torch.Tensor:
    """Student-t cumulative distribution function (vectorized, pure torch)."""
    x = _as_tensor(x)
    nu = _as_tensor(nu, device=x.device, dtype=x.dtype)
    t = nu / (nu + x * x)
    Ix = betainc_reg(nu * 0.5, 0.5, t)
    return torch.where(x >= 0, 1.0 - 0.5 * Ix, 0.5 * Ix)


def _qt_hill(p: torch.Tensor, nu: torch.Tensor) -> torch.Tensor:
    """Fast Student-t quantile via Hill (1970) 3-term expansion (no Newton)."""
    z = qnorm(p)
    g1 = (z * z * z + z) / 4.0
    g2 = (5.0 * z ** 5 + 16.0 * z ** 3 + 3.0 * z) / 96.0
    g3 = (3.0 * z ** 7 + 19.0 * z ** 5 + 17.0 * z ** 3 - 15.0 * z) / 384.0
    return z + g1 / nu + g2 / (nu * nu) + g3 / (nu * nu * nu)


def _qt_bisect(p: torch.Tensor, nu: torch.Tensor, *, max_iter: int = 80) -> torch.Tensor:
    # Bisection on log|x| against the lower-tail probability min(p, 1-p).
    q = torch.minimum(p, 1.0 - p)
    lo = torch.full_like(p, -40.0)
    hi = torch.full_like(p, 700.0)
    for _ in range(max_iter):
        mid = 0.5 * (lo + hi)
        too_far = pt(-torch.exp(mid), nu) < q
        hi = torch.where(too_far, mid, hi)
        lo = torch.where(too_far, lo, mid)
    y = torch.exp(0.5 * (lo + hi))
    return torch.where(p < 0.5, -y, y)


def qt(p: torch.Tensor, nu: torch.Tensor, *, max_iter: int = 4, tol: float = 1e-10) -> torch.Tensor:
    """Student-t quantile via Halley's method (cubic convergence, pure torch).

    Uses Hill (1970) expansion as initial guess, then Halley refinement. Entries
    where Halley has not converged to a relative tail error below ``tol``
    (small ``nu``, far tails) are finished by bisection on ``log|x|``.
    """
    p = clamp_unit(_as_tensor(p))
    nu = _as_tensor(nu, device=p.device, dtype=p.dtype).expand(p.shape)
    x = _qt_hill(p, nu)
    tiny = torch.finfo(p.dtype).tiny
    for _ in range(max_iter):
        F = pt(x, nu)
        f = dt(x, nu).clamp_min(tiny)
        r = F - p
        fp = f * (-(nu + 1.0) * x / (nu + x * x))
        x = x - 2.0 * r * f / (2.0 * f * f - r * fp)

    q = torch.minimum(p, 1.0 - p)
    xf = torch.nan_to_num(x)
    bad = ~torch.isfinite(x)
    bad = bad | ((xf < 0) != (p < 0.5))
    bad = bad | ((pt(-xf.abs(), nu) - q).abs() > tol * q)
    if bad.any():
        x = x.clone()
        x[bad] = _qt_bisect(p[bad], nu[bad])
    return x
