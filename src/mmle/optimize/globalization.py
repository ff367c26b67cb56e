"""Step globalization: backtracking line search and trust-region steps.

Each driver takes a Newton step ``p`` solved from the (perturbed) model
Hessian and returns a new point that decreases the objective sufficiently,
or reports that no such point was found.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Optional

import numpy as np
from numpy.typing import NDArray

from mmle.optimize.linalg import (
    EPSILON,
    cholesky_solve,
    forward_solve,
    modified_cholesky,
)

ARMIJO_ALPHA = 1e-4
"""Fraction of the predicted decrease a step must achieve."""

MAX_HOOK_ITERATIONS = 50
"""Cap on the inner mu iterations of the More-Hebdon step."""


@dataclass
class StepOutcome:
    """Result of one globalization attempt.

    ``status`` is 0 when a satisfactory point was found and 1 when the
    step length collapsed below the step tolerance.
    """

    xpls: NDArray[np.float64]
    fpls: float
    status: int
    max_step_taken: bool


@dataclass
class TrustRegion:
    """Trust-region state that persists across iterations of one run.

    ``radius`` is -1 until it is initialized from the Cauchy step.
    The ``mu``/``phi`` fields carry the More-Hebdon iteration between calls.
    """

    radius: float = -1.0
    mu: float = 0.0
    previous_radius: float = 0.0
    phi: float = 0.0
    phip0: float = 0.0
    phip: float = 0.0
    status: int = 4
    xplsp: Optional[NDArray[np.float64]] = field(default=None, repr=False)
    fplsp: float = 0.0

    def save(self) -> tuple[float, float, float, float, float]:
        return (self.radius, self.mu, self.previous_radius, self.phi, self.phip0)

    def restore(self, saved: tuple[float, float, float, float, float]) -> None:
        (self.radius, self.mu, self.previous_radius, self.phi, self.phip0) = saved


def _relative_length(
    step: NDArray[np.float64],
    x: NDArray[np.float64],
    sx: NDArray[np.float64],
) -> float:
    return float(np.max(np.abs(step) / np.maximum(np.abs(x), 1.0 / sx)))


def line_search(
    fun: Callable[[NDArray[np.float64]], float],
    x: NDArray[np.float64],
    f: float,
    g: NDArray[np.float64],
    p: NDArray[np.float64],
    sx: NDArray[np.float64],
    stepmx: float,
    steptl: float,
) -> StepOutcome:
    """Backtracking line search along ``p`` with Armijo acceptance.

    The first backtrack fits a quadratic, later ones a cubic through the
    two most recent trial values. Each new step length is kept within
    ``[0.1, 0.5]`` of the previous one.
    """
    max_taken = False
    sln = float(np.linalg.norm(sx * p))
    if sln > stepmx:
        p = p * (stepmx / sln)
        sln = stepmx

    slp = float(g @ p)
    rln = _relative_length(p, x, sx)
    rmnlmb = steptl / rln if rln > 0.0 else np.inf

    almbda = 1.0
    plmbda = 0.0
    pfpls = 0.0

    while True:
        xpls = x + almbda * p
        fpls = fun(xpls)

        if fpls <= f + slp * ARMIJO_ALPHA * almbda:
            if almbda == 1.0 and sln > 0.99 * stepmx:
                max_taken = True
            return StepOutcome(xpls, fpls, 0, max_taken)

        if almbda < rmnlmb:
            return StepOutcome(xpls, fpls, 1, max_taken)

        if almbda == 1.0:
            tlmbda = -slp / (2.0 * (fpls - f - slp))
        else:
            t1 = fpls - f - almbda * slp
            t2 = pfpls - f - plmbda * slp
            t3 = 1.0 / (almbda - plmbda)
            a = t3 * (t1 / (almbda * almbda) - t2 / (plmbda * plmbda))
            b = t3 * (t2 * almbda / (plmbda * plmbda) - t1 * plmbda / (almbda * almbda))
            if a == 0.0:
                tlmbda = -slp / (2.0 * b)
            else:
                disc = max(b * b - 3.0 * a * slp, 0.0)
                if disc > b * b:
                    tlmbda = (-b + np.sign(a) * np.sqrt(disc)) / (3.0 * a)
                else:
                    tlmbda = (-b - np.sign(a) * np.sqrt(disc)) / (3.0 * a)
            if tlmbda > 0.5 * almbda:
                tlmbda = 0.5 * almbda

        plmbda = almbda
        pfpls = fpls
        if not np.isfinite(tlmbda) or tlmbda < almbda * 0.1:
            almbda *= 0.1
        else:
            almbda = tlmbda


def update_trust_region(
    fun: Callable[[NDArray[np.float64]], float],
    x: NDArray[np.float64],
    f: float,
    g: NDArray[np.float64],
    sc: NDArray[np.float64],
    sx: NDArray[np.float64],
    newton_taken: bool,
    stepmx: float,
    steptl: float,
    region: TrustRegion,
    predicted_curvature: float,
) -> tuple[NDArray[np.float64], float, bool]:
    """Evaluate a trust-region trial step and adjust the radius.

    ``region.status`` is set to 0 (accept), 1 (step too small, give up),
    2 (reject and shrink) or 3 (accepted but try a doubled radius).
    ``predicted_curvature`` is ``sc^T H sc`` for the model Hessian.
    """
    max_taken = False
    xpls = x + sc
    fpls = fun(xpls)
    dltf = fpls - f
    slp = float(g @ sc)

    if region.status == 4:
        region.fplsp = 0.0

    if region.status == 3 and (fpls >= region.fplsp or dltf > ARMIJO_ALPHA * slp):
        region.status = 0
        xpls = region.xplsp
        fpls = region.fplsp
        region.radius *= 0.5
        return xpls, fpls, max_taken

    if dltf > ARMIJO_ALPHA * slp:
        if _relative_length(sc, xpls, sx) < steptl:
            region.status = 1
        else:
            region.status = 2
            dltmp = -slp * region.radius / (2.0 * (dltf - slp))
            if dltmp < 0.1 * region.radius:
                region.radius *= 0.1
            else:
                region.radius = dltmp
        return xpls, fpls, max_taken

    dltfp = slp + 0.5 * predicted_curvature
    if (
        region.status != 2
        and abs(dltfp - dltf) <= 0.1 * abs(dltf)
        and not newton_taken
        and region.radius <= 0.99 * stepmx
    ):
        region.status = 3
        region.xplsp = xpls.copy()
        region.fplsp = fpls
        region.radius = min(2.0 * region.radius, stepmx)
        return xpls, fpls, max_taken

    region.status = 0
    if region.radius > 0.99 * stepmx:
        max_taken = True
    if dltf >= 0.1 * dltfp:
        region.radius *= 0.5
    elif dltf <= 0.75 * dltfp:
        region.radius = min(2.0 * region.radius, stepmx)
    return xpls, fpls, max_taken


def _cauchy_terms(
    g: NDArray[np.float64],
    factor: NDArray[np.float64],
    sx: NDArray[np.float64],
) -> tuple[float, float]:
    alpha = float(np.sum((g / sx) ** 2))
    beta = float(np.sum((factor.T @ (g / (sx * sx))) ** 2))
    return alpha, beta


def dogleg(
    fun: Callable[[NDArray[np.float64]], float],
    x: NDArray[np.float64],
    f: float,
    g: NDArray[np.float64],
    factor: NDArray[np.float64],
    p: NDArray[np.float64],
    sx: NDArray[np.float64],
    stepmx: float,
    steptl: float,
    region: TrustRegion,
) -> StepOutcome:
    """Double-dogleg trust-region step.

    The step follows the Newton direction when it fits inside the region,
    the steepest-descent (Cauchy) direction when that point is outside,
    and otherwise interpolates between the Cauchy point and a shortened
    Newton point.
    """
    region.status = 4
    first = True
    max_taken = False
    rnwtln = float(np.linalg.norm(sx * p))
    cln = eta = 0.0
    ssd = v = None

    while region.status > 1:
        if rnwtln <= region.radius:
            newton_taken = True
            sc = p.copy()
            region.radius = rnwtln
        else:
            newton_taken = False
            if first:
                first = False
                alpha, beta = _cauchy_terms(g, factor, sx)
                ssd = -(alpha / beta) * (g / sx)
                cln = alpha * np.sqrt(alpha) / beta
                eta = 0.2 + (0.8 * alpha * alpha) / (-beta * float(g @ p))
                v = eta * sx * p - ssd
                if region.radius == -1.0:
                    region.radius = min(cln, stepmx)

            if eta * rnwtln <= region.radius:
                sc = (region.radius / rnwtln) * p
            elif cln >= region.radius:
                sc = (region.radius / cln) * ssd / sx
            else:
                dot1 = float(v @ ssd)
                dot2 = float(v @ v)
                alam = (
                    -dot1
                    + np.sqrt(dot1 * dot1 - dot2 * (cln * cln - region.radius**2))
                ) / dot2
                sc = (ssd + alam * v) / sx

        curvature = float(np.sum((factor.T @ sc) ** 2))
        xpls, fpls, max_taken = update_trust_region(
            fun, x, f, g, sc, sx, newton_taken, stepmx, steptl, region, curvature
        )

    return StepOutcome(xpls, fpls, region.status, max_taken)


def _hook_step(
    g: NDArray[np.float64],
    hessian: NDArray[np.float64],
    factor: NDArray[np.float64],
    p: NDArray[np.float64],
    sx: NDArray[np.float64],
    rnwtln: float,
    region: TrustRegion,
    first_call: bool,
) -> tuple[NDArray[np.float64], bool]:
    """Find ``mu`` with ``||sx * s(mu)||`` close to the radius."""
    hi = 1.5
    alo = 0.75

    if rnwtln <= hi * region.radius:
        region.radius = min(region.radius, rnwtln)
        region.mu = 0.0
        return p.copy(), True

    if region.mu > 0.0 and region.phip != 0.0:
        region.mu -= (
            (region.phi + region.previous_radius)
            * ((region.previous_radius - region.radius) + region.phi)
            / (region.radius * region.phip)
        )
    region.phi = rnwtln - region.radius
    if first_call:
        w = forward_solve(factor, sx * sx * p)
        region.phip0 = -float(w @ w) / rnwtln
    region.phip = region.phip0
    amulo = -region.phi / region.phip
    amuup = float(np.linalg.norm(g / sx)) / region.radius

    tol = np.sqrt(EPSILON)
    sc = p.copy()
    for _ in range(MAX_HOOK_ITERATIONS):
        if region.mu < amulo or region.mu > amuup:
            region.mu = max(np.sqrt(amulo * amuup), amuup * 1e-3)

        shifted = hessian + region.mu * np.diag(sx * sx)
        mu_factor, _ = modified_cholesky(shifted, 0.0, tol)
        sc = cholesky_solve(mu_factor, -g)
        stepln = float(np.linalg.norm(sx * sc))
        region.phi = stepln - region.radius
        w = forward_solve(mu_factor, sx * sx * sc)
        region.phip = -float(w @ w) / stepln

        if (alo * region.radius <= stepln <= hi * region.radius) or amuup - amulo <= 0.0:
            break

        amulo = max(amulo, region.mu - region.phi / region.phip)
        if region.phi < 0.0:
            amuup = min(amuup, region.mu)
        region.mu -= stepln * region.phi / (region.radius * region.phip)

    return sc, False


def hook(
    fun: Callable[[NDArray[np.float64]], float],
    x: NDArray[np.float64],
    f: float,
    g: NDArray[np.float64],
    hessian: NDArray[np.float64],
    factor: NDArray[np.float64],
    p: NDArray[np.float64],
    sx: NDArray[np.float64],
    stepmx: float,
    steptl: float,
    region: TrustRegion,
    iteration: int,
) -> StepOutcome:
    """More-Hebdon (locally constrained optimal, "hook") trust-region step.

    ``hessian`` is the unperturbed model Hessian and ``factor`` the
    Cholesky factor of its perturbed form. The shifted systems
    ``hessian + mu * diag(sx**2)`` are factored afresh inside the step, and
    the predicted reduction uses ``hessian``.
    """
    region.status = 4
    first_call = True
    max_taken = False
    rnwtln = float(np.linalg.norm(sx * p))

    if iteration == 1:
        region.mu = 0.0
        if region.radius == -1.0:
            alpha, beta = _cauchy_terms(g, factor, sx)
            region.radius = min(alpha * np.sqrt(alpha) / beta, stepmx)

    while region.status > 1:
        sc, newton_taken = _hook_step(
            g, hessian, factor, p, sx, rnwtln, region, first_call
        )
        if not newton_taken:
            first_call = False
        region.previous_radius = region.radius
        curvature = float(sc @ hessian @ sc)
        xpls, fpls, max_taken = update_trust_region(
            fun, x, f, g, sc, sx, newton_taken, stepmx, steptl, region, curvature
        )

    return StepOutcome(xpls, fpls, region.status, max_taken)
