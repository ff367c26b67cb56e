"""Dense linear algebra kernels for the quasi-Newton optimizer.

All matrices are full ``(n, n)`` arrays. Cholesky factors are lower
triangular with ``H = L @ L.T``.
"""

import numpy as np
from numpy.typing import NDArray
from scipy.linalg import cho_solve, qr_update, solve_triangular

EPSILON: float = float(np.finfo(np.float64).eps)


def modified_cholesky(
    a: NDArray[np.float64],
    diagmx: float,
    tol: float,
) -> tuple[NDArray[np.float64], float]:
    """Cholesky factorization that enlarges small pivots.

    Any diagonal element that would fall below ``sqrt(diagmx * tol)``
    is replaced, so the factor always exists. The amount by which the
    diagonal had to be raised is returned so the caller can decide
    whether a uniform shift is needed.

    Parameters
    ----------
    a : ndarray of shape (n, n)
        Symmetric matrix. Only the lower triangle is read.
    diagmx : float
        Largest diagonal element of ``a``.
    tol : float
        Relative tolerance for acceptable pivots.

    Returns
    -------
    factor : ndarray of shape (n, n)
        Lower-triangular factor.
    addmax : float
        Largest amount added to a pivot; zero when ``a`` was safely
        positive definite.
    """
    n = a.shape[0]
    factor = np.zeros_like(a)
    aminl = np.sqrt(diagmx * tol)
    amnlsq = aminl * aminl
    addmax = 0.0

    for j in range(n):
        temp = a[j, j] - factor[j, :j] @ factor[j, :j]
        if temp >= amnlsq:
            factor[j, j] = np.sqrt(temp)
        else:
            offmax = np.max(np.abs(a[j + 1 :, j]), initial=0.0)
            if offmax <= amnlsq:
                offmax = amnlsq
            factor[j, j] = np.sqrt(offmax)
            addmax = max(addmax, offmax - temp)

        if j + 1 < n:
            factor[j + 1 :, j] = (
                a[j + 1 :, j] - factor[j + 1 :, :j] @ factor[j, :j]
            ) / factor[j, j]

    return factor, addmax


def perturbed_cholesky(
    hessian: NDArray[np.float64],
    sx: NDArray[np.float64],
) -> tuple[NDArray[np.float64], NDArray[np.float64], float]:
    """Factor ``hessian + mu * I`` with the smallest safe ``mu``.

    The matrix is first scaled by ``diag(sx)`` on both sides. A shift is
    applied up front when the diagonal is not comfortably positive, and a
    second one bounded by Gershgorin eigenvalue estimates when the
    factorization still needed pivot repair.

    Parameters
    ----------
    hessian : ndarray of shape (n, n)
        Symmetric model Hessian in unscaled coordinates.
    sx : ndarray of shape (n,)
        Diagonal scaling of the parameters.

    Returns
    -------
    factor : ndarray of shape (n, n)
        Lower-triangular ``L`` with ``L @ L.T`` equal to the returned
        perturbed Hessian.
    perturbed : ndarray of shape (n, n)
        ``hessian`` plus the applied diagonal perturbation, unscaled.
    mu : float
        Total scaled diagonal shift that was added (zero when none).
    """
    n = hessian.shape[0]
    scale = np.outer(sx, sx)
    a = hessian / scale
    tol = np.sqrt(EPSILON)
    identity = np.eye(n)
    total_shift = 0.0

    diag = np.diag(a)
    diagmx = float(diag.max())
    diagmn = float(diag.min())
    posmax = max(diagmx, 0.0)

    if diagmn <= posmax * tol:
        amu = tol * (posmax - diagmn) - diagmn
        if amu == 0.0:
            offmax = float(np.max(np.abs(np.tril(a, -1)), initial=0.0))
            amu = offmax
            if amu == 0.0:
                amu = 1.0
            else:
                amu *= 1.0 + tol
        a = a + amu * identity
        diagmx += amu
        total_shift += amu

    factor, addmax = modified_cholesky(a, diagmx, tol)

    if addmax > 0.0:
        diag = np.diag(a)
        offrow = np.abs(a).sum(axis=1) - np.abs(diag)
        evmin = min(0.0, float(np.min(diag - offrow)))
        evmax = max(float(a[0, 0]), float(np.max(diag + offrow)))
        sdd = tol * (evmax - evmin) - evmin
        amu = min(sdd, addmax)
        a = a + amu * identity
        total_shift += amu
        factor, _ = modified_cholesky(a, 0.0, tol)

    factor = factor * sx[:, None]
    perturbed = a * scale
    return factor, perturbed, total_shift


def cholesky_solve(
    factor: NDArray[np.float64],
    rhs: NDArray[np.float64],
) -> NDArray[np.float64]:
    """Solve ``(L @ L.T) x = rhs`` given the lower factor ``L``."""
    return cho_solve((factor, True), rhs, check_finite=False)


def forward_solve(
    factor: NDArray[np.float64],
    rhs: NDArray[np.float64],
) -> NDArray[np.float64]:
    """Solve ``L x = rhs``."""
    return solve_triangular(factor, rhs, lower=True, check_finite=False)


def secant_update_factored(
    factor: NDArray[np.float64],
    s: NDArray[np.float64],
    y: NDArray[np.float64],
    g: NDArray[np.float64],
    gpls: NDArray[np.float64],
    rnf: float,
    analytic_gradient: bool,
    first_update: bool,
) -> tuple[NDArray[np.float64], bool]:
    """BFGS update of the Cholesky factor of the Hessian.

    Parameters
    ----------
    factor : ndarray of shape (n, n)
        Current lower-triangular factor.
    s, y : ndarray of shape (n,)
        Step ``xpls - x`` and gradient change ``gpls - g``.
    g, gpls : ndarray of shape (n,)
        Gradients at the old and new point.
    rnf : float
        Relative noise of the objective.
    analytic_gradient : bool
        Whether the gradients are analytic; finite-difference gradients
        use a looser skip tolerance.
    first_update : bool
        True until the first update has been applied. On the first update
        the initial factor is rescaled to match the observed curvature.

    Returns
    -------
    factor : ndarray of shape (n, n)
        Updated factor (the input is returned unchanged when skipped).
    first_update : bool
        Updated flag.
    """
    den1 = float(s @ y)
    snorm2 = float(np.linalg.norm(s))
    ynrm2 = float(np.linalg.norm(y))
    if den1 <= 0.0 or den1 < np.sqrt(EPSILON) * snorm2 * ynrm2:
        return factor, first_update

    u = factor.T @ s
    den2 = float(u @ u)
    alp = np.sqrt(den1 / den2)
    if first_update:
        u = alp * u
        factor = alp * factor
        first_update = False
        alp = 1.0

    w = factor @ u
    reltol = np.sqrt(rnf) if not analytic_gradient else rnf
    bound = reltol * np.maximum(np.abs(g), np.abs(gpls))
    if np.all(np.abs(y - w) < bound):
        return factor, first_update

    w = y - alp * w
    u = u * (alp / den1)

    # R = L.T is upper triangular; update R + u w^T and return R^T.
    r = np.ascontiguousarray(factor.T)
    _, r_new = qr_update(np.eye(r.shape[0]), r, u, w, check_finite=False)
    signs = np.sign(np.diag(r_new))
    signs[signs == 0] = 1.0
    r_new = r_new * signs[:, None]
    return np.tril(r_new.T), first_update


def secant_update_unfactored(
    hessian: NDArray[np.float64],
    s: NDArray[np.float64],
    y: NDArray[np.float64],
    g: NDArray[np.float64],
    gpls: NDArray[np.float64],
    rnf: float,
    analytic_gradient: bool,
    first_update: bool,
) -> tuple[NDArray[np.float64], bool]:
    """BFGS update of the Hessian itself.

    Same arguments as :func:`secant_update_factored` but operates on the
    symmetric Hessian approximation.
    """
    den1 = float(s @ y)
    snorm2 = float(np.linalg.norm(s))
    ynrm2 = float(np.linalg.norm(y))
    if den1 <= 0.0 or den1 < np.sqrt(EPSILON) * snorm2 * ynrm2:
        return hessian, first_update

    t = hessian @ s
    den2 = float(s @ t)
    if first_update:
        gam = den1 / den2
        den2 = gam * den2
        t = gam * t
        hessian = gam * hessian
        first_update = False

    tol = rnf * np.maximum(np.abs(g), np.abs(gpls))
    if not analytic_gradient:
        tol = tol / np.sqrt(rnf)
    if np.all(np.abs(y - t) < tol):
        return hessian, first_update

    hessian = hessian + np.outer(y, y) / den1 - np.outer(t, t) / den2
    return hessian, first_update
