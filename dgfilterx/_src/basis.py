"""
Orthogonal Polynomial Basis Module
===================================

Nodal <-> modal change of basis on the reference element [-1, 1] using the
orthonormal Legendre family.

Key Concepts:
-------------
    • Three-term recurrence: x·pₙ(x) = √bₙ₊₁·pₙ₊₁(x) + aₙ·pₙ(x) + √bₙ·pₙ₋₁(x)
    • Legendre family: aₙ = 0,  b₀ = ∫₋₁¹ dx = 2,  bₙ = n² / (4n² - 1)
    • Generalized Vandermonde matrix: V[i, n] = pₙ(rᵢ)
        nodal values  u = V·û,   modal coefficients  û = V⁻¹·u

All helpers here are plain numpy and are called once at filter construction
time, never inside the per-element kernels.

References:
-----------
[1] Hesthaven, J. S. & Warburton, T. (2008). Nodal Discontinuous Galerkin Methods.
[2] Gautschi, W. (2004). Orthogonal Polynomials: Computation and Approximation.
"""

import numpy as np


def legendre_coefs(N: int, dtype=np.float64) -> tuple[np.ndarray, np.ndarray]:
    """
    Recurrence coefficients of the orthonormal Legendre polynomials p₀, ..., p_N.

    Parameters:
    -----------
    N : int
        Highest polynomial degree (≥ 0).
    dtype : numpy dtype
        Working precision.

    Returns:
    --------
    a : ndarray [N]
        Diagonal recurrence coefficients (identically zero for Legendre).
    b : ndarray [N+1]
        Off-diagonal coefficients; b[0] = 2 is the integral of the weight.
    """
    a = np.zeros(N, dtype=dtype)
    n = np.arange(1, N + 1, dtype=dtype)
    b = np.empty(N + 1, dtype=dtype)
    b[0] = 2
    b[1:] = n * n / (4 * n * n - 1)
    return a, b


def orthonormal_poly(r: np.ndarray, a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """
    Evaluate the orthonormal polynomials p₀, ..., p_N at the points r.

        p₀ = 1/√b₀
        p₁ = (r - a₀)·p₀ / √b₁
        pₙ₊₁ = ((r - aₙ)·pₙ - √bₙ·pₙ₋₁) / √bₙ₊₁

    Parameters:
    -----------
    r : ndarray [M]
        Evaluation points.
    a, b : ndarray [N], [N+1]
        Recurrence coefficients from `legendre_coefs`.

    Returns:
    --------
    P : ndarray [M, N+1]
        P[i, n] = pₙ(rᵢ).
    """
    r = np.asarray(r)
    N = len(a)
    P = np.zeros((len(r), N + 1), dtype=np.result_type(r, b))
    sqrt_b = np.sqrt(b)

    P[:, 0] = 1 / sqrt_b[0]
    if N > 0:
        P[:, 1] = (r - a[0]) * P[:, 0] / sqrt_b[1]
    for n in range(1, N):
        P[:, n + 1] = ((r - a[n]) * P[:, n] - sqrt_b[n] * P[:, n - 1]) / sqrt_b[n + 1]
    return P


def vandermonde(r: np.ndarray) -> np.ndarray:
    """Generalized Legendre Vandermonde matrix V[i, n] = pₙ(rᵢ) for N = len(r) - 1."""
    r = np.asarray(r)
    a, b = legendre_coefs(len(r) - 1, dtype=r.dtype)
    return orthonormal_poly(r, a, b)


def lgl_points_weights(N: int, dtype=np.float64) -> tuple[np.ndarray, np.ndarray]:
    """
    Legendre-Gauss-Lobatto nodes and weights on [-1, 1].

    The N+1 nodes are the endpoints ±1 together with the roots of P'_N, which
    are the roots of the Jacobi polynomial P^{(1,1)}_{N-1}.

        wⱼ = 2 / (N·(N+1)·P_N(xⱼ)²)

    Parameters:
    -----------
    N : int
        Polynomial order (≥ 1).
    dtype : numpy dtype
        Precision of the returned arrays.

    Returns:
    --------
    x : ndarray [N+1]
        Nodes in ascending order, x[0] = -1 and x[N] = 1.
    w : ndarray [N+1]
        Quadrature weights, summing to 2.
    """
    from scipy.special import eval_legendre, roots_jacobi

    if N < 1:
        raise ValueError(f"LGL nodes need N ≥ 1, got N={N}")

    interior = roots_jacobi(N - 1, 1.0, 1.0)[0] if N > 1 else np.empty(0)
    x = np.concatenate([[-1.0], np.sort(interior), [1.0]])
    w = 2.0 / (N * (N + 1) * eval_legendre(N, x) ** 2)
    return x.astype(dtype), w.astype(dtype)
