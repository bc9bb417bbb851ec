"""
Discontinuous Galerkin Filters
===============================

Element-local filters for fields on a discontinuous spectral-element grid.

Spectral filters act on the Legendre modal coefficients of the nodal
polynomial in each reference direction:

    F = V · diag(Σ) · V⁻¹

where V is the Legendre Vandermonde matrix on the reference nodes and

    Σₙ = 1                         n < N_c
    Σₙ = σ((n - N_c)/(N - N_c))    N_c ≤ n ≤ N

Filters:
--------
    • ExponentialFilter: σ(η) = exp(-α·η^s), damps high modes smoothly.
    • CutoffFilter:      σ(η) = 0, removes every mode n ≥ N_c.
    • TMARFilter:        truncation and mass aware rescaling; keeps a scalar
                         nonnegative while preserving the element mass.

References:
-----------
[1] Hesthaven, J. S. & Warburton, T. (2008). Nodal Discontinuous Galerkin Methods.
[2] Light, D. & Durran, D. (2016). Preserving Nonnegativity in Discontinuous
    Galerkin Approximations to Scalar Transport via Truncation and Mass Aware
    Rescaling (TMAR). Monthly Weather Review, 144(12), 4771-4786.
"""

from collections.abc import Callable, Iterable

import equinox as eqx
import numpy as np
from jaxtyping import Array, Float
from loguru import logger

from .backends import backend_for, get_backend
from .basis import vandermonde
from .grid import DGGrid
from .kernels import Direction, apply_filter_kernel, apply_tmar_kernel, direction_mask


def spectral_filter_matrix(
    r, Nc: int, sigma: Callable[[float], float]
) -> Float[np.ndarray, "N1 N1"]:
    """
    Nodal filter matrix on the interpolation points `r`.

    Converts nodal values at the N+1 points `r` into orthonormal Legendre
    coefficients, multiplies coefficients n = Nc, ..., N by
    σ((n - Nc)/(N - Nc)) and evaluates the result back at `r`.

    When Nc = N only the highest mode is attenuated and its normalized index
    is taken as 0, i.e. it is multiplied by σ(0).

    Parameters:
    -----------
    r : array [N+1]
        Interpolation points on [-1, 1].
    Nc : int
        First attenuated mode, 0 ≤ Nc ≤ N.
    sigma : callable
        Attenuation profile on the normalized mode index η ∈ [0, 1].

    Returns:
    --------
    F : ndarray [N+1, N+1]
        Filter matrix, F @ u filters the nodal values u.
    """
    r = np.asarray(r)
    N = len(r) - 1
    if N < 0:
        raise ValueError("at least one interpolation point is required")
    if not 0 <= Nc <= N:
        raise ValueError(f"Nc must satisfy 0 ≤ Nc ≤ N={N}, got Nc={Nc}")

    n = np.arange(Nc, N + 1)
    eta = (n - Nc) / (N - Nc) if N > Nc else np.zeros(1)

    Sigma = np.ones(N + 1, dtype=r.dtype)
    Sigma[Nc:] = [sigma(e) for e in eta]

    V = vandermonde(r)
    # F = V Σ V⁻¹  <=>  Vᵀ Fᵀ = (V Σ)ᵀ
    return np.linalg.solve(V.T, (V * Sigma).T).T


class ExponentialFilter(eqx.Module):
    """
    Exponential spectral filter.

        σ(η) = exp(-α·η^s)

    The filter leaves modes below Nc untouched and rolls off to exp(-α) at
    the highest mode. With the default α = -log(ε) of the working precision
    the highest mode is damped to machine epsilon.

    Attributes:
    -----------
        filter : Array [N+1, N+1]
            Filter matrix, stored where the grid stores field data.
        Nc : int
            First attenuated mode.
        s : int
            Filter order (positive, even).
        alpha : float
            Damping strength.
    """

    filter: Array
    Nc: int
    s: int
    alpha: float

    def __init__(self, grid: DGGrid, Nc: int = 0, s: int = 32, alpha: float | None = None):
        """
        Parameters:
        -----------
        grid : DGGrid
            Grid providing the order, reference points, precision and storage.
        Nc : int
            First attenuated mode, 0 ≤ Nc ≤ N. Default 0.
        s : int
            Filter order, a positive even integer. Default 32.
        alpha : float, optional
            Damping strength. Default -log(eps) of `grid.dtype`.
        """
        N = grid.polynomial_order
        if isinstance(s, bool) or not isinstance(s, (int, np.integer)) or s <= 0 or s % 2:
            raise ValueError(f"filter order s must be a positive even integer, got s={s}")
        if not 0 <= Nc <= N:
            raise ValueError(f"Nc must satisfy 0 ≤ Nc ≤ N={N}, got Nc={Nc}")
        if alpha is None:
            alpha = float(-np.log(np.finfo(grid.dtype).eps))

        def sigma(eta):
            return np.exp(-alpha * eta**s)

        F = spectral_filter_matrix(grid.reference_points, Nc, sigma)
        self.filter = backend_for(grid.array_type).asarray(F)
        self.Nc = Nc
        self.s = s
        self.alpha = alpha
        logger.debug(
            f"ExponentialFilter: N={N}, Nc={Nc}, s={s}, alpha={alpha:.4f}, "
            f"array_type={grid.array_type}"
        )


class CutoffFilter(eqx.Module):
    """
    Cutoff spectral filter: zeros every Legendre mode n ≥ Nc.

        σ(η) = 0

    Attributes:
    -----------
        filter : Array [N+1, N+1]
            Filter matrix, stored where the grid stores field data.
        Nc : int
            First removed mode.
    """

    filter: Array
    Nc: int

    def __init__(self, grid: DGGrid, Nc: int | None = None):
        """
        Parameters:
        -----------
        grid : DGGrid
            Grid providing the order, reference points and storage.
        Nc : int, optional
            First removed mode, 0 ≤ Nc ≤ N. Default N (only the highest mode).
        """
        N = grid.polynomial_order
        if Nc is None:
            Nc = N
        if not 0 <= Nc <= N:
            raise ValueError(f"Nc must satisfy 0 ≤ Nc ≤ N={N}, got Nc={Nc}")

        F = spectral_filter_matrix(grid.reference_points, Nc, lambda eta: 0)
        self.filter = backend_for(grid.array_type).asarray(F)
        self.Nc = Nc
        logger.debug(f"CutoffFilter: N={N}, Nc={Nc}, array_type={grid.array_type}")


class TMARFilter(eqx.Module):
    """
    Truncation and mass aware rescaling nonnegativity filter.

    Negative nodal values are set to zero and the remaining values rescaled
    so that each element's mass integral Σ M·Q is unchanged; elements with a
    nonpositive integral are set to zero. The grid-wide integral is only
    conserved with a restrictive time step or a flux correction.

    Example:
    --------
    Apply to the 3rd and 4th states of `Q`:

    >>> apply(Q, (2, 3), grid, TMARFilter())
    """


SpectralFilter = ExponentialFilter | CutoffFilter
Filter = ExponentialFilter | CutoffFilter | TMARFilter


def apply(
    Q,
    states: int | Iterable[int],
    grid: DGGrid,
    filter: Filter,
    direction: Direction = "every",
) -> None:
    """
    Apply `filter` to `states` of `Q` on the real elements of `grid`, in place.

    The backend is chosen from where `Q` lives: numpy data runs on the host,
    JAX data runs on the JAX device. Ghost elements and unselected states are
    never modified.

    Parameters:
    -----------
    Q : StateArray or ndarray [Np, nstate, nelem]
        Field data; a bare numpy array is modified in place, a StateArray
        has its `data` updated.
    states : int or iterable of int
        State indices to filter (non-empty).
    grid : DGGrid
        Grid the field lives on.
    filter : ExponentialFilter, CutoffFilter or TMARFilter
        Filter to apply.
    direction : str
        Reference directions for spectral filters: 'every' (default),
        'horizontal' or 'vertical'. Ignored by TMARFilter.
    """
    states = (states,) if isinstance(states, (int, np.integer)) else tuple(states)
    if not states:
        raise ValueError("at least one state index is required")
    states = tuple(int(s) for s in states)

    direction_mask(direction, grid.dim)
    backend = get_backend(Q)
    elems = backend.index(grid.topology.realelems)
    logger.debug(
        f"apply {type(filter).__name__} on {backend.name}: states={states}, "
        f"nrealelem={len(elems)}, direction={direction}"
    )

    if isinstance(filter, SpectralFilter):
        if len(elems) == 0:
            return
        apply_filter_kernel(
            backend,
            Q,
            filter.filter,
            elems,
            dim=grid.dim,
            N=grid.N,
            states=states,
            direction=direction,
        )
    elif isinstance(filter, TMARFilter):
        if len(elems) == 0:
            return
        apply_tmar_kernel(
            backend,
            Q,
            grid.mass,
            elems,
            dim=grid.dim,
            N=grid.N,
            states=states,
        )
    else:
        raise TypeError(f"Unsupported filter type: {type(filter).__name__}")
