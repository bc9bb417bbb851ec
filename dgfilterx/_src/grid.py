"""
Discontinuous Spectral Element Grid Module
===========================================

Reference-element description of a discontinuous spectral-element (DG) mesh,
reduced to what the filters consume: polynomial order, dimensionality,
reference nodes, the split of elements into real and ghost elements, the
geometric mass at every node, and where the field data is stored.

Key Concepts:
-------------
    • Every element carries Nq = N+1 nodes per reference direction:
      Np = Nq² nodes in 2-D and Np = Nq³ nodes in 3-D.
    • Element-local node index: ijk = i + Nq·(j + Nq·k), i fastest.
    • The trailing reference direction is vertical (ξ3 in 3-D, ξ2 in 2-D).
    • Real elements are owned by this partition; ghost elements mirror a
      neighbour's data and are never filtered.
    • Mass: M[ijk, e] = wᵢ·wⱼ·w_k·J[ijk, e], quadrature weight times Jacobian.

References:
-----------
[1] Hesthaven, J. S. & Warburton, T. (2008). Nodal Discontinuous Galerkin Methods.
[2] Kopriva, D. A. (2009). Implementing Spectral Methods for PDEs.
"""

from typing import Literal

import equinox as eqx
import numpy as np
from jaxtyping import Array, Float

from .backends import backend_for
from .basis import lgl_points_weights, vandermonde

# ============================================================================
# Topology
# ============================================================================


class Topology(eqx.Module):
    """
    Element bookkeeping for one mesh partition.

    Attributes:
    -----------
        elems : ndarray [nelem]
            All element ids (real and ghost).
        realelems : ndarray [nrealelem]
            Elements owned by this partition.
        ghostelems : ndarray [nghostelem]
            Halo elements mirrored from neighbouring partitions.
    """

    elems: np.ndarray
    realelems: np.ndarray
    ghostelems: np.ndarray

    def __init__(self, elems, realelems, ghostelems=()):
        self.elems = np.asarray(elems, dtype=np.intp)
        self.realelems = np.asarray(realelems, dtype=np.intp)
        self.ghostelems = np.asarray(ghostelems, dtype=np.intp)

    @classmethod
    def from_counts(cls, nreal: int, nghost: int = 0) -> "Topology":
        """
        Number real elements 0, ..., nreal-1 followed by the ghosts.

        Example:
        --------
        >>> topology = Topology.from_counts(nreal=8, nghost=2)
        """
        elems = np.arange(nreal + nghost)
        return cls(elems=elems, realelems=elems[:nreal], ghostelems=elems[nreal:])

    @property
    def nelem(self) -> int:
        return len(self.elems)

    @property
    def nrealelem(self) -> int:
        return len(self.realelems)


# ============================================================================
# DGGrid
# ============================================================================


class DGGrid(eqx.Module):
    """
    Discontinuous spectral-element grid in 2-D or 3-D.

    Attributes:
    -----------
        N : int
            Polynomial order; Nq = N+1 nodes per reference direction.
        dim : int
            Dimensionality, 2 or 3.
        topology : Topology
            Real and ghost elements.
        array_type : str
            Storage location of field data and filter operators:
            'cpu' (numpy) or 'device' (JAX).
        dtype : numpy dtype
            Working floating-point precision.
    """

    N: int
    dim: int
    topology: Topology
    array_type: Literal["cpu", "device"]
    dtype: np.dtype
    _points: np.ndarray  # reference nodes on [-1, 1], shape (Nq,)
    _weights: np.ndarray  # reference quadrature weights, shape (Nq,)
    _mass: Array  # M[ijk, e], shape (Np, nelem)

    def __init__(
        self,
        N: int,
        dim: int,
        topology: Topology,
        array_type: Literal["cpu", "device"] = "cpu",
        dtype=np.float64,
        points=None,
        jacobian=None,
    ):
        """
        Parameters:
        -----------
        N : int
            Polynomial order (≥ 1).
        dim : int
            Dimensionality, 2 or 3.
        topology : Topology
            Element bookkeeping.
        array_type : str
            'cpu' (default) or 'device'.
        dtype : numpy dtype
            Working precision. Default float64.
        points : array [N+1], optional
            Reference nodes. Default: Legendre-Gauss-Lobatto nodes.
            Quadrature weights for custom nodes are the interpolatory ones.
        jacobian : array [Np, nelem], optional
            Geometric Jacobian at every node. Default 1.
        """
        self.N = N
        self.dim = dim
        self.topology = topology
        self.array_type = array_type
        self.dtype = np.dtype(dtype)

        if points is None:
            points, weights = lgl_points_weights(N, dtype=self.dtype)
        else:
            points = np.asarray(points, dtype=self.dtype)
            weights = _interpolatory_weights(points)
        self._points = points
        self._weights = weights

        w = weights
        if dim == 2:
            w_ref = np.einsum("j,i->ji", w, w).ravel()
        else:
            w_ref = np.einsum("k,j,i->kji", w, w, w).ravel()
        J = np.ones((len(w_ref), topology.nelem)) if jacobian is None else jacobian
        mass = w_ref[:, None] * np.asarray(J, dtype=self.dtype)
        self._mass = backend_for(array_type).asarray(mass)

    # ------------------------------------------------------------------
    # Factory class methods
    # ------------------------------------------------------------------

    @classmethod
    def from_N_nelem(
        cls,
        N: int,
        dim: int,
        nreal: int,
        nghost: int = 0,
        array_type: Literal["cpu", "device"] = "cpu",
        dtype=np.float64,
    ) -> "DGGrid":
        """
        Initialize a grid of unit-Jacobian elements from element counts.

        Example:
        --------
        >>> grid = DGGrid.from_N_nelem(N=4, dim=3, nreal=8, nghost=2)
        """
        topology = Topology.from_counts(nreal, nghost)
        return cls(N=N, dim=dim, topology=topology, array_type=array_type, dtype=dtype)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def polynomial_order(self) -> int:
        return self.N

    @property
    def dimensionality(self) -> int:
        return self.dim

    @property
    def Nq(self) -> int:
        """Nodes per reference direction."""
        return self.N + 1

    @property
    def Np(self) -> int:
        """Nodes per element."""
        return self.Nq**self.dim

    @property
    def reference_points(self) -> Float[np.ndarray, "Nq"]:
        """Reference nodes on [-1, 1]."""
        return self._points

    @property
    def reference_weights(self) -> Float[np.ndarray, "Nq"]:
        """Reference quadrature weights (sum to 2)."""
        return self._weights

    @property
    def mass(self) -> Float[Array, "Np nelem"]:
        """Quadrature weight times Jacobian at every node of every element."""
        return self._mass

    # ------------------------------------------------------------------
    # Consistency check
    # ------------------------------------------------------------------

    def check_consistency(self) -> bool:
        """
        Verify order, dimensionality, node count, mass shape and that the
        real and ghost elements partition a subset of `elems`.

        Returns:
        --------
        bool
            True if consistent, raises ValueError otherwise.
        """
        errors = []
        if self.N < 1:
            errors.append(f"N must be ≥ 1, got N={self.N}")
        if self.dim not in (2, 3):
            errors.append(f"dim must be 2 or 3, got dim={self.dim}")
        if len(self._points) != self.Nq:
            errors.append(
                f"expected {self.Nq} reference points, got {len(self._points)}"
            )
        if tuple(self._mass.shape) != (self.Np, self.topology.nelem):
            errors.append(
                f"mass must have shape {(self.Np, self.topology.nelem)}, "
                f"got {tuple(self._mass.shape)}"
            )
        real = set(self.topology.realelems.tolist())
        ghost = set(self.topology.ghostelems.tolist())
        if real & ghost:
            errors.append(f"elements both real and ghost: {sorted(real & ghost)}")
        if not (real | ghost) <= set(self.topology.elems.tolist()):
            errors.append("real/ghost elements must be a subset of elems")
        if errors:
            raise ValueError("Grid inconsistency detected:\n" + "\n".join(errors))
        return True


def _interpolatory_weights(points: np.ndarray) -> np.ndarray:
    """
    Quadrature weights exact for polynomials of degree ≤ N on the given nodes.

    With orthonormal pₙ, ∫₋₁¹ pₙ dx = √2·δₙ₀, so the weights solve Vᵀ·w = √2·e₀.
    """
    V = vandermonde(points)
    rhs = np.zeros(len(points), dtype=points.dtype)
    rhs[0] = np.sqrt(2.0)
    return np.linalg.solve(V.T, rhs)
