# ============================================================================
# Element Kernels
# ============================================================================
#
# Field layout: Q[ijk, s, e] with ijk = i + Nq*(j + Nq*k) the element-local
# node, s the state variable and e the element. Each kernel is vectorized
# over element groups (trailing `e` axis) and over the workers of a group
# (leading axes), and written once against the backend interface so the
# host and device executions perform the same operations in the same order.

from typing import Literal

import numpy as np

from .backends import Backend, WorkGroup, field_data

Direction = Literal["every", "horizontal", "vertical"]


def direction_mask(direction: Direction, dim: int) -> tuple[bool, bool, bool]:
    """
    Reference directions (ξ1, ξ2, ξ3) a spectral filter acts along.

    The trailing reference direction is vertical: ξ3 in 3-D and ξ2 in 2-D.
    ξ3 does not exist in 2-D.

    Parameters:
    -----------
    direction : str
        'every', 'horizontal' or 'vertical'.
    dim : int
        Dimensionality of the grid (2 or 3).

    Returns:
    --------
    (filter_xi1, filter_xi2, filter_xi3) : tuple of bool
    """
    if direction == "every":
        return True, True, dim == 3
    if direction == "horizontal":
        return True, dim == 3, False
    if direction == "vertical":
        return False, dim == 2, dim == 3
    raise ValueError(
        f"direction must be 'every', 'horizontal' or 'vertical', got {direction!r}"
    )


def filter_workgroup(dim: int, N: int) -> WorkGroup:
    """One worker per node: (Nqk, Nq, Nq) with Nqk = 1 in 2-D."""
    Nq = N + 1
    Nqk = 1 if dim == 2 else Nq
    return WorkGroup(shape=(Nqk, Nq, Nq), Nq=Nq)


def tmar_workgroup(dim: int, N: int) -> WorkGroup:
    """One worker per horizontal position: (Nqj, Nq) with Nqj = 1 in 2-D."""
    Nq = N + 1
    Nqj = 1 if dim == 2 else Nq
    return WorkGroup(shape=(Nqj, Nq), Nq=Nq)


def _pencil_workgroup(dim: int, N: int) -> WorkGroup:
    # every horizontal worker walks its vertical pencil k = 0, ..., Nq-1
    Nq = N + 1
    return WorkGroup(shape=(Nq,) + tmar_workgroup(dim, N).shape, Nq=Nq)


# ----------------------------------------------------------------------------
# Tensor-product spectral filter
# ----------------------------------------------------------------------------


def _filter_kernel(backend: Backend, data, filtermatrix, elems, *, dim, N, states, mask):
    """
    Sum-factorized application of the filter matrix F along the masked
    reference directions.

        ξ1:  q[k, j, i] ← Σₙ F[i, n]·q[k, j, n]
        ξ2:  q[k, j, i] ← Σₙ F[j, n]·q[k, n, i]
        ξ3:  q[k, j, i] ← Σₙ F[k, n]·q[n, j, i]

    Each stage reads every node along its direction, so the stages are
    separated by a barrier.
    """
    filterinxi1, filterinxi2, filterinxi3 = mask
    wg = filter_workgroup(dim, N)
    ijk = wg.node_index().ravel()
    states = np.asarray(states)

    s_filter = backend.asarray(filtermatrix, dtype=data.dtype)
    s_Q = backend.gather(data, ijk, states, elems)
    s_Q = s_Q.reshape(wg.scratch_shape(len(states), s_Q.shape[-1]))
    s_Q = backend.synchronize(s_Q)

    if filterinxi1:
        s_Q = backend.contract("in,kjnse->kjise", s_filter, s_Q)
        s_Q = backend.synchronize(s_Q)

    if filterinxi2:
        s_Q = backend.contract("jn,knise->kjise", s_filter, s_Q)
        s_Q = backend.synchronize(s_Q)

    if filterinxi3:
        s_Q = backend.contract("kn,njise->kjise", s_filter, s_Q)
        s_Q = backend.synchronize(s_Q)

    return s_Q.reshape((wg.size,) + s_Q.shape[3:])


def apply_filter_kernel(
    backend: Backend,
    Q,
    filtermatrix,
    elems,
    *,
    dim: int,
    N: int,
    states: tuple[int, ...],
    direction: Direction = "every",
) -> None:
    """
    Apply `filtermatrix` to `states` of `Q` on the elements `elems`, in place.

    Parameters:
    -----------
    backend : CPU or Device
        Execution backend matching the storage of `Q`.
    Q : StateArray or ndarray [Np, nstate, nelem]
        Field data, updated in place.
    filtermatrix : Array [N+1, N+1]
        Nodal filter operator.
    elems : Array [nrealelem]
        Elements to process.
    dim, N : int
        Dimensionality and polynomial order.
    states : tuple of int
        State indices to filter; all others are left untouched.
    direction : str
        'every', 'horizontal' or 'vertical'.
    """
    mask = direction_mask(direction, dim)
    values = backend.launch(
        _filter_kernel,
        field_data(Q),
        filtermatrix,
        elems,
        dim=dim,
        N=N,
        states=states,
        mask=mask,
    )
    nodes = filter_workgroup(dim, N).node_index().ravel()
    backend.store(Q, nodes, np.asarray(states), elems, values)


# ----------------------------------------------------------------------------
# Truncation and mass aware rescaling (TMAR)
# ----------------------------------------------------------------------------


def _tmar_kernel(backend: Backend, data, mass, elems, *, dim, N, states):
    """
    Clip negative values and rescale so that the element mass integral

        Σ_ijk M[ijk]·Q[ijk]

    is unchanged whenever it was positive. Phase 1 accumulates, per
    horizontal worker, the raw and clipped integrals of its vertical pencil
    and tree-reduces them over the element; phase 2 rescales every node.
    """
    xp = backend.xp
    Nq = N + 1
    wg = tmar_workgroup(dim, N)
    ijk = _pencil_workgroup(dim, N).node_index().ravel()
    states = np.asarray(states)
    nfilterstates = len(states)

    l_Q = backend.gather(data, ijk, states, elems)
    nelem = l_Q.shape[-1]
    l_Q = l_Q.reshape(Nq, wg.size, nfilterstates, nelem)
    l_MJ = backend.gather(backend.asarray(mass, dtype=data.dtype), ijk, elems)
    l_MJ = l_MJ.reshape(Nq, wg.size, 1, nelem)

    MJQ = xp.zeros((wg.size, nfilterstates, nelem), dtype=data.dtype)
    MJQclipped = xp.zeros_like(MJQ)
    for k in range(Nq):
        Qs = l_Q[k]
        Qsclipped = xp.where(Qs >= 0, Qs, 0)
        MJQ = MJQ + l_MJ[k] * Qs
        MJQclipped = MJQclipped + l_MJ[k] * Qsclipped

    # shared scratch: [worker, (raw, clipped), state, element]
    s_MJQ = xp.stack([MJQ, MJQclipped], axis=1)
    s_MJQ = backend.synchronize(s_MJQ)
    for dst, src in wg.reduce_steps():
        s_MJQ = backend.scatter_add(s_MJQ, dst, src)
        s_MJQ = backend.synchronize(s_MJQ)

    qs_average = s_MJQ[0, 0]
    qs_clipped_average = s_MJQ[0, 1]
    positive = qs_average > 0
    r = xp.where(positive, qs_average / xp.where(positive, qs_clipped_average, 1), 0)

    Q_out = xp.where(l_Q >= 0, r * l_Q, 0)
    return Q_out.reshape(Nq * wg.size, nfilterstates, nelem)


def apply_tmar_kernel(
    backend: Backend,
    Q,
    mass,
    elems,
    *,
    dim: int,
    N: int,
    states: tuple[int, ...],
) -> None:
    """
    Apply truncation and mass aware rescaling to `states` of `Q`, in place.

    Parameters:
    -----------
    backend : CPU or Device
        Execution backend matching the storage of `Q`.
    Q : StateArray or ndarray [Np, nstate, nelem]
        Field data, updated in place.
    mass : Array [Np, nelem]
        Quadrature weight times Jacobian at every node.
    elems : Array [nrealelem]
        Elements to process.
    dim, N : int
        Dimensionality and polynomial order.
    states : tuple of int
        State indices to rescale.
    """
    values = backend.launch(
        _tmar_kernel,
        field_data(Q),
        mass,
        elems,
        dim=dim,
        N=N,
        states=states,
    )
    nodes = _pencil_workgroup(dim, N).node_index().ravel()
    backend.store(Q, nodes, np.asarray(states), elems, values)
