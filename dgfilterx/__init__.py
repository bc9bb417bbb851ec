from dgfilterx._src.backends import CPU, Device, WorkGroup, get_backend
from dgfilterx._src.basis import (
    legendre_coefs,
    lgl_points_weights,
    orthonormal_poly,
    vandermonde,
)
from dgfilterx._src.filters import (
    CutoffFilter,
    ExponentialFilter,
    TMARFilter,
    apply,
    spectral_filter_matrix,
)
from dgfilterx._src.grid import DGGrid, Topology
from dgfilterx._src.kernels import direction_mask
from dgfilterx._src.state import StateArray

__all__ = [
    # Grid and field data
    "DGGrid",
    "Topology",
    "StateArray",
    # Basis transform
    "legendre_coefs",
    "orthonormal_poly",
    "vandermonde",
    "lgl_points_weights",
    # Filters
    "spectral_filter_matrix",
    "ExponentialFilter",
    "CutoffFilter",
    "TMARFilter",
    "apply",
    "direction_mask",
    # Execution
    "CPU",
    "Device",
    "WorkGroup",
    "get_backend",
]
