# ============================================================================
# State Array
# ============================================================================

import jax.numpy as jnp
import numpy as np

from .grid import DGGrid


class StateArray:
    """
    Mutable holder of the field data Q[ijk, s, e].

    The filters update `data` in place: numpy data is written into directly,
    JAX data (immutable) is replaced by the updated array. Anything holding a
    reference to the container sees the filtered field.

    Attributes:
    -----------
        data : ndarray or Array [Np, nstate, nelem]
            Node-major field values.
    """

    def __init__(self, data):
        self.data = data

    @classmethod
    def zeros(cls, grid: DGGrid, nstate: int) -> "StateArray":
        """Zero field on every element of `grid`, stored where the grid says."""
        shape = (grid.Np, nstate, grid.topology.nelem)
        if grid.array_type == "device":
            return cls(jnp.zeros(shape, dtype=grid.dtype))
        return cls(np.zeros(shape, dtype=grid.dtype))

    @property
    def shape(self) -> tuple[int, ...]:
        return tuple(self.data.shape)

    @property
    def nstate(self) -> int:
        return self.data.shape[1]

    @property
    def nelem(self) -> int:
        return self.data.shape[2]

    def __repr__(self) -> str:
        return f"StateArray(shape={self.shape}, dtype={self.data.dtype})"
