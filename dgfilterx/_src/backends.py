# ============================================================================
# Execution Backends
# ============================================================================
#
# The filter kernels are written once against a small backend interface and
# executed either eagerly with numpy on the host (CPU) or compiled with
# XLA through JAX (Device). The backend is picked once, at the apply
# boundary, from the type of the field data.

import math
from typing import Literal

import equinox as eqx
import jax
import jax.numpy as jnp
import numpy as np
from jaxtyping import Array


class WorkGroup(eqx.Module):
    """
    Work-group layout for one element.

    One group is launched per real element and one worker per entry of
    `shape`, ordered slowest to fastest, e.g. (Nqk, Nq, Nq) for the
    (k, j, i) workers of the tensor-product kernel. The kernels are
    vectorized over workers, so a "worker-local" value is an array whose
    leading axes are `shape`.

    Attributes:
    -----------
        shape : tuple[int, ...]
            Worker grid, slowest index first.
        Nq : int
            Number of nodes per reference direction.
    """

    shape: tuple[int, ...]
    Nq: int

    @property
    def size(self) -> int:
        return math.prod(self.shape)

    def local_ids(self) -> tuple[np.ndarray, ...]:
        """Worker coordinates, each broadcast to `shape` (slowest axis first)."""
        return tuple(np.indices(self.shape))

    def node_index(self) -> np.ndarray:
        """
        Element-local node index of every worker.

            ijk = i + Nq·(j + Nqj·k)

        where the worker coordinates are read from the trailing axes of
        `shape` (i fastest) and Nqj is the extent of the j axis. Because the
        workers are enumerated row-major over (k, j, i), `node_index().ravel()`
        is the identity permutation and a worker-local array reshaped to
        (size, ...) is already in node order.
        """
        ids = self.local_ids()[::-1]
        extents = self.shape[::-1]
        ijk = np.zeros(self.shape, dtype=np.intp)
        stride = 1
        for idx, extent in zip(ids, extents):
            ijk = ijk + stride * idx
            stride *= extent
        return ijk

    def scratch_shape(self, *trailing: int) -> tuple[int, ...]:
        """Declared shape of a shared scratch buffer holding one value per worker."""
        return self.shape + tuple(trailing)

    def reduce_steps(self) -> list[tuple[np.ndarray, np.ndarray]]:
        """
        Guarded (dst, src) worker pairs of each pairwise tree-reduction step.

        The reduction runs over `nreduce`, the smallest power of two ≥ `size`.
        A step with offset h adds worker dst + h into worker dst for every
        dst < h whose partner dst + h is a real worker; padding workers never
        read or write.
        """
        nreduce = 1 << max(self.size - 1, 0).bit_length()
        steps = []
        half = nreduce // 2
        while half >= 1:
            dst = np.arange(half)
            src = dst + half
            valid = src < self.size
            steps.append((dst[valid], src[valid]))
            half //= 2
        return steps


class CPU(eqx.Module):
    """Host backend: eager numpy, one vectorized pass over all element groups."""

    name: Literal["cpu"] = "cpu"

    @property
    def xp(self):
        return np

    def asarray(self, x, dtype=None):
        return np.asarray(x, dtype=dtype)

    def synchronize(self, x):
        # numpy ops complete before returning: a stage boundary is a barrier
        return x

    def contract(self, subscripts: str, *operands):
        return np.einsum(subscripts, *operands)

    def gather(self, data, *indices):
        return data[np.ix_(*indices)]

    def scatter_add(self, x, dst, src):
        x = x.copy()
        x[dst] += x[src]
        return x

    def index(self, idx):
        return np.asarray(idx, dtype=np.intp)

    def launch(self, kernel, *args, **kwargs):
        return kernel(self, *args, **kwargs)

    def store(self, Q, nodes, states, elems, values) -> None:
        data = field_data(Q)
        data[np.ix_(nodes, states, elems)] = values


@eqx.filter_jit
def _compiled(backend, kernel, *args, **kwargs):
    return kernel(backend, *args, **kwargs)


class Device(eqx.Module):
    """Accelerator backend: JAX arrays, kernels compiled once per configuration."""

    name: Literal["device"] = "device"

    @property
    def xp(self):
        return jnp

    def asarray(self, x, dtype=None) -> Array:
        return jnp.asarray(x, dtype=dtype)

    def synchronize(self, x):
        return jax.lax.optimization_barrier(x)

    def contract(self, subscripts: str, *operands):
        return jnp.einsum(subscripts, *operands, precision=jax.lax.Precision.HIGHEST)

    def gather(self, data: Array, *indices) -> Array:
        return data[jnp.ix_(*indices)]

    def scatter_add(self, x, dst, src):
        return x.at[dst].add(x[src])

    def index(self, idx):
        return jnp.asarray(np.asarray(idx, dtype=np.int32))

    def launch(self, kernel, *args, **kwargs):
        return jax.block_until_ready(_compiled(self, kernel, *args, **kwargs))

    def store(self, Q, nodes, states, elems, values) -> None:
        Q.data = Q.data.at[jnp.ix_(nodes, states, elems)].set(values)


Backend = CPU | Device


def backend_for(array_type: Literal["cpu", "device"]) -> Backend:
    """Backend matching a grid storage-location tag."""
    if array_type == "cpu":
        return CPU()
    if array_type == "device":
        return Device()
    raise ValueError(f"array_type must be 'cpu' or 'device', got {array_type!r}")


def get_backend(Q) -> Backend:
    """
    Select the execution backend from where the field data lives.

    Parameters:
    -----------
    Q : StateArray or ndarray
        Field container (anything with a `.data` attribute) or a bare numpy
        array.

    Returns:
    --------
    CPU for numpy data, Device for JAX data.
    """
    if isinstance(Q, np.ndarray):
        return CPU()
    if isinstance(Q, jax.Array):
        raise TypeError(
            "JAX arrays are immutable and cannot be filtered in place; "
            "wrap the array in a StateArray"
        )
    data = getattr(Q, "data", None)
    if isinstance(data, np.ndarray):
        return CPU()
    if isinstance(data, jax.Array):
        return Device()
    raise TypeError(f"Unsupported field array type: {type(data).__name__}")


def field_data(Q):
    """The array held by a field container, or `Q` itself for a bare numpy array."""
    return Q if isinstance(Q, np.ndarray) else Q.data
