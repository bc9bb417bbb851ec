import jax
import jax.numpy as jnp
import numpy as np
import pytest

from dgfilterx import StateArray


def pytest_sessionstart(session):
    """Enable JAX 64-bit mode at the start of the pytest session."""
    jax.config.update("jax_enable_x64", True)


@pytest.fixture(params=["cpu", "device"])
def array_type(request):
    """Storage location of grids, filters and field data."""
    return request.param


@pytest.fixture
def make_state(array_type):
    """Wrap a numpy field in a StateArray stored on the current backend."""

    def _make(Q):
        if array_type == "device":
            return StateArray(jnp.asarray(Q))
        return StateArray(np.array(Q, copy=True))

    return _make
