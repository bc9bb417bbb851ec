"""
Tests for truncation and mass aware rescaling (TMAR).
"""

import numpy as np
import pytest

from dgfilterx import DGGrid, StateArray, TMARFilter, WorkGroup, apply


def element_mass(grid, q):
    M = np.asarray(grid.mass)
    return (M * q).sum(axis=0)


def mixed_sign_field(grid, nstate=1, seed=0, shift=0.4):
    rng = np.random.default_rng(seed)
    Q = shift + 0.5 * rng.normal(size=(grid.Np, nstate, grid.topology.nelem))
    Q[:, :, grid.topology.ghostelems] = np.nan
    return Q


# ============================================================================
# Reduction layout
# ============================================================================


def test_reduce_steps_non_power_of_two():
    """9 workers reduce over nreduce = 16 with guarded pairs."""
    steps = WorkGroup(shape=(3, 3), Nq=3).reduce_steps()
    pairs = [(dst.tolist(), src.tolist()) for dst, src in steps]
    assert pairs == [
        ([0], [8]),
        ([0, 1, 2, 3], [4, 5, 6, 7]),
        ([0, 1], [2, 3]),
        ([0], [1]),
    ]


def test_reduce_steps_five_workers():
    steps = WorkGroup(shape=(5,), Nq=5).reduce_steps()
    pairs = [(dst.tolist(), src.tolist()) for dst, src in steps]
    assert pairs == [([0], [4]), ([0, 1], [2, 3]), ([0], [1])]


@pytest.mark.parametrize("size", [1, 2, 3, 4, 7, 16, 25])
def test_reduce_steps_sum_every_worker_once(size):
    """Replaying the steps on worker ids leaves the total in worker 0."""
    wg = WorkGroup(shape=(size,), Nq=size)
    x = np.arange(1.0, size + 1)
    for dst, src in wg.reduce_steps():
        assert np.all(src < size)
        x[dst] += x[src]
    assert x[0] == size * (size + 1) / 2


# ============================================================================
# Filter behaviour
# ============================================================================


@pytest.mark.parametrize("dim", [2, 3])
def test_nonnegative_field_unchanged(array_type, make_state, dim):
    grid = DGGrid.from_N_nelem(N=3, dim=dim, nreal=4, array_type=array_type)
    Q0 = np.abs(mixed_sign_field(grid, nstate=2))
    Q = make_state(Q0)
    apply(Q, (0, 1), grid, TMARFilter())
    out = np.asarray(Q.data)
    if array_type == "cpu":
        assert np.array_equal(out, Q0)
    else:
        np.testing.assert_allclose(out, Q0, rtol=1e-13)


@pytest.mark.parametrize("dim", [2, 3])
def test_mixed_sign_becomes_nonnegative_and_conserves_mass(array_type, make_state, dim):
    grid = DGGrid.from_N_nelem(N=4, dim=dim, nreal=6, nghost=1, array_type=array_type)
    Q0 = mixed_sign_field(grid, seed=1)
    real = grid.topology.realelems
    assert (Q0[:, 0, real] < 0).any()

    Q = make_state(Q0)
    apply(Q, 0, grid, TMARFilter())
    out = np.asarray(Q.data)[:, 0]

    before = element_mass(grid, np.nan_to_num(Q0[:, 0]))[real]
    after = element_mass(grid, np.nan_to_num(out))[real]
    positive = before > 0
    assert positive.any()
    assert np.all(out[:, real] >= 0)
    np.testing.assert_allclose(after[positive], before[positive], rtol=1e-12)
    assert np.all(out[:, real][:, ~positive] == 0)


def test_negative_nodes_clipped_and_positive_nodes_share_one_scale(array_type, make_state):
    grid = DGGrid.from_N_nelem(N=3, dim=3, nreal=2, array_type=array_type)
    Q0 = mixed_sign_field(grid, seed=2, shift=1.0)
    Q = make_state(Q0)
    apply(Q, 0, grid, TMARFilter())
    out = np.asarray(Q.data)[:, 0]
    for e in range(2):
        neg = Q0[:, 0, e] < 0
        assert np.all(out[neg, e] == 0)
        ratios = out[~neg, e] / Q0[~neg, 0, e]
        assert np.allclose(ratios, ratios[0], rtol=1e-12)
        assert ratios[0] <= 1.0


def test_nonpositive_mass_element_zeroed(array_type, make_state):
    grid = DGGrid.from_N_nelem(N=2, dim=2, nreal=2, array_type=array_type)
    Q0 = np.empty((grid.Np, 1, 2))
    Q0[:, 0, 0] = -0.1
    Q0[:, 0, 1] = 0.3
    Q0[0, 0, 0] = 0.05  # one positive node, integral still negative
    Q = make_state(Q0)
    apply(Q, 0, grid, TMARFilter())
    out = np.asarray(Q.data)
    assert np.all(out[:, 0, 0] == 0)
    np.testing.assert_allclose(out[:, 0, 1], 0.3, rtol=1e-13)


def test_zero_mass_alternating_column(array_type):
    """Alternating ±1 nodes with uniform mass integrate to zero: all zeroed."""
    from dgfilterx import Topology

    N = 3
    topology = Topology.from_counts(1)
    base = DGGrid(N=N, dim=2, topology=topology)
    w = base.reference_weights
    w_ref = np.einsum("j,i->ji", w, w).ravel()
    jacobian = (0.25 / w_ref)[:, None]
    grid = DGGrid(N=N, dim=2, topology=topology, array_type=array_type, jacobian=jacobian)
    np.testing.assert_allclose(np.asarray(grid.mass), 0.25)

    Q0 = np.tile([1.0, -1.0, 1.0, -1.0], 4)[:, None, None]
    if array_type == "device":
        import jax.numpy as jnp

        Q = StateArray(jnp.asarray(Q0))
    else:
        Q = StateArray(Q0.copy())
    apply(Q, 0, grid, TMARFilter())
    assert np.allclose(np.asarray(Q.data), 0.0, atol=1e-14)


def test_ghosts_and_unselected_states_untouched(array_type, make_state):
    grid = DGGrid.from_N_nelem(N=3, dim=3, nreal=3, nghost=2, array_type=array_type)
    Q0 = mixed_sign_field(grid, nstate=3, seed=3)
    Q = make_state(Q0)
    apply(Q, [0, 2], grid, TMARFilter())
    out = np.asarray(Q.data)
    assert np.array_equal(out[:, 1], Q0[:, 1], equal_nan=True)
    assert np.all(np.isnan(out[:, :, grid.topology.ghostelems]))
    assert np.all(out[:, [0, 2]][:, :, grid.topology.realelems] >= 0)


def test_states_are_rescaled_independently(make_state, array_type):
    """Each state's integral is preserved on its own."""
    grid = DGGrid.from_N_nelem(N=3, dim=2, nreal=3, array_type=array_type)
    Q0 = mixed_sign_field(grid, nstate=2, seed=4, shift=0.6)
    Q0[:, 1] *= 3.0
    Q = make_state(Q0)
    apply(Q, (0, 1), grid, TMARFilter())
    out = np.asarray(Q.data)
    for s in (0, 1):
        before = element_mass(grid, Q0[:, s])
        after = element_mass(grid, out[:, s])
        positive = before > 0
        np.testing.assert_allclose(after[positive], before[positive], rtol=1e-12)


def test_cpu_and_device_agree():
    import jax.numpy as jnp

    cpu_grid = DGGrid.from_N_nelem(N=5, dim=3, nreal=4, nghost=1)
    dev_grid = DGGrid.from_N_nelem(N=5, dim=3, nreal=4, nghost=1, array_type="device")
    Q0 = mixed_sign_field(cpu_grid, nstate=2, seed=5, shift=0.2)

    Q_cpu = StateArray(Q0.copy())
    Q_dev = StateArray(jnp.asarray(Q0))
    apply(Q_cpu, (0, 1), cpu_grid, TMARFilter())
    apply(Q_dev, (0, 1), dev_grid, TMARFilter())

    np.testing.assert_allclose(np.asarray(Q_dev.data), Q_cpu.data, rtol=1e-12, atol=1e-15)
