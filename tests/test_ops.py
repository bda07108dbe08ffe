"""
Unit tests for reshaping, expansion and preprocessing helpers.
"""

import numpy as np
import pytest
import xarray as xr

from climeof.errors import EmptyInput, InvalidArgument, ShapeMismatch
from climeof.ops import (cosine_weights, cube2rect, default_mask, detrend3,
                         expand3, getneofs, rect2cube)


def test_default_mask_excludes_cells_with_any_nan():
    """A cell missing at a single time step is dropped; the rest stay."""

    field = np.random.uniform(size=(3, 3, 4))
    field[1, 1, 2] = np.nan

    mask = default_mask(field)

    assert mask.dtype == bool
    assert not mask[1, 1]
    assert mask.sum() == 8


def test_cube2rect_row_major_order():
    """Column k is the k-th cell visited row by row."""

    field = np.arange(2 * 3 * 4, dtype=float).reshape(2, 3, 4)
    A = cube2rect(field)

    assert A.shape == (4, 6)
    for k in range(6):
        assert np.array_equal(A[:, k], field[k // 3, k % 3, :])

    mask = np.array([[True, False, True],
                     [False, True, False]])
    A = cube2rect(field, mask)

    assert A.shape == (4, 3)
    assert np.array_equal(A[:, 0], field[0, 0])
    assert np.array_equal(A[:, 1], field[0, 2])
    assert np.array_equal(A[:, 2], field[1, 1])


def test_flatten_unflatten_restores_masked_cells():
    """rect2cube(cube2rect(x, mask), mask) keeps masked-in values, NaN elsewhere."""

    field = np.random.uniform(size=(5, 7, 6))
    mask = np.random.uniform(size=(5, 7)) > 0.4

    restored = rect2cube(cube2rect(field, mask), mask)

    assert restored.shape == field.shape
    assert np.array_equal(restored[mask], field[mask])
    assert np.isnan(restored[~mask]).all()

    restored = rect2cube(cube2rect(field), rows=5, cols=7)
    assert np.array_equal(restored, field)


def test_reshaped_arrays_do_not_share_memory():
    """Writing into a reshaped array never changes the caller's data."""

    field = np.arange(24, dtype=float).reshape(2, 3, 4)
    original = field.copy()

    A = cube2rect(field)
    assert not np.shares_memory(A, field)
    A[0, 0] = -99.0
    assert np.array_equal(field, original)

    planes = np.arange(6, dtype=float).reshape(1, 6)
    cube = rect2cube(planes, rows=2, cols=3)
    assert not np.shares_memory(cube, planes)
    cube[0, 0, 0] = -99.0
    assert planes[0, 0] == 0.0


def test_rect2cube_planes_and_fill_values():
    """Planes become the third axis; boolean and integer inputs fill sensibly."""

    mask = np.array([[True, False], [True, True]])

    planes = np.arange(6).reshape(2, 3)
    cube = rect2cube(planes, mask)
    assert cube.shape == (2, 2, 2)
    assert cube.dtype == np.float64
    assert np.isnan(cube[0, 1]).all()
    assert np.array_equal(cube[1, 1], [2, 5])

    flags = np.ones((4, 3), dtype=bool)
    cube = rect2cube(flags, mask)
    assert cube.dtype == bool
    assert not cube[0, 1].any()
    assert cube[mask].all()


def test_reshape_errors():
    """Shape and type problems are reported with typed errors."""

    field = np.zeros((3, 4, 5))

    with pytest.raises(ShapeMismatch):
        cube2rect(field, np.ones((4, 3), dtype=bool))
    with pytest.raises(InvalidArgument):
        cube2rect(field, np.ones((3, 4)))
    with pytest.raises(ShapeMismatch):
        cube2rect(np.zeros((3, 4)))

    with pytest.raises(ShapeMismatch):
        rect2cube(np.zeros((5, 7)), np.ones((3, 4), dtype=bool))
    with pytest.raises(InvalidArgument):
        rect2cube(np.zeros((5, 12)))
    with pytest.raises(ShapeMismatch):
        rect2cube(np.zeros((5, 12)), rows=5, cols=5)
    with pytest.raises(ShapeMismatch):
        rect2cube(np.zeros((5, 12)), np.ones((3, 4), dtype=bool), rows=4, cols=3)
    with pytest.raises(ShapeMismatch):
        rect2cube(np.zeros(12), rows=3, cols=4)


def test_expand3_outer_product():
    """result[r, c, t] = map[r, c] * series[t], with NaNs propagating."""

    grid = np.array([[1.0, 2.0], [np.nan, -1.0]])
    series = np.array([0.5, 2.0, -3.0])

    out = expand3(grid, series)

    assert out.shape == (2, 2, 3)
    assert np.allclose(out[0, 1], 2.0 * series)
    assert np.allclose(out[1, 1], -series)
    assert np.isnan(out[1, 0]).all()

    assert np.allclose(expand3(grid, series.reshape(1, 3)), out, equal_nan=True)

    with pytest.raises(ShapeMismatch):
        expand3(series, series)
    with pytest.raises(ShapeMismatch):
        expand3(grid, np.ones((2, 3)))


def test_detrend3_removes_linear_trend():
    """A pure trend plus offset is removed entirely; anomalies survive."""

    t = np.array([0.0, 1.0, 3.0, 4.0, 7.0, 8.0])
    slope = np.random.uniform(size=(3, 4, 1))
    offset = np.random.uniform(size=(3, 4, 1))
    field = slope * t + offset

    assert np.allclose(detrend3(field, t), 0.0)

    wiggle = np.array([1.0, -1.0, 1.0, -1.0, 1.0, -1.0])
    out = detrend3(field + wiggle, t)
    resid = wiggle - np.polyval(np.polyfit(t, wiggle, 1), t)
    assert np.allclose(out, resid)

    with pytest.raises(ShapeMismatch):
        detrend3(field, t[:-1])


def test_detrend3_missing_values():
    """Gappy cells are NaN unless omitnan is set."""

    t = np.arange(8, dtype=float)
    field = np.broadcast_to(2.0 * t + 1.0, (2, 2, 8)).copy()
    field[0, 0, 3] = np.nan
    field[1, 1, :7] = np.nan

    out = detrend3(field)
    assert np.isnan(out[0, 0]).all()
    assert np.allclose(out[0, 1], 0.0)

    out = detrend3(field, omitnan=True)
    assert np.isnan(out[0, 0, 3])
    assert np.allclose(np.delete(out[0, 0], 3), 0.0)
    assert np.isnan(out[1, 1]).all()

    with pytest.raises(EmptyInput):
        detrend3(np.zeros((2, 2, 0)))


def test_getneofs():
    """Smallest number of leading modes reaching the target variance."""

    expvar = np.array([45.0, 20.0, 10.0, 5.0])

    assert getneofs(expvar, percent=40.0) == 1
    assert getneofs(expvar, percent=65.0) == 2
    assert getneofs(expvar, percent=70.0) == 3
    assert getneofs(expvar, percent=99.0) == 4

    with pytest.raises(InvalidArgument):
        getneofs([])


def test_cosine_weights():
    """sqrt(cos(lat)), zero at the poles."""

    da = xr.DataArray(np.zeros((3, 2)),
                      coords={'lat': [-90.0, 0.0, 60.0], 'lon': [0.0, 10.0]},
                      dims=['lat', 'lon'])

    w = cosine_weights(da)

    assert w.dims == ('lat',)
    assert np.allclose(w.values, [0.0, 1.0, np.sqrt(0.5)], atol=1e-8)

    with pytest.raises(KeyError):
        cosine_weights(xr.DataArray(np.zeros(3), dims=['x']))
