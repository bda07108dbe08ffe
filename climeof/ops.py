"""
climeof.ops
===========
Array operations shared by the EOF engine.

Grids are stored as numpy arrays of shape (row, col, time).  Whenever a grid
is flattened, cells are visited in row-major (C) order: column k of the
flattened matrix is the k-th selected cell counted row by row.

Functions
---------
default_mask     — cells that are finite at every time step
cube2rect        — (row × col × time) field → (time × space) matrix
rect2cube        — (planes × space) matrix → (row × col × planes) field
expand3          — outer product of a 2-D map and a 1-D series
detrend3         — remove a linear trend along the time axis
getneofs         — number of EOFs explaining ≥ P% variance
cosine_weights   — sqrt(cos(lat)) weights for EOF analysis
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np
import xarray as xr
from scipy.linalg import lstsq

from climeof.errors import EmptyInput, InvalidArgument, ShapeMismatch

logger = logging.getLogger(__name__)


# ── Masks ─────────────────────────────────────────────────────────────

def _check_field(field) -> np.ndarray:
    field = np.asarray(field)
    if field.ndim != 3:
        raise ShapeMismatch(
            f"field must be 3-D (row × col × time), got shape {field.shape}."
        )
    return field


def _check_mask(mask, gridsize: tuple) -> np.ndarray:
    mask = np.asarray(mask)
    if mask.dtype != bool:
        raise InvalidArgument(f"mask must be boolean, got dtype {mask.dtype}.")
    if mask.shape != tuple(gridsize):
        raise ShapeMismatch(
            f"mask shape {mask.shape} does not match the grid size {tuple(gridsize)}."
        )
    return mask


def default_mask(field) -> np.ndarray:
    """Cells that are finite in every time slice.

    Parameters
    ----------
    field : array-like (row × col × time)

    Returns
    -------
    numpy.ndarray of bool, shape (row, col).
    """
    field = _check_field(field)
    return np.isfinite(field).all(axis=2)


# ── Reshaping ─────────────────────────────────────────────────────────

def cube2rect(field, mask=None) -> np.ndarray:
    """Reshape a (row × col × time) field into a (time × space) matrix.

    Parameters
    ----------
    field : array-like (R × C × T)
    mask  : bool array-like (R × C), optional — keep only True cells.

    Returns
    -------
    numpy.ndarray of shape (T, K), K = R*C or the number of True cells.
    Always a new array; writing to it leaves ``field`` untouched.

    Example
    -------
    >>> A = cube2rect(sst, mask=~land)
    >>> A.shape
    (480, 3125)
    """
    field = _check_field(field)
    rows, cols, nt = field.shape
    if mask is None:
        return field.reshape(rows * cols, nt).T.copy()
    mask = _check_mask(mask, (rows, cols))
    # Boolean selection on the spatial axes walks the grid in C order.
    return field[mask].T


def rect2cube(
    A2,
    mask=None,
    rows: Optional[int] = None,
    cols: Optional[int] = None,
) -> np.ndarray:
    """Inverse of ``cube2rect``.

    Parameters
    ----------
    A2   : array-like (P × K) — P planes (time steps, modes, ...).
    mask : bool array-like (R × C), optional — cells the K columns belong to.
           Cells outside the mask are NaN (False for boolean input).
    rows, cols : int — grid size.  Required without a mask; must agree with
           the mask when both are given.

    Returns
    -------
    numpy.ndarray of shape (R, C, P), never a view of ``A2``.
    """
    A2 = np.asarray(A2)
    if A2.ndim != 2:
        raise ShapeMismatch(f"A2 must be 2-D (planes × space), got shape {A2.shape}.")
    nplanes, ncells = A2.shape

    if mask is None:
        if rows is None or cols is None:
            raise InvalidArgument("rect2cube needs either a mask or both rows and cols.")
        if rows * cols != ncells:
            raise ShapeMismatch(
                f"Grid size {rows}×{cols} does not match the {ncells} columns of A2."
            )
        return A2.T.reshape(rows, cols, nplanes).copy()

    mask = np.asarray(mask)
    if mask.ndim != 2:
        raise ShapeMismatch(f"mask must be 2-D, got shape {mask.shape}.")
    gridsize = (
        rows if rows is not None else mask.shape[0],
        cols if cols is not None else mask.shape[1],
    )
    mask = _check_mask(mask, gridsize)
    if int(mask.sum()) != ncells:
        raise ShapeMismatch(
            f"mask has {int(mask.sum())} True cells but A2 has {ncells} columns."
        )

    if A2.dtype == bool:
        A3 = np.zeros(gridsize + (nplanes,), dtype=bool)
    else:
        A3 = np.full(gridsize + (nplanes,), np.nan,
                     dtype=np.result_type(A2.dtype, np.float64))
    A3[mask] = A2.T
    return A3


# ── Broadcasting ──────────────────────────────────────────────────────

def expand3(map2d, series) -> np.ndarray:
    """Outer product of a 2-D map and a time series.

    result[r, c, t] = map2d[r, c] * series[t].  NaNs propagate.

    Example
    -------
    >>> contribution = expand3(eof_maps[:, :, 0], pcs[0])
    """
    map2d = np.asarray(map2d)
    series = np.asarray(series)
    if map2d.ndim != 2:
        raise ShapeMismatch(f"map2d must be 2-D, got shape {map2d.shape}.")
    if sum(n > 1 for n in series.shape) > 1:
        raise ShapeMismatch(f"series must be a vector, got shape {series.shape}.")
    return map2d[:, :, np.newaxis] * series.reshape(1, 1, -1)


# ── Trend removal ─────────────────────────────────────────────────────

def detrend3(field, t=None, *, omitnan: bool = False) -> np.ndarray:
    """Remove the least-squares linear trend along the time axis.

    ``decompose`` only removes the time mean; call this first when the
    trend should not show up as a leading mode.

    Parameters
    ----------
    field   : array-like (R × C × T)
    t       : array-like (T,), optional — sample times (default 0..T-1).
              Need not be evenly spaced.
    omitnan : bool — if True, cells with some (but at least two finite)
              missing values are detrended using their finite samples only.
              Otherwise any cell containing a NaN comes back all-NaN.

    Returns
    -------
    numpy.ndarray (R × C × T), float.
    """
    field = _check_field(field).astype(np.float64)
    rows, cols, nt = field.shape
    if nt == 0:
        raise EmptyInput("field has no time steps.")

    if t is None:
        t = np.arange(nt, dtype=np.float64)
    else:
        t = np.asarray(t, dtype=np.float64).squeeze()
        if t.ndim != 1 or t.size != nt:
            raise ShapeMismatch(
                f"t must be a vector with {nt} elements, got shape {np.shape(t)}."
            )
    std = t.std()
    t = (t - t.mean()) / std if std > 0 else t - t.mean()
    G = np.column_stack([t, np.ones(nt)])

    finite = np.isfinite(field)
    if omitnan:
        mask = finite.sum(axis=2) > 1
    else:
        mask = finite.all(axis=2)

    A = cube2rect(field, mask)
    complete = finite[mask].all(axis=1)

    Ad = np.full_like(A, np.nan)
    if complete.any():
        coef = lstsq(G, A[:, complete])[0]
        Ad[:, complete] = A[:, complete] - G @ coef

    # Gappy cells (omitnan only): fit each on its own finite samples.
    for k in np.flatnonzero(~complete):
        ok = np.isfinite(A[:, k])
        coef = lstsq(G[ok], A[ok, k])[0]
        Ad[ok, k] = A[ok, k] - G[ok] @ coef

    logger.debug("detrend3: %d cells detrended (%d gappy)",
                 int(mask.sum()), int((~complete).sum()))
    return rect2cube(Ad, mask)


# ── EOF helpers ───────────────────────────────────────────────────────

def getneofs(explained_variance, percent: float = 70.0) -> int:
    """Return the minimum number of EOFs needed to explain >= percent% variance.

    Parameters
    ----------
    explained_variance : array-like — per-mode variance in percent,
                         leading mode first.
    percent            : float — target cumulative variance (default 70).

    Returns
    -------
    int, at most ``len(explained_variance)``.
    """
    expvar = np.asarray(explained_variance, dtype=np.float64)
    if expvar.ndim != 1 or expvar.size == 0:
        raise InvalidArgument("explained_variance must be a non-empty 1-D array.")
    cumvar = np.cumsum(np.nan_to_num(expvar))
    idx = int(np.searchsorted(cumvar, percent))
    return min(idx + 1, expvar.size)


def cosine_weights(da: xr.DataArray) -> xr.DataArray:
    """Return area weights proportional to sqrt(cos(lat)), suitable for EOF analysis.

    Parameters
    ----------
    da : xr.DataArray with a 'lat' coordinate.

    Returns
    -------
    xr.DataArray along 'lat'; broadcasts against any (lat, lon) layout.
    """
    if "lat" not in da.coords:
        raise KeyError("DataArray has no 'lat' coordinate; cannot build cosine weights.")
    coslat = np.cos(np.deg2rad(da["lat"])).clip(0.0, 1.0)
    return np.sqrt(coslat)
