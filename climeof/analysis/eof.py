"""
climeof.analysis.eof
====================
Empirical Orthogonal Function (EOF) decomposition and reconstruction.

The numpy core works on fields shaped (row × col × time):

>>> from climeof.analysis import decompose, reconstruct
>>> modes = decompose(sst, n_modes=5)
>>> modes.maps.shape                  # (row × col × mode)
>>> modes.principal_components[0]     # PC 1
>>> modes.explained_variance          # percent per mode
>>> enso = reconstruct(modes, [1, 2]) # (row × col × time)

``EOF`` wraps the same engine for labelled data:

>>> solver = EOF(sst_anomalies, n_eofs=10)
>>> solver.summary()
>>> eofs = solver.eofs()          # xr.DataArray (mode × lat × lon)
>>> pcs  = solver.pcs()           # xr.DataArray (time × mode)
"""

from __future__ import annotations

import dataclasses
import logging
import warnings
from typing import Iterable, Optional, Union

import numpy as np
import pandas as pd
import xarray as xr
from scipy.linalg import eigh

from climeof.errors import EmptyInput, InvalidArgument, NumericDegenerate, ShapeMismatch
from climeof.ops import (
    _check_mask,
    cosine_weights,
    cube2rect,
    default_mask,
    expand3,
    getneofs,
    rect2cube,
)

logger = logging.getLogger(__name__)


# ── Result container ──────────────────────────────────────────────────

@dataclasses.dataclass(frozen=True, eq=False)
class EOFModeSet:
    """Output of ``decompose``.

    Attributes
    ----------
    maps : ndarray (row × col × mode)
        Unit-norm spatial patterns; NaN outside the analysis mask.
    principal_components : ndarray (mode × time)
        Projection of the mean-removed data onto each pattern.
    explained_variance : ndarray (mode,)
        Percent of the total variance carried by each mode.
    eigenvalues : ndarray (mode,)
        Covariance eigenvalues (Gram eigenvalues / (T - 1)).
    total_variance : float
        Sum of all covariance eigenvalues.
    """

    maps: np.ndarray
    principal_components: np.ndarray
    explained_variance: np.ndarray
    eigenvalues: np.ndarray
    total_variance: float

    @property
    def n_modes(self) -> int:
        return self.maps.shape[2]

    @property
    def shape(self) -> tuple:
        """Shape (row, col, time) of the decomposed field."""
        return self.maps.shape[:2] + (self.principal_components.shape[1],)

    def variance_table(self) -> pd.DataFrame:
        """Explained and cumulative variance (%) indexed by mode number."""
        return pd.DataFrame(
            {
                "variance": self.explained_variance,
                "cumulative": np.cumsum(self.explained_variance),
            },
            index=pd.RangeIndex(1, self.n_modes + 1, name="mode"),
        )


# ── Eigensolver ───────────────────────────────────────────────────────

def _is_integer(n) -> bool:
    return isinstance(n, (int, np.integer)) and not isinstance(n, (bool, np.bool_))


def _check_n_modes(n, nt: int) -> None:
    if not _is_integer(n):
        raise InvalidArgument(f"n_modes must be an integer, got {n!r}.")
    if not 1 <= n <= nt:
        raise InvalidArgument(
            f"n_modes must be between 1 and the number of time steps ({nt}), got {n}."
        )


def _covariance_eigs(A, n: int):
    """Leading n eigenpairs of the covariance of a (time × space) matrix.

    The temporal mean of each column is removed first.  Whichever Gram
    matrix is smaller is decomposed: A'A (space × space) when T >= K,
    otherwise AA' (time × time) with the spatial vectors recovered as
    A'U / sqrt(lambda).

    Returns
    -------
    V      : (K × n) unit-norm spatial eigenvectors, descending eigenvalue.
    pc     : (n × T) principal components.
    eigval : (n,) covariance eigenvalues.
    total  : float, sum of all covariance eigenvalues.
    """
    A = np.asarray(A, dtype=np.float64)
    if A.size == 0 or np.isnan(A).all():
        raise EmptyInput("observation matrix is empty or entirely NaN.")
    if not np.isfinite(A).all():
        raise InvalidArgument(
            "observation matrix contains non-finite values; "
            "mask out grid cells with missing data."
        )
    nt, ncells = A.shape
    _check_n_modes(n, nt)

    # Mean removal leaves rounding residue of order eps * |A|; anything in
    # the Gram trace below this floor is not signal.
    scale = float(np.abs(A).max())
    floor = ncells * nt * (nt * np.finfo(np.float64).eps * scale) ** 2

    A = A - A.mean(axis=0)
    ddof = nt - 1 if nt > 1 else 1

    total = float(np.sum(A * A))
    if total <= floor:
        logger.debug("eigensolver: total variance %.3g below noise floor %.3g",
                     total, floor)
        return np.zeros((ncells, n)), np.zeros((n, nt)), np.zeros(n), 0.0

    time_gram = nt < ncells
    R = A @ A.T if time_gram else A.T @ A
    size = R.shape[0]
    k = min(n, size)
    logger.debug("eigensolver: %s Gram matrix %d×%d, %d of %d modes",
                 "time" if time_gram else "space", size, size, k, n)

    lam, U = eigh(R, subset_by_index=[size - k, size - 1])
    lam = lam[::-1].copy()
    U = U[:, ::-1]
    # Negative eigenvalues of a PSD matrix are rounding noise.
    lam[lam < 0] = 0.0
    del R

    if time_gram:
        tol = max(lam.max() * size * np.finfo(np.float64).eps, floor)
        keep = lam > tol
        V = np.zeros((ncells, k))
        V[:, keep] = (A.T @ U[:, keep]) / np.sqrt(lam[keep])
        pc = V.T @ A.T
    else:
        V = np.ascontiguousarray(U)
        pc = (A @ V).T

    if k < n:
        # Fewer grid cells than requested modes: the rest carry no variance.
        V = np.hstack([V, np.zeros((ncells, n - k))])
        pc = np.vstack([pc, np.zeros((n - k, nt))])
        lam = np.concatenate([lam, np.zeros(n - k)])

    return V, pc, lam / ddof, total / ddof


# ── Public API ────────────────────────────────────────────────────────

def decompose(field, n_modes: Optional[int] = None, *, mask=None) -> EOFModeSet:
    """EOF analysis of a (row × col × time) field.

    Only the time mean of each grid cell is removed.  No linear trend is
    removed here; run ``climeof.detrend3`` first if that is wanted.

    Parameters
    ----------
    field   : array-like (R × C × T)
        NaN marks missing samples.
    n_modes : int, optional
        Number of leading modes to compute, 1 ≤ n_modes ≤ T (default T).
    mask    : bool array-like (R × C), optional
        Cells to analyse.  Default: cells that are finite at every step.

    Returns
    -------
    EOFModeSet

    Notes
    -----
    Signs are fixed so that every principal component starts non-negative.
    If the field has no variance at all a ``NumericDegenerate`` warning is
    issued and ``explained_variance`` is NaN.
    """
    field = np.asarray(field)
    if field.ndim != 3:
        raise ShapeMismatch(
            f"field must be 3-D (row × col × time), got shape {field.shape}."
        )
    if field.size == 0:
        raise EmptyInput(f"field has an empty axis: shape {field.shape}.")
    rows, cols, nt = field.shape

    if n_modes is None:
        n_modes = nt
    _check_n_modes(n_modes, nt)

    if mask is None:
        mask = default_mask(field)
    else:
        mask = _check_mask(mask, (rows, cols))
    if not mask.any():
        raise EmptyInput("mask selects no grid cells.")

    A = cube2rect(field, mask)
    V, pc, eigval, total = _covariance_eigs(A, n_modes)
    del A

    maps = rect2cube(V.T, mask)

    flip = pc[:, 0] < 0
    maps[:, :, flip] *= -1
    pc[flip] *= -1

    if total > 0:
        expvar = 100.0 * eigval / total
    else:
        warnings.warn(
            "field has zero variance; explained variance is undefined.",
            NumericDegenerate,
            stacklevel=2,
        )
        expvar = np.full(n_modes, np.nan)

    return EOFModeSet(
        maps=maps,
        principal_components=pc,
        explained_variance=expvar,
        eigenvalues=eigval,
        total_variance=total,
    )


def reconstruct(modeset: EOFModeSet, modes: Union[int, Iterable[int]]) -> np.ndarray:
    """Rebuild a (row × col × time) anomaly field from selected EOF modes.

    Parameters
    ----------
    modeset : EOFModeSet — output of ``decompose``.
    modes   : int or iterable of int — 1-based mode numbers.

    Returns
    -------
    numpy.ndarray (R × C × T).  Cells outside the analysis mask are NaN.

    Example
    -------
    >>> anom = reconstruct(decompose(sst), range(1, 4))
    """
    if isinstance(modes, np.ndarray) and modes.ndim == 0:
        modes = modes.item()
    if _is_integer(modes):
        modes = [modes]
    try:
        modes = list(modes)
    except TypeError:
        raise InvalidArgument(
            f"modes must be an integer or an iterable of integers, got {modes!r}."
        ) from None
    if not modes:
        raise InvalidArgument("modes must name at least one mode.")
    for m in modes:
        if not _is_integer(m):
            raise InvalidArgument(f"mode numbers must be integers, got {m!r}.")
        if not 1 <= m <= modeset.n_modes:
            raise InvalidArgument(
                f"mode {m} is out of range; {modeset.n_modes} modes are available."
            )

    maps = modeset.maps
    pcs = modeset.principal_components
    A = np.zeros(maps.shape[:2] + (pcs.shape[1],))
    for m in modes:
        A += expand3(maps[:, :, m - 1], pcs[m - 1])
    return A


# ── xarray front end ──────────────────────────────────────────────────

class EOF:
    """EOF (Principal Component) analysis of a labelled climate field.

    Wraps ``decompose`` with:
    - automatic detection of the time dimension
    - optional cosine-latitude area weighting
    - automatic selection of the number of modes (variance threshold)
    - clean xarray output

    Parameters
    ----------
    da : xr.DataArray
        Field with one time dimension and two spatial dimensions, in any
        order.  The time mean is removed internally.
    n_eofs : int, optional
        Number of EOFs to retain. If None, chosen automatically so that
        the cumulative explained variance ≥ ``min_variance``.
    min_variance : float
        Minimum cumulative explained variance (%) used when n_eofs is None.
        Default 70.
    lat_weights : bool
        If True, weight by sqrt(cos(lat)) before the decomposition.  Maps are
        divided by the weights afterwards, so ``reconstruct`` returns data in
        the original units.  Default False.
    time_dim : str, optional
        Name of the time dimension (default: 'time' or 'year').
    mask : xr.DataArray or bool ndarray, optional
        Cells to analyse, over the two spatial dimensions.

    Attributes
    ----------
    n_eofs : int
        Number of retained EOFs.
    modeset : EOFModeSet
        The underlying decomposition.
    """

    def __init__(
        self,
        da: xr.DataArray,
        n_eofs: Optional[int] = None,
        min_variance: float = 70.0,
        lat_weights: bool = False,
        time_dim: Optional[str] = None,
        mask=None,
    ):
        if da.ndim != 3:
            raise ShapeMismatch(
                f"da must have one time and two spatial dimensions, got {da.dims}."
            )
        self._da = da

        if time_dim is None:
            if "time" in da.dims:
                time_dim = "time"
            elif "year" in da.dims:
                time_dim = "year"
            else:
                raise ValueError("No time dimension found ('time' or 'year'); pass time_dim.")
        elif time_dim not in da.dims:
            raise ValueError(f"time_dim '{time_dim}' is not a dimension of da {da.dims}.")
        self._time_dim = time_dim
        self._space_dims = tuple(d for d in da.dims if d != time_dim)

        cube = da.transpose(*self._space_dims, time_dim)
        self._cube = cube
        values = np.asarray(cube.values, dtype=np.float64)
        gridsize = values.shape[:2]

        if mask is not None:
            if isinstance(mask, xr.DataArray):
                mask = mask.transpose(*self._space_dims).values
            mask = _check_mask(mask, gridsize)

        weights = None
        if lat_weights:
            template = cube.isel({time_dim: 0}, drop=True)
            weights = (cosine_weights(da).broadcast_like(template)
                       .transpose(*self._space_dims).values)
            values = values * weights[..., np.newaxis]
            if mask is None:
                mask = default_mask(values)
            mask = mask & (weights > 0)

        modeset = decompose(values, n_eofs, mask=mask)
        if weights is not None:
            divisor = np.where(weights > 0, weights, np.nan)[..., np.newaxis]
            modeset = dataclasses.replace(modeset, maps=modeset.maps / divisor)
        self.modeset = modeset

        if n_eofs is None:
            self.n_eofs = getneofs(modeset.explained_variance, percent=min_variance)
        else:
            self.n_eofs = n_eofs
        logger.debug("EOF: %d modes retained of %d computed",
                     self.n_eofs, modeset.n_modes)

    # ── Coordinate helpers ────────────────────────────────────────────

    def _modes(self, n: int) -> np.ndarray:
        return np.arange(1, n + 1)

    def _space_coords(self) -> dict:
        return {d: self._cube[d].values for d in self._space_dims
                if d in self._cube.coords}

    def _ncheck(self, n: Optional[int]) -> int:
        if n is None:
            n = self.n_eofs
        if not _is_integer(n) or not 1 <= n <= self.modeset.n_modes:
            raise InvalidArgument(
                f"n must be between 1 and {self.modeset.n_modes}, got {n}."
            )
        return n

    # ── Main outputs ──────────────────────────────────────────────────

    def eofs(self, n: Optional[int] = None) -> xr.DataArray:
        """Return spatial EOF patterns.

        Parameters
        ----------
        n : int, optional
            Number of EOFs (default: self.n_eofs).

        Returns
        -------
        xr.DataArray (mode × space × space), NaN outside the mask.
        """
        n = self._ncheck(n)
        maps = np.moveaxis(self.modeset.maps[:, :, :n], 2, 0)
        return xr.DataArray(
            maps,
            coords={"mode": self._modes(n), **self._space_coords()},
            dims=("mode",) + self._space_dims,
            name="eofs",
        )

    def pcs(self, n: Optional[int] = None) -> xr.DataArray:
        """Return principal component time series.

        Returns
        -------
        xr.DataArray (time × mode)
        """
        n = self._ncheck(n)
        return xr.DataArray(
            self.modeset.principal_components[:n].T,
            coords={self._time_dim: self._cube[self._time_dim].values,
                    "mode": self._modes(n)},
            dims=(self._time_dim, "mode"),
            name="pcs",
        )

    def variance_fraction(self, n: Optional[int] = None) -> xr.DataArray:
        """Explained variance fraction (%) for each EOF.

        Returns
        -------
        xr.DataArray (mode,) in percent.
        """
        n = self._ncheck(n)
        return xr.DataArray(
            self.modeset.explained_variance[:n],
            coords={"mode": self._modes(n)},
            dims=("mode",),
            name="variance_fraction",
        )

    def total_variance(self) -> float:
        """Total anomaly variance of the (weighted) input field."""
        return float(self.modeset.total_variance)

    def reconstruct(self, modes: Union[int, Iterable[int]]) -> xr.DataArray:
        """Field rebuilt from the given 1-based modes, in the input's layout."""
        values = reconstruct(self.modeset, modes)
        rec = xr.DataArray(
            values,
            coords=self._cube.coords,
            dims=self._space_dims + (self._time_dim,),
            name=self._da.name,
            attrs={**self._da.attrs, "description": "EOF reconstruction"},
        )
        return rec.transpose(*self._da.dims)

    # ── Summary ───────────────────────────────────────────────────────

    def summary(self) -> str:
        """Print a table of EOF modes, explained variance, and cumulative variance."""
        table = self.modeset.variance_table().iloc[:self.n_eofs]
        lines = [
            f"{'Mode':>6}  {'Var (%)':>9}  {'Cum. var (%)':>13}",
            "-" * 34,
        ]
        for mode, row in table.iterrows():
            lines.append(f"{mode:>6}  {row['variance']:>9.2f}  {row['cumulative']:>13.2f}")
        lines.append("-" * 34)
        lines.append(f"Total anomaly variance: {self.total_variance():.4f}")
        result = "\n".join(lines)
        print(result)
        return result
