"""
climeof
=======
Empirical Orthogonal Function analysis for gridded climate data.

Quick start
-----------
>>> import climeof

# 1. Optional preprocessing: remove the linear trend
>>> sst = climeof.detrend3(sst)          # (lat × lon × time) ndarray

# 2. EOF analysis
>>> modes = climeof.decompose(sst, n_modes=3)
>>> modes.maps                           # (lat × lon × mode)
>>> modes.principal_components           # (mode × time)
>>> modes.variance_table()

# 3. Reconstruction from the leading modes
>>> anom = climeof.reconstruct(modes, [1, 2])

# Labelled data
>>> solver = climeof.EOF(sst_da, min_variance=70)
>>> solver.summary()
>>> eofs = solver.eofs()
>>> pcs  = solver.pcs()
"""

# ── Errors ────────────────────────────────────────────────────────────
from .errors import (
    ClimeofError,
    ShapeMismatch,
    InvalidArgument,
    EmptyInput,
    NumericDegenerate,
)

# ── Operations ────────────────────────────────────────────────────────
from .ops import (
    default_mask,
    cube2rect,
    rect2cube,
    expand3,
    detrend3,
    getneofs,
    cosine_weights,
)

# ── Analysis ──────────────────────────────────────────────────────────
from .analysis import (
    EOF,
    EOFModeSet,
    decompose,
    reconstruct,
)

__version__ = "0.1.0"

__all__ = [
    # Errors
    "ClimeofError", "ShapeMismatch", "InvalidArgument", "EmptyInput",
    "NumericDegenerate",
    # Ops
    "default_mask", "cube2rect", "rect2cube", "expand3",
    "detrend3", "getneofs", "cosine_weights",
    # Analysis
    "EOF", "EOFModeSet", "decompose", "reconstruct",
]
