"""
climeof.errors
==============
Exceptions and warnings raised by climeof.

All exceptions derive from ``ValueError`` so existing ``except ValueError``
handlers keep working.
"""


class ClimeofError(Exception):
    """Base class for climeof errors."""


class ShapeMismatch(ClimeofError, ValueError):
    """Two arrays that must share dimensions do not."""


class InvalidArgument(ClimeofError, ValueError):
    """A parameter is outside its documented domain."""


class EmptyInput(ClimeofError, ValueError):
    """No spatial cells or no time steps are left to analyse."""


class NumericDegenerate(RuntimeWarning):
    """The field carries no variance (all eigenvalues are zero)."""
