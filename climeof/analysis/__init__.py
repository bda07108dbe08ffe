"""climeof.analysis — EOF decomposition and reconstruction."""

from .eof import EOF, EOFModeSet, decompose, reconstruct

__all__ = [
    "EOF",
    "EOFModeSet",
    "decompose",
    "reconstruct",
]
