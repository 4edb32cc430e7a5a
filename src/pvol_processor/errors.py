"""
Exceptions raised while reading and indexing scan files.
"""
from pvol_grid.errors import InvariantViolation, MalformedScan


class ScanReadError(IOError):
    """A scan file could not be opened or is missing required attributes."""


__all__ = ["ScanReadError", "InvariantViolation", "MalformedScan"]
