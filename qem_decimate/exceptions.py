"""
Exceptions
==========

Error types raised by the decimation package.
"""


class QemDecimateError(Exception):
    """Base class for all decimation errors."""


class MeshBuildError(QemDecimateError, ValueError):
    """Raised when an input mesh cannot be turned into a connected mesh."""


class DecimationError(QemDecimateError, RuntimeError):
    """Raised when the decimator is driven with invalid targets or state."""
