"""
errors.py
~~~~~~~~~

Exception types raised by tilenet.
"""


class TilenetError(Exception):
    """Base class for all tilenet errors."""


class ContractViolation(TilenetError, ValueError):
    """
    The caller handed over something the library cannot accept.

    Raised for oversized tiles, pixel vectors of the wrong length,
    unreadable image arrays and invalid labels. These are programming or
    configuration errors upstream and are never retried.
    """


class SnapshotShapeError(ContractViolation):
    """A persisted network snapshot disagrees with its declared dimensions."""


class DecodeError(TilenetError, RuntimeError):
    """Network output could not be decoded into a character."""
