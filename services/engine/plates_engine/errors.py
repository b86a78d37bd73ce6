from __future__ import annotations


class PlatesEngineError(Exception):
    """Base class for every error raised by the engine."""


class GridConstructionError(PlatesEngineError):
    """Grid parameters are invalid. Fatal: no session can start."""


class SimulationError(PlatesEngineError):
    """A step could not complete deterministically. Fatal for the session."""


class InvariantViolation(PlatesEngineError):
    """Model state broke an ownership or monotonicity invariant."""


class AuthoringError(PlatesEngineError):
    """An authoring edit was refused. The session keeps running."""
