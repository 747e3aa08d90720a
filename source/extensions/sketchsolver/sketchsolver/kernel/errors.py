"""
Exceptions raised by the sketch solver.

Only programmer errors are raised: bad references, malformed constraints
and degenerate input geometry.  A sketch that fails to converge is a normal
outcome and is reported through :class:`SolveResult` instead.
"""

from __future__ import annotations

from typing import Optional


class SketchSolverError(Exception):
    """Base class for all solver errors."""


class InvalidReferenceError(SketchSolverError):
    """A constraint names an entity that is not part of the input set."""

    def __init__(self, message: str, cid: Optional[int] = None, eid: Optional[int] = None):
        super().__init__(message)
        self.cid = cid
        self.eid = eid


class DegenerateGeometryError(SketchSolverError, ValueError):
    """An entity is degenerate (zero length / radius) where a constraint needs it not to be."""

    def __init__(self, message: str, eid: Optional[int] = None, cid: Optional[int] = None):
        super().__init__(message)
        self.eid = eid
        self.cid = cid


class InvalidConstraintError(SketchSolverError, ValueError):
    """A constraint is malformed: wrong entity kinds, selector, or target value."""

    def __init__(self, message: str, cid: Optional[int] = None):
        super().__init__(message)
        self.cid = cid


class ConstraintArityError(InvalidConstraintError):
    """A constraint references the wrong number of entities for its kind."""
