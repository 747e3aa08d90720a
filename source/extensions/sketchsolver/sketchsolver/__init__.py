"""
sketchsolver: 2D parametric sketch constraint solving.

Entities (points, lines, circles, arcs) and the constraints between them go
in; a solved parameter assignment and a DOF diagnosis come out::

    from sketchsolver import ConstraintKind, Constraint, SketchEntity, solve

    p1 = SketchEntity.point(0, 0.0, 0.0, fixed=True)
    p2 = SketchEntity.point(1, 5.0, 3.0)
    result = solve([p1, p2], [Constraint(0, ConstraintKind.HORIZONTAL, (0, 1))])
"""

from .kernel import (
    CONSTRAINT_TABLE,
    Conflict,
    Constraint,
    ConstraintArityError,
    ConstraintKind,
    ConstraintSolver,
    DegenerateGeometryError,
    Derivative,
    DOFStatus,
    EntityKind,
    InvalidConstraintError,
    InvalidReferenceError,
    ParameterLayout,
    Severity,
    Sketch,
    SketchEntity,
    SketchSolverError,
    SolveOptions,
    SolveResult,
    Tolerances,
    infer_constraints,
    solve,
)
from .logger import set_debug
from .timeline import SketchRegistry

__version__ = "0.1.0"
