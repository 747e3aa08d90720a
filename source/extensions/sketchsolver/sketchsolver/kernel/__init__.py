from .constraint_solver import ConstraintSolver, SolveOptions, SolveResult, solve
from .constraints import CONSTRAINT_TABLE, Constraint, ConstraintKind, Derivative
from .diagnostics import Conflict, DOFStatus, Severity
from .entities import EntityKind, ParameterLayout, SketchEntity
from .errors import (
    ConstraintArityError,
    DegenerateGeometryError,
    InvalidConstraintError,
    InvalidReferenceError,
    SketchSolverError,
)
from .inference import infer_constraints
from .sketch import Sketch
from .tolerances import Tolerances
