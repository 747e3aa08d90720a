"""
Solve diagnosis: DOF classification, structural conflicts and statistics.

Classification after a solve compares the numerical rank of the free-column
Jacobian with the number of equations *m* and free parameters *n*:

    converged, rank < n                  -> UNDER_CONSTRAINED
    converged, rank == n                 -> FULLY_CONSTRAINED  (m - rank redundant rows noted)
    failed, residual row with zero grad  -> NUMERICALLY_SINGULAR
    failed, least-squares stationary     -> OVER_CONSTRAINED
    failed, step underflow               -> NUMERICALLY_SINGULAR
    failed, iteration budget exhausted   -> INCONSISTENT

Structural conflicts are found from the constraint list alone, before any
numerics, and are reported alongside the result rather than raised.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Sequence, Tuple

import numpy as np

from .constraints import Constraint, ConstraintKind
from .entities import SketchEntity
from .numerics import numerical_rank
from .tolerances import Tolerances


class DOFStatus(Enum):
    FULLY_CONSTRAINED = "fully-constrained"
    UNDER_CONSTRAINED = "under-constrained"
    OVER_CONSTRAINED = "over-constrained"
    INCONSISTENT = "inconsistent"
    NUMERICALLY_SINGULAR = "numerically-singular"


class Severity(Enum):
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Conflict:
    """Constraints that cannot hold together, found before solving."""
    constraint_ids: Tuple[int, ...]
    message: str
    severity: Severity = Severity.ERROR
    suggestions: Tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "constraint_ids": list(self.constraint_ids),
            "message": self.message,
            "severity": self.severity.value,
            "suggestions": list(self.suggestions),
        }


@dataclass(frozen=True)
class Classification:
    status: DOFStatus
    rank: int
    remaining_dof: int
    redundant: int


# ---------------------------------------------------------------------------
# Structural analysis
# ---------------------------------------------------------------------------

def equation_count(constraints: Iterable[Constraint]) -> int:
    """Scalar equations contributed by the driving constraints."""
    return sum(c.rows for c in constraints if c.driving)


def dof_estimate(entities: Iterable[SketchEntity], constraints: Iterable[Constraint]) -> int:
    """Free parameters minus driving equations.  Negative when over-determined."""
    return sum(e.dof for e in entities) - equation_count(constraints)


def _same_entities(a: Constraint, b: Constraint) -> bool:
    return sorted(a.entity_ids) == sorted(b.entity_ids)


def find_conflicts(
    entities: Sequence[SketchEntity],
    constraints: Sequence[Constraint],
    value_tolerance: float = Tolerances.CONFLICT_VALUE_TOLERANCE,
) -> List[Conflict]:
    """
    Detect structurally contradictory constraints.

    - more driving equations than free parameters (warning)
    - PARALLEL and PERPENDICULAR on the same pair of lines
    - two dimensional constraints of one kind on the same target with
      different values
    """
    conflicts: List[Conflict] = []
    driving = [c for c in constraints if c.driving]

    dof = dof_estimate(entities, driving)
    if dof < 0:
        conflicts.append(Conflict(
            constraint_ids=(),
            message=f"Sketch is over-constrained (DOF: {dof})",
            severity=Severity.WARNING,
            suggestions=(
                "Remove redundant constraints",
                "Convert some dimensional constraints to reference dimensions",
            ),
        ))

    angular = (ConstraintKind.PARALLEL, ConstraintKind.PERPENDICULAR)
    for i, a in enumerate(driving):
        for b in driving[i + 1:]:
            if {a.kind, b.kind} == set(angular) and _same_entities(a, b):
                conflicts.append(Conflict(
                    constraint_ids=(a.cid, b.cid),
                    message="Lines cannot be both parallel and perpendicular",
                    suggestions=("Remove one of the conflicting constraints",),
                ))
            elif (
                a.dimensional
                and a.same_target(b)
                and abs(a.value - b.value) > value_tolerance
            ):
                conflicts.append(Conflict(
                    constraint_ids=(a.cid, b.cid),
                    message=(
                        f"Conflicting {a.kind.name} values {a.value:g} and {b.value:g} "
                        f"on the same entities"
                    ),
                    suggestions=(
                        "Remove one of the dimensions",
                        "Make one of them a reference dimension",
                    ),
                ))
    return conflicts


# ---------------------------------------------------------------------------
# Numerical classification
# ---------------------------------------------------------------------------

def classify(
    converged: bool,
    stalled: bool,
    F: np.ndarray,
    J_free: np.ndarray,
    tolerance: float,
    rank_tolerance: float,
    gradient_tolerance: float,
    zero_row: float,
) -> Classification:
    """Classify the final iterate of a solve (see the module docstring)."""
    m, n = J_free.shape
    rank = numerical_rank(J_free, rank_tolerance)
    remaining = n - rank
    redundant = m - rank

    if converged:
        status = DOFStatus.UNDER_CONSTRAINED if rank < n else DOFStatus.FULLY_CONSTRAINED
        return Classification(status, rank, remaining, redundant)

    if n > 0 and m > 0 and np.all(np.isfinite(F)):
        row_norms = np.linalg.norm(J_free, axis=1)
        if np.any((np.abs(F) > tolerance) & (row_norms <= zero_row)):
            return Classification(DOFStatus.NUMERICALLY_SINGULAR, rank, remaining, redundant)

    if n == 0:
        return Classification(DOFStatus.OVER_CONSTRAINED, rank, remaining, redundant)

    f_norm = float(np.linalg.norm(F)) if F.size else 0.0
    grad_norm = float(np.linalg.norm(J_free.T @ F)) if F.size else 0.0
    if math.isfinite(grad_norm) and grad_norm <= gradient_tolerance * max(1.0, f_norm) and rank < m:
        return Classification(DOFStatus.OVER_CONSTRAINED, rank, remaining, redundant)

    if stalled:
        return Classification(DOFStatus.NUMERICALLY_SINGULAR, rank, remaining, redundant)
    return Classification(DOFStatus.INCONSISTENT, rank, remaining, redundant)


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------

def residual_magnitude(value) -> float:
    """Norm of a per-constraint residual (float or tuple)."""
    if isinstance(value, tuple):
        return math.sqrt(sum(v * v for v in value))
    return abs(value)


def statistics(
    constraints: Sequence[Constraint],
    residuals: Mapping[int, object],
    conflicts: Sequence[Conflict],
    dof: int,
    tolerance: float,
) -> Dict[str, int]:
    satisfied = sum(
        1 for c in constraints
        if c.cid in residuals and residual_magnitude(residuals[c.cid]) < tolerance
    )
    return {
        "total_constraints": len(constraints),
        "satisfied_constraints": satisfied,
        "geometric_constraints": sum(1 for c in constraints if not c.dimensional),
        "dimensional_constraints": sum(1 for c in constraints if c.dimensional),
        "conflicts": len(conflicts),
        "degrees_of_freedom": dof,
    }
