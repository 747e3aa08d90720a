"""
2D Geometric Constraint Solver: damped Gauss-Newton over a flat parameter vector.

Architecture
------------
* Entities are flattened into one ``float64`` vector; each owns a fixed,
  contiguous slice (:class:`~.entities.ParameterLayout`).  Fixed entities
  keep their slice but drop out of the free columns.
* Each constraint is compiled into a residual block
  (:mod:`.residuals`).  Closed-form gradients are used where the kind has
  one, central differences otherwise.
* Each iteration solves ``J·Δ ≈ -F`` in the minimum-norm least-squares
  sense (SVD, ``scipy.linalg.lstsq`` / ``gelsd``) and backtracks
  ``α ← α·damping`` until the residual norm strictly decreases.
* After the loop the free-column Jacobian rank is compared with the
  equation and parameter counts to classify the sketch
  (:mod:`.diagnostics`).

The solver is a pure function of its inputs: entities and constraints are
never mutated, and every call returns a fresh :class:`SolveResult`.  No
state is shared between calls, so independent sketches may be solved on
separate threads.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from ..logger import logger
from .constraints import Constraint
from .diagnostics import (
    Conflict,
    DOFStatus,
    classify,
    dof_estimate,
    find_conflicts,
    residual_magnitude,
    statistics,
)
from .entities import ParameterLayout, SketchEntity
from .errors import InvalidConstraintError
from .numerics import least_squares_step, residual_norm
from .residuals import ResidualSystem, compile_constraint
from .tolerances import Tolerances


@dataclass(frozen=True)
class SolveOptions:
    """Iteration limits and tolerances for one solve."""
    max_iterations: int = Tolerances.SOLVER_MAX_ITERATIONS
    # Absolute tolerance on the residual 2-norm
    tolerance: float = Tolerances.SOLVER_TOLERANCE
    # Line-search shrink factor, in (0, 1)
    damping_factor: float = Tolerances.SOLVER_DAMPING
    min_step: float = Tolerances.SOLVER_MIN_STEP
    rank_tolerance: float = Tolerances.JACOBIAN_RANK_TOLERANCE
    fd_step: float = Tolerances.JACOBIAN_FD_STEP
    gradient_tolerance: float = Tolerances.JACOBIAN_GRADIENT_TOLERANCE

    def __post_init__(self):
        if int(self.max_iterations) != self.max_iterations or self.max_iterations < 0:
            raise ValueError(f"max_iterations must be a non-negative integer, got {self.max_iterations}")
        if not 0.0 < self.damping_factor < 1.0:
            raise ValueError(f"damping_factor must be in (0, 1), got {self.damping_factor}")
        for name in ("tolerance", "min_step", "rank_tolerance", "fd_step", "gradient_tolerance"):
            value = getattr(self, name)
            if not value > 0.0:
                raise ValueError(f"{name} must be positive, got {value}")
        object.__setattr__(self, "max_iterations", int(self.max_iterations))

    def replace(self, **changes) -> "SolveOptions":
        return dataclasses.replace(self, **changes)

    def to_dict(self) -> dict:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "SolveOptions":
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = set(d) - known
        if unknown:
            raise ValueError(f"Unknown solve options: {sorted(unknown)}")
        return cls(**d)


@dataclass(frozen=True)
class SolveResult:
    """Immutable outcome of one :meth:`ConstraintSolver.solve` call."""
    success: bool
    # Solved vector, or the last accepted iterate on failure
    parameters: Tuple[float, ...]
    iterations: int
    residual_norm: float
    # cid -> float (one-row kinds) or tuple (multi-row kinds)
    constraint_residuals: Mapping[int, object]
    diagnosis: DOFStatus
    rank: int = 0
    equations: int = 0
    free_parameters: int = 0
    remaining_dof: int = 0
    redundant: int = 0
    conflicts: Tuple[Conflict, ...] = ()
    layout: ParameterLayout = field(default_factory=ParameterLayout)
    statistics: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))
    # Residual-norm tolerance the solve ran with
    tolerance: float = Tolerances.SOLVER_TOLERANCE

    def entity_params(self, eid: int) -> Tuple[float, ...]:
        """Solved parameters of one entity."""
        return self.parameters[self.layout.slice_of(eid)]

    def apply(self, entities: Iterable[SketchEntity]) -> List[SketchEntity]:
        """New entities carrying the solved parameters; the inputs are untouched."""
        out = []
        for e in entities:
            if e.eid in self.layout:
                out.append(e.with_params(self.entity_params(e.eid)))
            else:
                out.append(e)
        return out

    def unsatisfied(self, tolerance: Optional[float] = None) -> List[int]:
        """
        Constraint ids whose residual magnitude is at least *tolerance*.

        Defaults to the tolerance the solve itself used.
        """
        tol = self.tolerance if tolerance is None else tolerance
        return [
            cid for cid, value in self.constraint_residuals.items()
            if not residual_magnitude(value) < tol
        ]

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "parameters": list(self.parameters),
            "iterations": self.iterations,
            "residual_norm": self.residual_norm,
            "constraint_residuals": {
                str(cid): list(v) if isinstance(v, tuple) else v
                for cid, v in self.constraint_residuals.items()
            },
            "diagnosis": self.diagnosis.value,
            "rank": self.rank,
            "equations": self.equations,
            "free_parameters": self.free_parameters,
            "remaining_dof": self.remaining_dof,
            "redundant": self.redundant,
            "conflicts": [c.to_dict() for c in self.conflicts],
            "layout": self.layout.to_dict(),
            "statistics": dict(self.statistics),
            "tolerance": self.tolerance,
        }


class ConstraintSolver:
    """
    Stateless solver front end.

    Usage::

        solver = ConstraintSolver()
        result = solver.solve(entities, constraints)
        if result.success:
            entities = result.apply(entities)
    """

    def __init__(self, options: Optional[SolveOptions] = None):
        self.options = options or SolveOptions()

    def solve(
        self,
        entities: Sequence[SketchEntity],
        constraints: Sequence[Constraint],
        options: Optional[SolveOptions] = None,
    ) -> SolveResult:
        """
        Solve *constraints* over *entities*, starting from their current values.

        Non-convergence is reported through ``SolveResult.diagnosis``, never
        raised.

        Raises:
            InvalidReferenceError: a constraint names a missing entity, or
                two entities share an id.
            InvalidConstraintError: malformed constraint (kind, selector,
                value, arity, duplicate id).
            DegenerateGeometryError: referenced geometry is degenerate in
                the initial guess.
        """
        opts = options or self.options
        entities = list(entities)
        constraints = list(constraints)

        layout = ParameterLayout.build(entities)
        by_id: Dict[int, SketchEntity] = {e.eid: e for e in entities}
        p = layout.flatten(entities)

        seen = set()
        for c in constraints:
            if c.cid in seen:
                raise InvalidConstraintError(f"Duplicate constraint id {c.cid}", cid=c.cid)
            seen.add(c.cid)

        blocks = [compile_constraint(c, by_id, layout, p) for c in constraints]
        system = ResidualSystem(
            [b for b in blocks if b.constraint.driving], layout.size, opts.fd_step,
        )
        free = layout.free_mask(entities)
        n_free = int(np.count_nonzero(free))

        conflicts = find_conflicts(entities, constraints)
        for conflict in conflicts:
            logger.warning(f"Constraint conflict {list(conflict.constraint_ids)}: {conflict.message}")

        F = system.residuals(p)
        norm = residual_norm(F)
        iterations = 0
        stalled = False

        while norm >= opts.tolerance and iterations < opts.max_iterations:
            J = system.jacobian(p)[:, free]
            dx = least_squares_step(J, F, opts.rank_tolerance)

            # Stalled only when no step length along dx lowers |F|
            alpha = 1.0
            while alpha >= opts.min_step:
                trial = p.copy()
                trial[free] += alpha * dx
                F_trial = system.residuals(trial)
                trial_norm = residual_norm(F_trial)
                if trial_norm < norm:
                    break
                alpha *= opts.damping_factor
            else:
                stalled = True
                break

            p, F, norm = trial, F_trial, trial_norm
            iterations += 1
            logger.debug(f"iteration {iterations}: |F| = {norm:.3e} (alpha = {alpha:g})")

        converged = norm < opts.tolerance
        J_free = system.jacobian(p)[:, free]
        verdict = classify(
            converged,
            stalled,
            F,
            J_free,
            opts.tolerance,
            opts.rank_tolerance,
            opts.gradient_tolerance,
            Tolerances.JACOBIAN_ZERO_ROW,
        )

        reporting = ResidualSystem(blocks, layout.size, opts.fd_step)
        residuals = reporting.per_constraint(p)
        dof = dof_estimate(entities, constraints)

        if converged:
            logger.info(
                f"Solved {len(constraints)} constraints in {iterations} iterations: "
                f"{verdict.status.value} (|F| = {norm:.3e}, remaining DOF {verdict.remaining_dof})"
            )
        else:
            logger.warning(
                f"Solve did not converge after {iterations} iterations: "
                f"{verdict.status.value} (|F| = {norm:.3e})"
            )

        return SolveResult(
            success=converged,
            parameters=tuple(float(v) for v in p),
            iterations=iterations,
            residual_norm=norm,
            constraint_residuals=MappingProxyType(residuals),
            diagnosis=verdict.status,
            rank=verdict.rank,
            equations=system.rows,
            free_parameters=n_free,
            remaining_dof=verdict.remaining_dof,
            redundant=verdict.redundant,
            conflicts=tuple(conflicts),
            layout=layout,
            statistics=MappingProxyType(
                statistics(constraints, residuals, conflicts, dof, opts.tolerance)
            ),
            tolerance=opts.tolerance,
        )


def solve(
    entities: Sequence[SketchEntity],
    constraints: Sequence[Constraint],
    options: Optional[SolveOptions] = None,
) -> SolveResult:
    """Module-level convenience for ``ConstraintSolver().solve(...)``."""
    return ConstraintSolver(options).solve(entities, constraints)
