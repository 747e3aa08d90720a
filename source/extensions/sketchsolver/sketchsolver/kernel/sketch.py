"""
2D Sketch module: the editor-side owner of entities and constraints.

A Sketch collects geometry (points, lines, circles, arcs) and the
constraints between them.  Between solves it is freely editable; a call to
:meth:`Sketch.solve` hands an immutable snapshot to the
:class:`~.constraint_solver.ConstraintSolver` and copies the solved
parameters back only when the solve succeeded, so a failed edit never
leaves the sketch half-moved.

Constraint integration
----------------------
``constrain_*`` helpers mirror the constraint vocabulary.  Angles are given
in degrees here and stored in radians on the constraint.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from ..logger import logger
from .constraint_solver import ConstraintSolver, SolveOptions, SolveResult
from .constraints import Constraint, ConstraintKind
from .diagnostics import dof_estimate
from .entities import EntityKind, SketchEntity
from .errors import DegenerateGeometryError, InvalidReferenceError
from .inference import infer_constraints
from .tolerances import Tolerances


def _arc_from_3pts(
    sx: float, sy: float,
    mx: float, my: float,
    ex: float, ey: float,
) -> Tuple[float, float, float, float, float]:
    """
    Compute (center_x, center_y, radius, start_angle, end_angle) of the arc
    from (sx, sy) through (mx, my) to (ex, ey).

    The end angle is unwrapped so the sweep from start to end passes the
    middle point: positive sweep is counter-clockwise, negative clockwise.
    """
    D = 2.0 * (sx * (my - ey) + mx * (ey - sy) + ex * (sy - my))
    if abs(D) < Tolerances.GEOMETRY_EPSILON:
        raise DegenerateGeometryError("Arc points are collinear")
    s2 = sx * sx + sy * sy
    m2 = mx * mx + my * my
    e2 = ex * ex + ey * ey
    ux = (s2 * (my - ey) + m2 * (ey - sy) + e2 * (sy - my)) / D
    uy = (s2 * (ex - mx) + m2 * (sx - ex) + e2 * (mx - sx)) / D
    r = math.hypot(sx - ux, sy - uy)
    sa = math.atan2(sy - uy, sx - ux)
    ma = math.atan2(my - uy, mx - ux)
    ea = math.atan2(ey - uy, ex - ux)
    two_pi = 2.0 * math.pi
    sweep = (ea - sa) % two_pi
    if (ma - sa) % two_pi <= sweep:
        return ux, uy, r, sa, sa + sweep
    return ux, uy, r, sa, sa - (two_pi - sweep)


@dataclass
class Sketch:
    """
    A 2D sketch: entities by id plus an ordered constraint list.

    Entity and constraint ids are allocated by the sketch and never reused,
    so saved references stay valid across edits.
    """
    name: str = "Sketch"
    entities: Dict[int, SketchEntity] = field(default_factory=dict)
    constraints: List[Constraint] = field(default_factory=list)
    solver: ConstraintSolver = field(default_factory=ConstraintSolver, repr=False)
    # Outcome of the most recent solve or drag
    last_result: Optional[SolveResult] = field(default=None, repr=False)
    _next_eid: int = field(default=0, repr=False)
    _next_cid: int = field(default=0, repr=False)

    # -- Entities ------------------------------------------------------------

    def _add(self, kind: EntityKind, params: Sequence[float], fixed: bool) -> int:
        eid = self._next_eid
        self.entities[eid] = SketchEntity(eid, kind, tuple(params), fixed)
        self._next_eid += 1
        return eid

    def add_point(self, x: float = 0.0, y: float = 0.0, fixed: bool = False) -> int:
        """Add a point entity. Returns the entity id."""
        return self._add(EntityKind.POINT, (x, y), fixed)

    def add_line(
        self,
        start: Tuple[float, float],
        end: Tuple[float, float],
        fixed: bool = False,
    ) -> int:
        return self._add(EntityKind.LINE, (start[0], start[1], end[0], end[1]), fixed)

    def add_circle(
        self,
        center: Tuple[float, float] = (0.0, 0.0),
        radius: float = 1.0,
        fixed: bool = False,
    ) -> int:
        return self._add(EntityKind.CIRCLE, (center[0], center[1], radius), fixed)

    def add_arc(
        self,
        center: Tuple[float, float],
        radius: float,
        start_angle: float,
        end_angle: float,
        fixed: bool = False,
    ) -> int:
        """Add an arc; angles in radians."""
        return self._add(EntityKind.ARC, (center[0], center[1], radius, start_angle, end_angle), fixed)

    def add_arc_3pt(
        self,
        start: Tuple[float, float],
        mid: Tuple[float, float],
        end: Tuple[float, float],
        fixed: bool = False,
    ) -> int:
        """Add the arc through three points.  Collinear points raise DegenerateGeometryError."""
        cx, cy, r, sa, ea = _arc_from_3pts(start[0], start[1], mid[0], mid[1], end[0], end[1])
        return self._add(EntityKind.ARC, (cx, cy, r, sa, ea), fixed)

    def entity(self, eid: int) -> SketchEntity:
        try:
            return self.entities[eid]
        except KeyError:
            raise InvalidReferenceError(f"Sketch {self.name!r} has no entity {eid}", eid=eid) from None

    def set_params(self, eid: int, params: Sequence[float]):
        self.entities[eid] = self.entity(eid).with_params(params)

    def fix(self, eid: int):
        """Lock an entity so the solver won't move it."""
        self.entities[eid] = self.entity(eid).with_fixed(True)

    def unfix(self, eid: int):
        self.entities[eid] = self.entity(eid).with_fixed(False)

    def remove_entity(self, eid: int) -> List[Constraint]:
        """
        Remove an entity and every constraint that references it.

        Returns the removed constraints.
        """
        self.entity(eid)
        del self.entities[eid]
        removed = [c for c in self.constraints if eid in c.entity_ids]
        self.constraints = [c for c in self.constraints if eid not in c.entity_ids]
        if removed:
            logger.debug(f"Removed entity {eid} and {len(removed)} dependent constraints")
        return removed

    # -- Constraints ---------------------------------------------------------

    def add_constraint(
        self,
        kind: ConstraintKind,
        entity_ids: Sequence[int],
        value: Optional[float] = None,
        selectors: Sequence[str] = (),
        driving: bool = True,
    ) -> int:
        """
        Add a constraint.

        Args:
            kind: Constraint kind.
            entity_ids: Entity ids referenced by this constraint.
            value: Target value for dimensional kinds (angles in radians).
            selectors: Point selectors per entity
                       (e.g. ``("end", "start")`` for coincident line endpoints).
            driving: ``True`` for driving constraints, ``False`` for reference.

        Returns:
            Constraint id.
        """
        c = Constraint(self._next_cid, kind, tuple(entity_ids), value, tuple(selectors), driving)
        c.validate()
        for eid in c.entity_ids:
            if eid not in self.entities:
                raise InvalidReferenceError(
                    f"Constraint on missing entity {eid} in sketch {self.name!r}",
                    cid=c.cid, eid=eid,
                )
        self.constraints.append(c)
        self._next_cid += 1
        return c.cid

    def constraint(self, cid: int) -> Constraint:
        for c in self.constraints:
            if c.cid == cid:
                return c
        raise InvalidReferenceError(f"Sketch {self.name!r} has no constraint {cid}", cid=cid)

    def update_constraint(self, cid: int, value: float) -> Constraint:
        """Change a dimensional target.  ANGLE values are in degrees."""
        old = self.constraint(cid)
        if old.kind == ConstraintKind.ANGLE:
            value = math.radians(value)
        new = old.with_value(value)
        new.validate()
        self.constraints = [new if c.cid == cid else c for c in self.constraints]
        return new

    def remove_constraint(self, cid: int) -> Optional[Constraint]:
        """Remove a constraint by id; returns it, or ``None`` if absent."""
        for i, c in enumerate(self.constraints):
            if c.cid == cid:
                return self.constraints.pop(i)
        return None

    def clear_constraints(self):
        self.constraints.clear()

    # -- Convenience constraint helpers -------------------------------------

    def constrain_coincident(self, eid_a: int, eid_b: int, sel_a: str = "", sel_b: str = "") -> int:
        """Two points / sub-elements coincide."""
        return self.add_constraint(ConstraintKind.COINCIDENT, (eid_a, eid_b), selectors=(sel_a, sel_b))

    def constrain_horizontal(self, eid_a: int, eid_b: Optional[int] = None,
                             sel_a: str = "", sel_b: str = "") -> int:
        """A line is horizontal, or two points share a y coordinate."""
        if eid_b is None:
            return self.add_constraint(ConstraintKind.HORIZONTAL, (eid_a,))
        return self.add_constraint(ConstraintKind.HORIZONTAL, (eid_a, eid_b), selectors=(sel_a, sel_b))

    def constrain_vertical(self, eid_a: int, eid_b: Optional[int] = None,
                           sel_a: str = "", sel_b: str = "") -> int:
        if eid_b is None:
            return self.add_constraint(ConstraintKind.VERTICAL, (eid_a,))
        return self.add_constraint(ConstraintKind.VERTICAL, (eid_a, eid_b), selectors=(sel_a, sel_b))

    def constrain_distance(self, eid_a: int, eid_b: int, dist: float,
                           sel_a: str = "", sel_b: str = "") -> int:
        """Distance between two points, or from a point to a line."""
        return self.add_constraint(
            ConstraintKind.DISTANCE, (eid_a, eid_b), value=dist, selectors=(sel_a, sel_b),
        )

    def constrain_horizontal_distance(self, eid_a: int, eid_b: int, dist: float,
                                      sel_a: str = "", sel_b: str = "") -> int:
        """Signed x offset from point a to point b."""
        return self.add_constraint(
            ConstraintKind.HORIZONTAL_DISTANCE, (eid_a, eid_b), value=dist, selectors=(sel_a, sel_b),
        )

    def constrain_vertical_distance(self, eid_a: int, eid_b: int, dist: float,
                                    sel_a: str = "", sel_b: str = "") -> int:
        return self.add_constraint(
            ConstraintKind.VERTICAL_DISTANCE, (eid_a, eid_b), value=dist, selectors=(sel_a, sel_b),
        )

    def constrain_angle(self, line_a: int, line_b: int, angle_deg: float) -> int:
        """Counter-clockwise angle from line a to line b, in degrees."""
        return self.add_constraint(ConstraintKind.ANGLE, (line_a, line_b), value=math.radians(angle_deg))

    def constrain_perpendicular(self, line_a: int, line_b: int) -> int:
        return self.add_constraint(ConstraintKind.PERPENDICULAR, (line_a, line_b))

    def constrain_parallel(self, line_a: int, line_b: int) -> int:
        return self.add_constraint(ConstraintKind.PARALLEL, (line_a, line_b))

    def constrain_collinear(self, line_a: int, line_b: int) -> int:
        return self.add_constraint(ConstraintKind.COLLINEAR, (line_a, line_b))

    def constrain_equal(self, eid_a: int, eid_b: int) -> int:
        """Equal length (two lines) or equal radius (two circles / arcs)."""
        return self.add_constraint(ConstraintKind.EQUAL, (eid_a, eid_b))

    def constrain_tangent(self, eid_a: int, eid_b: int) -> int:
        """Line tangent to a curve, or two curves tangent."""
        return self.add_constraint(ConstraintKind.TANGENT, (eid_a, eid_b))

    def constrain_concentric(self, curve_a: int, curve_b: int) -> int:
        return self.add_constraint(ConstraintKind.CONCENTRIC, (curve_a, curve_b))

    def constrain_radius(self, curve_eid: int, radius: float) -> int:
        return self.add_constraint(ConstraintKind.RADIUS, (curve_eid,), value=radius)

    def constrain_diameter(self, curve_eid: int, diameter: float) -> int:
        return self.add_constraint(ConstraintKind.DIAMETER, (curve_eid,), value=diameter)

    def constrain_length(self, line_eid: int, length: float) -> int:
        return self.add_constraint(ConstraintKind.LENGTH, (line_eid,), value=length)

    def constrain_point_on_line(self, point_eid: int, line_eid: int, sel: str = "") -> int:
        return self.add_constraint(ConstraintKind.POINT_ON_LINE, (point_eid, line_eid), selectors=(sel, ""))

    def constrain_midpoint(self, point_eid: int, line_eid: int, sel: str = "") -> int:
        """Point at the midpoint of a line."""
        return self.add_constraint(ConstraintKind.MIDPOINT, (point_eid, line_eid), selectors=(sel, ""))

    def constrain_symmetric(self, eid_a: int, eid_b: int, line_eid: int,
                            sel_a: str = "", sel_b: str = "") -> int:
        """Two points symmetric about a line."""
        return self.add_constraint(
            ConstraintKind.SYMMETRIC, (eid_a, eid_b, line_eid), selectors=(sel_a, sel_b, ""),
        )

    # -- Solving -------------------------------------------------------------

    def solve(self, options: Optional[SolveOptions] = None) -> SolveResult:
        """
        Solve all constraints.

        On success the solved parameters are written back onto the sketch's
        entities; on failure the sketch is left as it was.
        """
        snapshot = list(self.entities.values())
        result = self.solver.solve(snapshot, self.constraints, options)
        if result.success:
            for e in result.apply(snapshot):
                self.entities[e.eid] = e
        self.last_result = result
        return result

    def drag(self, eid: int, x: float, y: float, selector: str = "") -> SolveResult:
        """
        Drag a point (or a line endpoint / curve center) toward (x, y) and re-solve.

        The target is only the initial guess; it adds no constraint, so it
        never conflicts.  The solve runs with a small iteration budget and
        the sketch reverts to its previous state if it fails.
        """
        e = self.entity(eid)
        if e.fixed:
            raise ValueError(f"Entity {eid} is fixed and cannot be dragged")
        params = list(e.params)
        if e.kind == EntityKind.LINE:
            if selector not in ("start", "end"):
                raise ValueError("Dragging a line needs selector 'start' or 'end'")
            i = 0 if selector == "start" else 2
            params[i], params[i + 1] = x, y
        else:
            if selector not in ("", "center"):
                raise ValueError(f"Cannot drag {e.kind.name} selector {selector!r}")
            params[0], params[1] = x, y

        before = dict(self.entities)
        self.entities[eid] = e.with_params(params)
        budget = self.solver.options.replace(max_iterations=Tolerances.DRAG_MAX_ITERATIONS)
        try:
            result = self.solve(budget)
        except Exception:
            self.entities = before
            raise
        if not result.success:
            self.entities = before
        return result

    def infer_constraints(self, apply: bool = True) -> List[Constraint]:
        """
        Detect constraints the geometry nearly satisfies.

        With *apply*, the new constraints are added to the sketch.
        """
        found = infer_constraints(list(self.entities.values()), self.constraints, self._next_cid)
        if apply and found:
            self.constraints.extend(found)
            self._next_cid = found[-1].cid + 1
        return found

    @property
    def constraint_count(self) -> int:
        return len(self.constraints)

    @property
    def dof(self) -> int:
        """Approximate remaining degrees of freedom."""
        return max(0, dof_estimate(self.entities.values(), self.constraints))

    # -- Serialization -------------------------------------------------------

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "entities": [e.to_dict() for e in self.entities.values()],
            "constraints": [c.to_dict() for c in self.constraints],
            "next_eid": self._next_eid,
            "next_cid": self._next_cid,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Sketch":
        sketch = cls(name=d.get("name", "Sketch"))
        for ed in d.get("entities", []):
            e = SketchEntity.from_dict(ed)
            sketch.entities[e.eid] = e
        sketch.constraints = [Constraint.from_dict(cd) for cd in d.get("constraints", [])]
        sketch._next_eid = d.get("next_eid", max(sketch.entities, default=-1) + 1)
        sketch._next_cid = d.get(
            "next_cid", max((c.cid for c in sketch.constraints), default=-1) + 1,
        )
        return sketch

    def to_json(self, **kwargs) -> str:
        return json.dumps(self.to_dict(), **kwargs)

    @classmethod
    def from_json(cls, text: str) -> "Sketch":
        return cls.from_dict(json.loads(text))
