"""
Automatic constraint inference from nearly-satisfied geometry.

Lines that are almost axis-aligned become HORIZONTAL / VERTICAL, line pairs
that are almost parallel or perpendicular get the matching constraint, and
endpoints that (almost) touch become COINCIDENT.  Candidates already
present in the constraint list are skipped.
"""

from __future__ import annotations

import math
from typing import FrozenSet, Iterable, List, Sequence, Set, Tuple

from ..logger import logger
from .constraints import Constraint, ConstraintKind
from .entities import EntityKind, SketchEntity
from .tolerances import Tolerances

_Key = Tuple[ConstraintKind, FrozenSet[Tuple[int, str]]]


def _key(c: Constraint) -> _Key:
    return c.kind, frozenset((eid, c.selector(i)) for i, eid in enumerate(c.entity_ids))


def _unit(e: SketchEntity):
    x1, y1, x2, y2 = e.params
    length = math.hypot(x2 - x1, y2 - y1)
    if length <= Tolerances.GEOMETRY_EPSILON:
        return None
    return (x2 - x1) / length, (y2 - y1) / length


def _snap_points(e: SketchEntity) -> List[Tuple[str, Tuple[float, float]]]:
    if e.kind == EntityKind.POINT:
        return [("", e.point_at(""))]
    if e.kind in (EntityKind.LINE, EntityKind.ARC):
        return [("start", e.point_at("start")), ("end", e.point_at("end"))]
    return []


def infer_constraints(
    entities: Sequence[SketchEntity],
    existing: Iterable[Constraint] = (),
    next_cid: int = 0,
    distance_tolerance: float = Tolerances.INFERENCE_DISTANCE,
    angle_tolerance: float = Tolerances.INFERENCE_ANGLE,
) -> List[Constraint]:
    """
    Propose constraints the current geometry nearly satisfies.

    Args:
        entities: Sketch entities to inspect.
        existing: Constraints already in the sketch; duplicates are skipped.
        next_cid: First id to assign to a new constraint.

    Returns:
        New constraints, ids ascending from *next_cid*.
    """
    known: Set[_Key] = {_key(c) for c in existing}
    inferred: List[Constraint] = []
    cid = next_cid

    def propose(kind: ConstraintKind, eids: Tuple[int, ...], selectors: Tuple[str, ...] = ()):
        nonlocal cid
        c = Constraint(cid, kind, eids, selectors=selectors)
        key = _key(c)
        if key in known:
            return
        known.add(key)
        inferred.append(c)
        cid += 1

    lines = [(e, _unit(e)) for e in entities if e.kind == EntityKind.LINE]
    lines = [(e, u) for e, u in lines if u is not None]

    axis_aligned = set()
    for e, (ux, uy) in lines:
        if abs(uy) < angle_tolerance:
            propose(ConstraintKind.HORIZONTAL, (e.eid,))
            axis_aligned.add(e.eid)
        elif abs(ux) < angle_tolerance:
            propose(ConstraintKind.VERTICAL, (e.eid,))
            axis_aligned.add(e.eid)

    for i, (a, (ax, ay)) in enumerate(lines):
        for b, (bx, by) in lines[i + 1:]:
            # Implied by the axis constraints
            if a.eid in axis_aligned and b.eid in axis_aligned:
                continue
            if abs(ax * by - ay * bx) < angle_tolerance:
                propose(ConstraintKind.PARALLEL, (a.eid, b.eid))
            elif abs(ax * bx + ay * by) < angle_tolerance:
                propose(ConstraintKind.PERPENDICULAR, (a.eid, b.eid))

    snaps = [(e.eid, sel, xy) for e in entities for sel, xy in _snap_points(e)]
    for i, (ea, sa, (xa, ya)) in enumerate(snaps):
        for eb, sb, (xb, yb) in snaps[i + 1:]:
            if ea == eb:
                continue
            if math.hypot(xb - xa, yb - ya) < distance_tolerance:
                propose(ConstraintKind.COINCIDENT, (ea, eb), (sa, sb))

    if inferred:
        logger.debug(f"Inferred {len(inferred)} constraints")
    return inferred
