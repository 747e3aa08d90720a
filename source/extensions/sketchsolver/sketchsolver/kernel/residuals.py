"""
Residual and Jacobian blocks for every constraint kind.

Each :class:`~.constraints.Constraint` is compiled once per solve into a
:class:`CompiledConstraint`: entity references are resolved to offsets in
the flat parameter vector, selectors are checked against the entity kinds,
and branch choices (tangent side, point-line side) are frozen from the
initial guess.  The compiled block evaluates its residual rows at any
parameter vector and, for kinds with a closed form, its gradient rows as
sparse ``{param_index: partial}`` dicts.

``_BLOCKS`` maps ``(kind, form)`` to ``(residual_fn, gradient_fn)``.  The
derivative column of ``CONSTRAINT_TABLE`` decides which blocks use the
closed form; NUMERIC kinds carry no gradient and MIXED kinds carry one for
some forms only.

Geometry that collapses mid-iteration (a line shrinking to a point) yields
NaN residuals, which the line search treats as no improvement.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from .constraints import Constraint, ConstraintKind, Derivative
from .entities import EntityKind, ParameterLayout, POINT_SELECTORS, SketchEntity, param_count
from .errors import DegenerateGeometryError, InvalidConstraintError, InvalidReferenceError
from .numerics import central_difference
from .tolerances import Tolerances

Gradient = Dict[int, float]

_NAN = float("nan")
_EPS = Tolerances.GEOMETRY_EPSILON
_CURVES = (EntityKind.CIRCLE, EntityKind.ARC)


# ---------------------------------------------------------------------------
# References into the parameter vector
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PointRef:
    """A point on an entity: a POINT, a line endpoint, a curve center or an arc endpoint."""
    base: int
    kind: EntityKind
    selector: str = ""

    def _angle_index(self) -> Optional[int]:
        if self.kind == EntityKind.ARC and self.selector in ("start", "end"):
            return self.base + (3 if self.selector == "start" else 4)
        return None

    def _xy_index(self) -> int:
        if self.kind == EntityKind.LINE and self.selector == "end":
            return self.base + 2
        return self.base

    def xy(self, p: np.ndarray) -> Tuple[float, float]:
        ai = self._angle_index()
        if ai is not None:
            cx, cy, r = p[self.base], p[self.base + 1], p[self.base + 2]
            return cx + r * math.cos(p[ai]), cy + r * math.sin(p[ai])
        i = self._xy_index()
        return p[i], p[i + 1]

    def xy_grad(self, p: np.ndarray) -> Tuple[float, float, Gradient, Gradient]:
        """Coordinates plus their gradients with respect to the parameter vector."""
        ai = self._angle_index()
        if ai is not None:
            b = self.base
            r = p[b + 2]
            c, s = math.cos(p[ai]), math.sin(p[ai])
            gx = {b: 1.0, b + 2: c, ai: -r * s}
            gy = {b + 1: 1.0, b + 2: s, ai: r * c}
            return p[b] + r * c, p[b + 1] + r * s, gx, gy
        i = self._xy_index()
        return p[i], p[i + 1], {i: 1.0}, {i + 1: 1.0}


def _combine(*terms: Tuple[float, Gradient]) -> Gradient:
    """Linear combination of sparse gradients."""
    out: Gradient = {}
    for coef, grad in terms:
        if coef == 0.0:
            continue
        for i, v in grad.items():
            out[i] = out.get(i, 0.0) + coef * v
    return out


def _direction(p: np.ndarray, b: int) -> Tuple[float, float]:
    return p[b + 2] - p[b], p[b + 3] - p[b + 1]


def _dir_grads(b: int) -> Tuple[Gradient, Gradient]:
    return {b + 2: 1.0, b: -1.0}, {b + 3: 1.0, b + 1: -1.0}


def _signed_distance(px: float, py: float, p: np.ndarray, b: int) -> float:
    """Signed distance of (px, py) from the infinite line at offset *b*."""
    dx, dy = _direction(p, b)
    length = math.hypot(dx, dy)
    if length <= _EPS:
        return _NAN
    return ((px - p[b]) * dy - (py - p[b + 1]) * dx) / length


def _sign(v: float) -> float:
    return -1.0 if v < 0.0 else 1.0


# ---------------------------------------------------------------------------
# Compiled constraint
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CompiledConstraint:
    """A constraint bound to parameter offsets, ready for evaluation."""
    constraint: Constraint
    form: str
    points: Tuple[PointRef, ...] = ()
    lines: Tuple[int, ...] = ()
    curves: Tuple[int, ...] = ()
    # Every parameter index the residual may read
    indices: Tuple[int, ...] = ()
    # Frozen branch sign (tangent / point-line side)
    branch: float = 1.0

    @property
    def cid(self) -> int:
        return self.constraint.cid

    @property
    def rows(self) -> int:
        return self.constraint.rows

    @property
    def value(self) -> float:
        v = self.constraint.value
        return 0.0 if v is None else v

    @property
    def analytic(self) -> bool:
        """Closed-form Jacobian block, as declared by ``CONSTRAINT_TABLE``."""
        derivative = self.constraint.spec.derivative
        if derivative == Derivative.MIXED:
            return _BLOCKS[(self.constraint.kind, self.form)][1] is not None
        return derivative == Derivative.ANALYTIC

    def evaluate(self, p: np.ndarray) -> np.ndarray:
        fn = _BLOCKS[(self.constraint.kind, self.form)][0]
        return np.asarray(fn(self, p), dtype=np.float64)

    def gradient(self, p: np.ndarray) -> Optional[List[Gradient]]:
        """Closed-form gradient rows, or ``None`` for finite-difference kinds."""
        if not self.analytic:
            return None
        return _BLOCKS[(self.constraint.kind, self.form)][1](self, p)


# ---------------------------------------------------------------------------
# Residual / gradient functions
# ---------------------------------------------------------------------------

def _coincident(cc, p):
    xa, ya = cc.points[0].xy(p)
    xb, yb = cc.points[1].xy(p)
    return [xa - xb, ya - yb]


def _coincident_grad(cc, p):
    _, _, gxa, gya = cc.points[0].xy_grad(p)
    _, _, gxb, gyb = cc.points[1].xy_grad(p)
    return [_combine((1.0, gxa), (-1.0, gxb)), _combine((1.0, gya), (-1.0, gyb))]


def _horizontal(cc, p):
    return [cc.points[1].xy(p)[1] - cc.points[0].xy(p)[1]]


def _vertical(cc, p):
    return [cc.points[1].xy(p)[0] - cc.points[0].xy(p)[0]]


def _horizontal_distance(cc, p):
    return [cc.points[1].xy(p)[0] - cc.points[0].xy(p)[0] - cc.value]


def _vertical_distance(cc, p):
    return [cc.points[1].xy(p)[1] - cc.points[0].xy(p)[1] - cc.value]


def _dx_grad(cc, p):
    _, _, gxa, _ = cc.points[0].xy_grad(p)
    _, _, gxb, _ = cc.points[1].xy_grad(p)
    return [_combine((1.0, gxb), (-1.0, gxa))]


def _dy_grad(cc, p):
    _, _, _, gya = cc.points[0].xy_grad(p)
    _, _, _, gyb = cc.points[1].xy_grad(p)
    return [_combine((1.0, gyb), (-1.0, gya))]


def _distance_pp(cc, p):
    xa, ya = cc.points[0].xy(p)
    xb, yb = cc.points[1].xy(p)
    return [math.hypot(xb - xa, yb - ya) - cc.value]


def _distance_pp_grad(cc, p):
    xa, ya, gxa, gya = cc.points[0].xy_grad(p)
    xb, yb, gxb, gyb = cc.points[1].xy_grad(p)
    d = math.hypot(xb - xa, yb - ya)
    if d <= _EPS:
        # Direction undefined when the points coincide
        return [{}]
    ux, uy = (xb - xa) / d, (yb - ya) / d
    return [_combine((ux, gxb), (-ux, gxa), (uy, gyb), (-uy, gya))]


def _distance_pl(cc, p):
    px, py = cc.points[0].xy(p)
    return [cc.branch * _signed_distance(px, py, p, cc.lines[0]) - cc.value]


def _line_pair(cc, p):
    ax, ay = _direction(p, cc.lines[0])
    bx, by = _direction(p, cc.lines[1])
    return ax, ay, bx, by, math.hypot(ax, ay), math.hypot(bx, by)


def _line_pair_grad(cc, dax, day, dbx, dby):
    gax, gay = _dir_grads(cc.lines[0])
    gbx, gby = _dir_grads(cc.lines[1])
    return [_combine((dax, gax), (day, gay), (dbx, gbx), (dby, gby))]


def _parallel(cc, p):
    ax, ay, bx, by, la, lb = _line_pair(cc, p)
    if la <= _EPS or lb <= _EPS:
        return [_NAN]
    return [(ax * by - ay * bx) / (la * lb)]


def _parallel_grad(cc, p):
    ax, ay, bx, by, la, lb = _line_pair(cc, p)
    if la <= _EPS or lb <= _EPS:
        return [{}]
    g = la * lb
    r = (ax * by - ay * bx) / g
    return _line_pair_grad(
        cc,
        by / g - r * ax / (la * la),
        -bx / g - r * ay / (la * la),
        -ay / g - r * bx / (lb * lb),
        ax / g - r * by / (lb * lb),
    )


def _perpendicular(cc, p):
    ax, ay, bx, by, la, lb = _line_pair(cc, p)
    if la <= _EPS or lb <= _EPS:
        return [_NAN]
    return [(ax * bx + ay * by) / (la * lb)]


def _perpendicular_grad(cc, p):
    ax, ay, bx, by, la, lb = _line_pair(cc, p)
    if la <= _EPS or lb <= _EPS:
        return [{}]
    g = la * lb
    r = (ax * bx + ay * by) / g
    return _line_pair_grad(
        cc,
        bx / g - r * ax / (la * la),
        by / g - r * ay / (la * la),
        ax / g - r * bx / (lb * lb),
        ay / g - r * by / (lb * lb),
    )


def _angle(cc, p):
    ax, ay, bx, by, la, lb = _line_pair(cc, p)
    if la <= _EPS or lb <= _EPS:
        return [_NAN]
    theta = math.atan2(ax * by - ay * bx, ax * bx + ay * by)
    diff = theta - cc.value
    # Wrapped to (-pi, pi] so 359 deg and -1 deg agree
    return [math.atan2(math.sin(diff), math.cos(diff))]


def _angle_grad(cc, p):
    ax, ay, bx, by, la, lb = _line_pair(cc, p)
    if la <= _EPS or lb <= _EPS:
        return [{}]
    la2, lb2 = la * la, lb * lb
    return _line_pair_grad(cc, ay / la2, -ax / la2, -by / lb2, bx / lb2)


def _collinear(cc, p):
    a = cc.lines[0]
    b = cc.lines[1]
    ax, ay = _direction(p, a)
    la = math.hypot(ax, ay)
    if la <= _EPS:
        return [_NAN, _NAN]
    x0, y0 = p[a], p[a + 1]
    return [
        (ax * (p[b + 1] - y0) - ay * (p[b] - x0)) / la,
        (ax * (p[b + 3] - y0) - ay * (p[b + 2] - x0)) / la,
    ]


def _equal_lines(cc, p):
    ax, ay, bx, by, la, lb = _line_pair(cc, p)
    return [la - lb]


def _equal_lines_grad(cc, p):
    ax, ay, bx, by, la, lb = _line_pair(cc, p)
    if la <= _EPS or lb <= _EPS:
        return [{}]
    return _line_pair_grad(cc, ax / la, ay / la, -bx / lb, -by / lb)


def _equal_curves(cc, p):
    return [p[cc.curves[0] + 2] - p[cc.curves[1] + 2]]


def _equal_curves_grad(cc, p):
    return [{cc.curves[0] + 2: 1.0, cc.curves[1] + 2: -1.0}]


def _length(cc, p):
    dx, dy = _direction(p, cc.lines[0])
    return [math.hypot(dx, dy) - cc.value]


def _length_grad(cc, p):
    b = cc.lines[0]
    dx, dy = _direction(p, b)
    length = math.hypot(dx, dy)
    if length <= _EPS:
        return [{}]
    gx, gy = _dir_grads(b)
    return [_combine((dx / length, gx), (dy / length, gy))]


def _radius(cc, p):
    return [p[cc.curves[0] + 2] - cc.value]


def _radius_grad(cc, p):
    return [{cc.curves[0] + 2: 1.0}]


def _diameter(cc, p):
    return [2.0 * p[cc.curves[0] + 2] - cc.value]


def _diameter_grad(cc, p):
    return [{cc.curves[0] + 2: 2.0}]


def _concentric(cc, p):
    a, b = cc.curves
    return [p[a] - p[b], p[a + 1] - p[b + 1]]


def _concentric_grad(cc, p):
    a, b = cc.curves
    return [{a: 1.0, b: -1.0}, {a + 1: 1.0, b + 1: -1.0}]


def _midpoint(cc, p):
    px, py = cc.points[0].xy(p)
    b = cc.lines[0]
    return [px - 0.5 * (p[b] + p[b + 2]), py - 0.5 * (p[b + 1] + p[b + 3])]


def _midpoint_grad(cc, p):
    _, _, gx, gy = cc.points[0].xy_grad(p)
    b = cc.lines[0]
    return [
        _combine((1.0, gx), (-0.5, {b: 1.0, b + 2: 1.0})),
        _combine((1.0, gy), (-0.5, {b + 1: 1.0, b + 3: 1.0})),
    ]


def _point_on_line(cc, p):
    px, py = cc.points[0].xy(p)
    return [_signed_distance(px, py, p, cc.lines[0])]


def _symmetric(cc, p):
    xa, ya = cc.points[0].xy(p)
    xb, yb = cc.points[1].xy(p)
    b = cc.lines[0]
    dx, dy = _direction(p, b)
    length = math.hypot(dx, dy)
    if length <= _EPS:
        return [_NAN, _NAN]
    # Midpoint on the axis, and the connecting segment perpendicular to it
    mid = _signed_distance(0.5 * (xa + xb), 0.5 * (ya + yb), p, b)
    along = ((xb - xa) * dx + (yb - ya) * dy) / length
    return [mid, along]


def _tangent_line_curve(cc, p):
    c = cc.curves[0]
    sd = _signed_distance(p[c], p[c + 1], p, cc.lines[0])
    return [cc.branch * sd - p[c + 2]]


def _center_distance(cc, p):
    a, b = cc.curves
    return math.hypot(p[a] - p[b], p[a + 1] - p[b + 1])


def _tangent_external(cc, p):
    a, b = cc.curves
    return [_center_distance(cc, p) - (p[a + 2] + p[b + 2])]


def _tangent_internal(cc, p):
    a, b = cc.curves
    return [_center_distance(cc, p) - cc.branch * (p[a + 2] - p[b + 2])]


ResidualFn = Callable[[CompiledConstraint, np.ndarray], List[float]]
GradientFn = Optional[Callable[[CompiledConstraint, np.ndarray], List[Gradient]]]

K = ConstraintKind

_BLOCKS: Dict[Tuple[ConstraintKind, str], Tuple[ResidualFn, GradientFn]] = {
    (K.COINCIDENT, "pp"): (_coincident, _coincident_grad),
    (K.HORIZONTAL, "pp"): (_horizontal, _dy_grad),
    (K.VERTICAL, "pp"): (_vertical, _dx_grad),
    (K.HORIZONTAL_DISTANCE, "pp"): (_horizontal_distance, _dx_grad),
    (K.VERTICAL_DISTANCE, "pp"): (_vertical_distance, _dy_grad),
    (K.DISTANCE, "pp"): (_distance_pp, _distance_pp_grad),
    (K.DISTANCE, "pl"): (_distance_pl, None),
    (K.PARALLEL, "ll"): (_parallel, _parallel_grad),
    (K.PERPENDICULAR, "ll"): (_perpendicular, _perpendicular_grad),
    (K.ANGLE, "ll"): (_angle, _angle_grad),
    (K.COLLINEAR, "ll"): (_collinear, None),
    (K.EQUAL, "ll"): (_equal_lines, _equal_lines_grad),
    (K.EQUAL, "cc"): (_equal_curves, _equal_curves_grad),
    (K.LENGTH, "l"): (_length, _length_grad),
    (K.RADIUS, "c"): (_radius, _radius_grad),
    (K.DIAMETER, "c"): (_diameter, _diameter_grad),
    (K.CONCENTRIC, "cc"): (_concentric, _concentric_grad),
    (K.MIDPOINT, "pl"): (_midpoint, _midpoint_grad),
    (K.POINT_ON_LINE, "pl"): (_point_on_line, None),
    (K.SYMMETRIC, "ppl"): (_symmetric, None),
    (K.TANGENT, "lc"): (_tangent_line_curve, None),
    (K.TANGENT, "cc_ext"): (_tangent_external, None),
    (K.TANGENT, "cc_int"): (_tangent_internal, None),
}

del K


# ---------------------------------------------------------------------------
# Compilation
# ---------------------------------------------------------------------------

class _Binder:
    """Resolves the entity slots of one constraint against the layout."""

    def __init__(self, c: Constraint, entities: Dict[int, SketchEntity], layout: ParameterLayout):
        self.c = c
        self.entities = entities
        self.layout = layout
        # Entities whose geometry must be non-degenerate before solving
        self.checked: List[int] = []
        for eid in c.entity_ids:
            if eid not in entities or eid not in layout:
                raise InvalidReferenceError(
                    f"Constraint {c.cid} ({c.kind.name}) references missing entity {eid}",
                    cid=c.cid, eid=eid,
                )

    def kind(self, slot: int) -> EntityKind:
        return self.layout.kinds[self.c.entity_ids[slot]]

    def base(self, slot: int) -> int:
        return self.layout.offset(self.c.entity_ids[slot])

    def _fail(self, slot: int, what: str):
        c = self.c
        raise InvalidConstraintError(
            f"{c.kind.name} constraint {c.cid}: entity {c.entity_ids[slot]} "
            f"({self.kind(slot).name}, selector {c.selector(slot)!r}) is not {what}",
            cid=c.cid,
        )

    def is_line(self, slot: int) -> bool:
        return self.kind(slot) == EntityKind.LINE and self.c.selector(slot) == ""

    def point(self, slot: int) -> PointRef:
        kind = self.kind(slot)
        sel = self.c.selector(slot)
        if sel not in POINT_SELECTORS[kind]:
            self._fail(slot, "a point")
        if kind == EntityKind.ARC and sel in ("start", "end"):
            self.checked.append(self.c.entity_ids[slot])
        return PointRef(self.base(slot), kind, sel)

    def line(self, slot: int) -> int:
        if not self.is_line(slot):
            self._fail(slot, "a line")
        self.checked.append(self.c.entity_ids[slot])
        return self.base(slot)

    def curve(self, slot: int, checked: bool = False) -> int:
        if self.kind(slot) not in _CURVES or self.c.selector(slot) not in ("", "center"):
            self._fail(slot, "a circle or arc")
        if checked:
            self.checked.append(self.c.entity_ids[slot])
        return self.base(slot)

    def line_ends(self, slot: int) -> Tuple[PointRef, PointRef]:
        if not self.is_line(slot):
            self._fail(slot, "a line")
        b = self.base(slot)
        return PointRef(b, EntityKind.LINE, "start"), PointRef(b, EntityKind.LINE, "end")

    def indices(self) -> Tuple[int, ...]:
        out = set()
        for eid in self.c.entity_ids:
            start = self.layout.offset(eid)
            out.update(range(start, start + param_count(self.layout.kinds[eid])))
        return tuple(sorted(out))


def compile_constraint(
    c: Constraint,
    entities: Dict[int, SketchEntity],
    layout: ParameterLayout,
    p0: np.ndarray,
) -> CompiledConstraint:
    """
    Bind *c* to the parameter layout and freeze its branch from ``p0``.

    Raises:
        ConstraintArityError / InvalidConstraintError: malformed constraint.
        InvalidReferenceError: an entity id is not in *entities*.
        DegenerateGeometryError: referenced geometry makes the residual undefined.
    """
    c.validate()
    bind = _Binder(c, entities, layout)
    kind = c.kind
    K = ConstraintKind
    form = ""
    points: Tuple[PointRef, ...] = ()
    lines: Tuple[int, ...] = ()
    curves: Tuple[int, ...] = ()
    branch = 1.0

    if kind in (K.HORIZONTAL, K.VERTICAL, K.HORIZONTAL_DISTANCE, K.VERTICAL_DISTANCE):
        form = "pp"
        if len(c.entity_ids) == 1:
            points = bind.line_ends(0)
        else:
            points = (bind.point(0), bind.point(1))

    elif kind == K.COINCIDENT:
        form = "pp"
        points = (bind.point(0), bind.point(1))

    elif kind == K.DISTANCE:
        if bind.is_line(1) or bind.is_line(0):
            form = "pl"
            pt, ln = (0, 1) if bind.is_line(1) else (1, 0)
            points = (bind.point(pt),)
            lines = (bind.line(ln),)
            px, py = points[0].xy(p0)
            branch = _sign(_signed_distance(px, py, p0, lines[0]))
        else:
            form = "pp"
            points = (bind.point(0), bind.point(1))

    elif kind in (K.PARALLEL, K.PERPENDICULAR, K.ANGLE, K.COLLINEAR):
        form = "ll"
        lines = (bind.line(0), bind.line(1))

    elif kind == K.EQUAL:
        if bind.is_line(0) and bind.is_line(1):
            form = "ll"
            lines = (bind.line(0), bind.line(1))
        elif bind.kind(0) in _CURVES and bind.kind(1) in _CURVES:
            form = "cc"
            curves = (bind.curve(0), bind.curve(1))
        else:
            raise InvalidConstraintError(
                f"EQUAL constraint {c.cid} needs two lines or two circles/arcs, got "
                f"{bind.kind(0).name} and {bind.kind(1).name}",
                cid=c.cid,
            )

    elif kind == K.LENGTH:
        form = "l"
        lines = (bind.line(0),)

    elif kind in (K.RADIUS, K.DIAMETER):
        form = "c"
        curves = (bind.curve(0),)

    elif kind == K.CONCENTRIC:
        form = "cc"
        curves = (bind.curve(0), bind.curve(1))

    elif kind in (K.MIDPOINT, K.POINT_ON_LINE):
        form = "pl"
        points = (bind.point(0),)
        lines = (bind.line(1),)

    elif kind == K.SYMMETRIC:
        form = "ppl"
        points = (bind.point(0), bind.point(1))
        lines = (bind.line(2),)

    elif kind == K.TANGENT:
        if bind.is_line(0) or bind.is_line(1):
            ln, cv = (0, 1) if bind.is_line(0) else (1, 0)
            form = "lc"
            lines = (bind.line(ln),)
            curves = (bind.curve(cv, checked=True),)
            c0 = curves[0]
            branch = _sign(_signed_distance(p0[c0], p0[c0 + 1], p0, lines[0]))
        else:
            curves = (bind.curve(0, checked=True), bind.curve(1, checked=True))
            a, b = curves
            d0 = math.hypot(p0[a] - p0[b], p0[a + 1] - p0[b + 1])
            ra, rb = p0[a + 2], p0[b + 2]
            if abs(d0 - (ra + rb)) <= abs(d0 - abs(ra - rb)):
                form = "cc_ext"
            else:
                form = "cc_int"
                branch = _sign(ra - rb)

    _check_degenerate(c, bind.checked, entities)
    return CompiledConstraint(
        constraint=c,
        form=form,
        points=points,
        lines=lines,
        curves=curves,
        indices=bind.indices(),
        branch=branch,
    )


def _check_degenerate(c: Constraint, eids: Sequence[int], entities: Dict[int, SketchEntity]):
    for eid in eids:
        reason = entities[eid].degeneracy(_EPS)
        if reason is not None:
            raise DegenerateGeometryError(
                f"{c.kind.name} constraint {c.cid} is undefined: {reason}",
                eid=eid, cid=c.cid,
            )


# ---------------------------------------------------------------------------
# Assembled system
# ---------------------------------------------------------------------------

class ResidualSystem:
    """
    Stacks compiled blocks into ``F(p)`` and ``J(p)``.

    Rows follow constraint order; ``row_slices`` maps each constraint id to
    its rows.  Columns span the full parameter vector; the solver selects
    the free columns.
    """

    def __init__(self, blocks: Sequence[CompiledConstraint], size: int, fd_step: float):
        self.blocks = list(blocks)
        self.size = size
        self.fd_step = fd_step
        self.row_slices: Dict[int, slice] = {}
        row = 0
        for block in self.blocks:
            self.row_slices[block.cid] = slice(row, row + block.rows)
            row += block.rows
        self.rows = row

    def residuals(self, p: np.ndarray) -> np.ndarray:
        if not self.blocks:
            return np.zeros(0, dtype=np.float64)
        return np.concatenate([block.evaluate(p) for block in self.blocks])

    def jacobian(self, p: np.ndarray) -> np.ndarray:
        """Full ``rows x size`` Jacobian, closed-form where available."""
        J = np.zeros((self.rows, self.size), dtype=np.float64)
        for block in self.blocks:
            rows = self.row_slices[block.cid]
            grads = block.gradient(p)
            if grads is None:
                cols = list(block.indices)
                J[rows, cols] = central_difference(block.evaluate, p, cols, self.fd_step)
                continue
            for r, grad in enumerate(grads):
                for i, v in grad.items():
                    J[rows.start + r, i] += v
        return J

    def numeric_jacobian(self, p: np.ndarray) -> np.ndarray:
        """Jacobian by central differences for every block."""
        J = np.zeros((self.rows, self.size), dtype=np.float64)
        for block in self.blocks:
            cols = list(block.indices)
            J[self.row_slices[block.cid], cols] = central_difference(
                block.evaluate, p, cols, self.fd_step
            )
        return J

    def per_constraint(self, p: np.ndarray) -> Dict[int, object]:
        """Residual per constraint id: a float for one-row kinds, a tuple otherwise."""
        out: Dict[int, object] = {}
        for block in self.blocks:
            values = block.evaluate(p)
            out[block.cid] = float(values[0]) if values.size == 1 else tuple(float(v) for v in values)
        return out
