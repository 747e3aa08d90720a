"""
Sketch entities and the flat parameter vector they are solved in.

Each entity owns a fixed-size, contiguous slice of the global parameter
vector.  The slice layout is computed once per solve by
:class:`ParameterLayout` and never changes while constraints reference it.

    POINT   x, y
    LINE    x1, y1, x2, y2
    CIRCLE  cx, cy, r
    ARC     cx, cy, r, start_angle, end_angle   (radians)
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Dict, Iterable, Optional, Sequence, Tuple

import numpy as np

from .errors import InvalidReferenceError


class EntityKind(Enum):
    POINT = auto()
    LINE = auto()
    CIRCLE = auto()
    ARC = auto()


PARAM_NAMES: Dict[EntityKind, Tuple[str, ...]] = {
    EntityKind.POINT: ("x", "y"),
    EntityKind.LINE: ("x1", "y1", "x2", "y2"),
    EntityKind.CIRCLE: ("cx", "cy", "r"),
    EntityKind.ARC: ("cx", "cy", "r", "start_angle", "end_angle"),
}

# Valid point selectors per entity kind.  "" is the entity's natural point
# (the point itself, or a curve's center); lines have no natural point.
POINT_SELECTORS: Dict[EntityKind, Tuple[str, ...]] = {
    EntityKind.POINT: ("",),
    EntityKind.LINE: ("start", "end"),
    EntityKind.CIRCLE: ("", "center"),
    EntityKind.ARC: ("", "center", "start", "end"),
}


def param_count(kind: EntityKind) -> int:
    return len(PARAM_NAMES[kind])


@dataclass(frozen=True)
class SketchEntity:
    """An immutable geometric primitive with its current parameter values."""
    eid: int
    kind: EntityKind
    params: Tuple[float, ...]
    # Fixed entities keep their parameters; the solver never moves them
    fixed: bool = False

    def __post_init__(self):
        values = tuple(float(v) for v in self.params)
        expected = param_count(self.kind)
        if len(values) != expected:
            raise ValueError(
                f"{self.kind.name} entity {self.eid} needs {expected} parameters, "
                f"got {len(values)}"
            )
        if not all(math.isfinite(v) for v in values):
            raise ValueError(f"Entity {self.eid} has non-finite parameters: {values}")
        object.__setattr__(self, "params", values)

    # -- Constructors ----------------------------------------------------------

    @classmethod
    def point(cls, eid: int, x: float, y: float, fixed: bool = False) -> "SketchEntity":
        return cls(eid, EntityKind.POINT, (x, y), fixed)

    @classmethod
    def line(
        cls,
        eid: int,
        x1: float, y1: float,
        x2: float, y2: float,
        fixed: bool = False,
    ) -> "SketchEntity":
        return cls(eid, EntityKind.LINE, (x1, y1, x2, y2), fixed)

    @classmethod
    def circle(cls, eid: int, cx: float, cy: float, r: float, fixed: bool = False) -> "SketchEntity":
        return cls(eid, EntityKind.CIRCLE, (cx, cy, r), fixed)

    @classmethod
    def arc(
        cls,
        eid: int,
        cx: float, cy: float,
        r: float,
        start_angle: float, end_angle: float,
        fixed: bool = False,
    ) -> "SketchEntity":
        return cls(eid, EntityKind.ARC, (cx, cy, r, start_angle, end_angle), fixed)

    # -- Queries ---------------------------------------------------------------

    @property
    def dof(self) -> int:
        return 0 if self.fixed else len(self.params)

    def point_at(self, selector: str = "") -> Tuple[float, float]:
        """Coordinates of the point named by *selector* (see ``POINT_SELECTORS``)."""
        p = self.params
        if selector not in POINT_SELECTORS[self.kind]:
            raise ValueError(f"Selector {selector!r} is not valid for {self.kind.name}")
        if self.kind == EntityKind.LINE:
            return (p[0], p[1]) if selector == "start" else (p[2], p[3])
        if self.kind == EntityKind.ARC and selector in ("start", "end"):
            angle = p[3] if selector == "start" else p[4]
            return (p[0] + p[2] * math.cos(angle), p[1] + p[2] * math.sin(angle))
        return (p[0], p[1])

    @property
    def length(self) -> float:
        """Length of a line entity."""
        if self.kind != EntityKind.LINE:
            raise ValueError(f"{self.kind.name} entity {self.eid} has no length")
        x1, y1, x2, y2 = self.params
        return math.hypot(x2 - x1, y2 - y1)

    @property
    def radius(self) -> float:
        if self.kind not in (EntityKind.CIRCLE, EntityKind.ARC):
            raise ValueError(f"{self.kind.name} entity {self.eid} has no radius")
        return self.params[2]

    def degeneracy(self, eps: float) -> Optional[str]:
        """Describe why the entity is degenerate, or ``None`` if it is not."""
        p = self.params
        if self.kind == EntityKind.LINE:
            if math.hypot(p[2] - p[0], p[3] - p[1]) <= eps:
                return f"line {self.eid} has zero length"
        elif self.kind == EntityKind.CIRCLE:
            if p[2] <= eps:
                return f"circle {self.eid} has non-positive radius {p[2]}"
        elif self.kind == EntityKind.ARC:
            if p[2] <= eps:
                return f"arc {self.eid} has non-positive radius {p[2]}"
            sweep = math.remainder(p[4] - p[3], 2.0 * math.pi)
            if abs(sweep) <= eps:
                return f"arc {self.eid} has coincident endpoints"
        return None

    # -- Copies ----------------------------------------------------------------

    def with_params(self, params: Sequence[float]) -> "SketchEntity":
        return SketchEntity(self.eid, self.kind, tuple(params), self.fixed)

    def with_fixed(self, fixed: bool) -> "SketchEntity":
        return SketchEntity(self.eid, self.kind, self.params, fixed)

    # -- Serialisation ---------------------------------------------------------

    def to_dict(self) -> dict:
        return {
            "eid": self.eid,
            "kind": self.kind.name,
            "params": list(self.params),
            "fixed": self.fixed,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "SketchEntity":
        return cls(
            eid=int(d["eid"]),
            kind=EntityKind[d["kind"]],
            params=tuple(d["params"]),
            fixed=bool(d.get("fixed", False)),
        )


@dataclass(frozen=True)
class ParameterLayout:
    """
    Maps entity ids to contiguous ranges of the global parameter vector.

    Offsets are assigned in input order, so the same entity list always
    produces the same layout.
    """
    offsets: Dict[int, int] = field(default_factory=dict)
    kinds: Dict[int, EntityKind] = field(default_factory=dict)
    size: int = 0

    @classmethod
    def build(cls, entities: Iterable[SketchEntity]) -> "ParameterLayout":
        offsets: Dict[int, int] = {}
        kinds: Dict[int, EntityKind] = {}
        size = 0
        for e in entities:
            if e.eid in offsets:
                raise InvalidReferenceError(f"Duplicate entity id {e.eid}", eid=e.eid)
            offsets[e.eid] = size
            kinds[e.eid] = e.kind
            size += param_count(e.kind)
        return cls(offsets=offsets, kinds=kinds, size=size)

    def __contains__(self, eid: int) -> bool:
        return eid in self.offsets

    def offset(self, eid: int) -> int:
        try:
            return self.offsets[eid]
        except KeyError:
            raise InvalidReferenceError(f"Entity {eid} is not in the layout", eid=eid) from None

    def slice_of(self, eid: int) -> slice:
        start = self.offset(eid)
        return slice(start, start + param_count(self.kinds[eid]))

    def flatten(self, entities: Iterable[SketchEntity]) -> np.ndarray:
        """Concatenate entity parameters into one float64 vector."""
        p = np.zeros(self.size, dtype=np.float64)
        for e in entities:
            p[self.slice_of(e.eid)] = e.params
        return p

    def free_mask(self, entities: Iterable[SketchEntity]) -> np.ndarray:
        """Boolean mask of the parameters the solver may move."""
        mask = np.ones(self.size, dtype=bool)
        for e in entities:
            if e.fixed:
                mask[self.slice_of(e.eid)] = False
        return mask

    def to_dict(self) -> dict:
        return {
            "offsets": {str(eid): off for eid, off in self.offsets.items()},
            "kinds": {str(eid): kind.name for eid, kind in self.kinds.items()},
            "size": self.size,
        }
