"""
Constraint definitions.

A :class:`Constraint` is a closed tagged variant: the ``kind`` tag selects
one entry of :data:`CONSTRAINT_TABLE`, which fixes how many entities the
constraint takes, how many residual rows it contributes, whether it is
dimensional, and whether its Jacobian block is closed-form or obtained by
central differences.  The residual code in :mod:`.residuals` dispatches on
the same tag.

Angles are stored in radians.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum, auto
from typing import Dict, Optional, Tuple

from .errors import ConstraintArityError, InvalidConstraintError


class ConstraintKind(Enum):
    # Geometric
    COINCIDENT = auto()
    PARALLEL = auto()
    PERPENDICULAR = auto()
    TANGENT = auto()
    EQUAL = auto()
    HORIZONTAL = auto()
    VERTICAL = auto()
    CONCENTRIC = auto()
    MIDPOINT = auto()
    POINT_ON_LINE = auto()
    SYMMETRIC = auto()
    COLLINEAR = auto()
    # Dimensional (driving)
    DISTANCE = auto()
    HORIZONTAL_DISTANCE = auto()
    VERTICAL_DISTANCE = auto()
    ANGLE = auto()
    RADIUS = auto()
    DIAMETER = auto()
    LENGTH = auto()


class Derivative(Enum):
    ANALYTIC = auto()
    NUMERIC = auto()
    # Closed-form for one entity combination, finite differences for another
    MIXED = auto()


class ValueRule(Enum):
    NONE = auto()          # geometric: no value allowed
    ANY = auto()
    NON_NEGATIVE = auto()
    POSITIVE = auto()


@dataclass(frozen=True)
class ConstraintSpec:
    arities: Tuple[int, ...]
    rows: int
    derivative: Derivative
    value_rule: ValueRule = ValueRule.NONE

    @property
    def dimensional(self) -> bool:
        return self.value_rule != ValueRule.NONE


CONSTRAINT_TABLE: Dict[ConstraintKind, ConstraintSpec] = {
    ConstraintKind.COINCIDENT: ConstraintSpec((2,), 2, Derivative.ANALYTIC),
    ConstraintKind.PARALLEL: ConstraintSpec((2,), 1, Derivative.ANALYTIC),
    ConstraintKind.PERPENDICULAR: ConstraintSpec((2,), 1, Derivative.ANALYTIC),
    ConstraintKind.TANGENT: ConstraintSpec((2,), 1, Derivative.NUMERIC),
    ConstraintKind.EQUAL: ConstraintSpec((2,), 1, Derivative.ANALYTIC),
    ConstraintKind.HORIZONTAL: ConstraintSpec((1, 2), 1, Derivative.ANALYTIC),
    ConstraintKind.VERTICAL: ConstraintSpec((1, 2), 1, Derivative.ANALYTIC),
    ConstraintKind.CONCENTRIC: ConstraintSpec((2,), 2, Derivative.ANALYTIC),
    ConstraintKind.MIDPOINT: ConstraintSpec((2,), 2, Derivative.ANALYTIC),
    ConstraintKind.POINT_ON_LINE: ConstraintSpec((2,), 1, Derivative.NUMERIC),
    ConstraintKind.SYMMETRIC: ConstraintSpec((3,), 2, Derivative.NUMERIC),
    ConstraintKind.COLLINEAR: ConstraintSpec((2,), 2, Derivative.NUMERIC),
    # point-point is analytic, point-line is numeric
    ConstraintKind.DISTANCE: ConstraintSpec((2,), 1, Derivative.MIXED, ValueRule.NON_NEGATIVE),
    ConstraintKind.HORIZONTAL_DISTANCE: ConstraintSpec((1, 2), 1, Derivative.ANALYTIC, ValueRule.ANY),
    ConstraintKind.VERTICAL_DISTANCE: ConstraintSpec((1, 2), 1, Derivative.ANALYTIC, ValueRule.ANY),
    ConstraintKind.ANGLE: ConstraintSpec((2,), 1, Derivative.ANALYTIC, ValueRule.ANY),
    ConstraintKind.RADIUS: ConstraintSpec((1,), 1, Derivative.ANALYTIC, ValueRule.POSITIVE),
    ConstraintKind.DIAMETER: ConstraintSpec((1,), 1, Derivative.ANALYTIC, ValueRule.POSITIVE),
    ConstraintKind.LENGTH: ConstraintSpec((1,), 1, Derivative.ANALYTIC, ValueRule.NON_NEGATIVE),
}


@dataclass(frozen=True)
class Constraint:
    """A typed relation between entities, zero-residual when satisfied."""
    cid: int
    kind: ConstraintKind
    entity_ids: Tuple[int, ...] = ()
    value: Optional[float] = None         # target distance / angle (rad) / radius
    # Point selectors per entity ("", "start", "end", "center")
    selectors: Tuple[str, ...] = ()
    # Reference (non-driving) constraints are measured but not solved
    driving: bool = True

    def __post_init__(self):
        object.__setattr__(self, "entity_ids", tuple(int(e) for e in self.entity_ids))
        object.__setattr__(self, "selectors", tuple(str(s) for s in self.selectors))
        if self.value is not None:
            object.__setattr__(self, "value", float(self.value))

    @property
    def spec(self) -> ConstraintSpec:
        return CONSTRAINT_TABLE[self.kind]

    @property
    def dimensional(self) -> bool:
        return self.spec.dimensional

    @property
    def rows(self) -> int:
        return self.spec.rows

    def selector(self, slot: int) -> str:
        """Selector for entity *slot*, ``""`` when not given."""
        return self.selectors[slot] if slot < len(self.selectors) else ""

    def validate(self):
        """
        Check arity, selector count and target value against the kind table.

        Entity kinds are checked later, once the entities are known.

        Raises:
            ConstraintArityError: wrong number of entities.
            InvalidConstraintError: bad selector count or target value.
        """
        spec = self.spec
        n = len(self.entity_ids)
        if n not in spec.arities:
            expected = " or ".join(str(a) for a in spec.arities)
            raise ConstraintArityError(
                f"{self.kind.name} constraint {self.cid} takes {expected} entities, got {n}",
                cid=self.cid,
            )
        if len(self.selectors) > n:
            raise InvalidConstraintError(
                f"Constraint {self.cid} has {len(self.selectors)} selectors for {n} entities",
                cid=self.cid,
            )

        rule = spec.value_rule
        if rule == ValueRule.NONE:
            if self.value is not None:
                raise InvalidConstraintError(
                    f"Geometric constraint {self.cid} ({self.kind.name}) takes no value",
                    cid=self.cid,
                )
            return
        if self.value is None or not math.isfinite(self.value):
            raise InvalidConstraintError(
                f"{self.kind.name} constraint {self.cid} needs a finite target value",
                cid=self.cid,
            )
        if rule == ValueRule.NON_NEGATIVE and self.value < 0.0:
            raise InvalidConstraintError(
                f"{self.kind.name} constraint {self.cid} target must be >= 0, got {self.value}",
                cid=self.cid,
            )
        if rule == ValueRule.POSITIVE and self.value <= 0.0:
            raise InvalidConstraintError(
                f"{self.kind.name} constraint {self.cid} target must be > 0, got {self.value}",
                cid=self.cid,
            )

    def with_value(self, value: float) -> "Constraint":
        return Constraint(self.cid, self.kind, self.entity_ids, value, self.selectors, self.driving)

    def same_target(self, other: "Constraint") -> bool:
        """True when both constraints have the same kind, entities and selectors."""
        n = max(len(self.entity_ids), len(other.entity_ids))
        return (
            self.kind == other.kind
            and self.entity_ids == other.entity_ids
            and all(self.selector(i) == other.selector(i) for i in range(n))
        )

    def to_dict(self) -> dict:
        return {
            "cid": self.cid,
            "kind": self.kind.name,
            "entity_ids": list(self.entity_ids),
            "value": self.value,
            "selectors": list(self.selectors),
            "driving": self.driving,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Constraint":
        return cls(
            cid=d["cid"],
            kind=ConstraintKind[d["kind"]],
            entity_ids=tuple(d["entity_ids"]),
            value=d.get("value"),
            selectors=tuple(d.get("selectors", ())),
            driving=d.get("driving", True),
        )

