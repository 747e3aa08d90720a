"""
Sketch Registry: the session-wide owner of Sketch objects.

Sketches are keyed by stable string IDs (``"Sketch1"``, ``"Sketch2"``, ...).
Consumers such as a dimension manager or a persistence layer hold IDs,
not Sketch references.

Each Sketch carries its own entities, constraints and solver, so
:meth:`SketchRegistry.solve_all` can fan the solves out over a thread
pool.  Editing a sketch while its own solve is in flight is the caller's
problem to serialise.
"""

from __future__ import annotations

import re
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterator, List, Optional

from ..kernel.constraint_solver import SolveOptions, SolveResult
from ..kernel.sketch import Sketch
from ..logger import logger

_AUTO_ID = re.compile(r"^Sketch(\d+)$")


class SketchRegistry:
    """Maps sketch IDs to Sketch objects, in registration order."""

    PREFIX = "Sketch"

    def __init__(self):
        self._sketches: Dict[str, Sketch] = {}
        self._counter: int = 0

    def __contains__(self, sketch_id: str) -> bool:
        return sketch_id in self._sketches

    def __len__(self) -> int:
        return len(self._sketches)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._sketches))

    @property
    def sketch_ids(self) -> List[str]:
        return list(self._sketches)

    @property
    def sketches(self) -> Dict[str, Sketch]:
        """Shallow copy; mutating it does not touch the registry."""
        return dict(self._sketches)

    @property
    def count(self) -> int:
        return len(self._sketches)

    @property
    def counter(self) -> int:
        """Highest auto-numbered ID seen so far."""
        return self._counter

    def get(self, sketch_id: str) -> Optional[Sketch]:
        return self._sketches.get(sketch_id)

    def _bump(self, sketch_id: str):
        m = _AUTO_ID.match(sketch_id)
        if m:
            self._counter = max(self._counter, int(m.group(1)))

    def register(self, sketch: Sketch, sketch_id: Optional[str] = None) -> str:
        """
        Store ``sketch`` and return its ID.

        Without ``sketch_id`` the next ``SketchN`` is allocated.  An explicit
        ``SketchN`` pushes the counter forward so later automatic IDs never
        collide with it.  The sketch is renamed to its ID.
        """
        if sketch_id is None:
            sketch_id = f"{self.PREFIX}{self._counter + 1}"
        self._bump(sketch_id)
        sketch.name = sketch_id
        self._sketches[sketch_id] = sketch
        return sketch_id

    def remove(self, sketch_id: str) -> Optional[Sketch]:
        return self._sketches.pop(sketch_id, None)

    def clear(self):
        """Drop every sketch; numbering restarts at ``Sketch1``."""
        self._sketches.clear()
        self._counter = 0

    def solve_all(
        self,
        options: Optional[SolveOptions] = None,
        max_workers: Optional[int] = None,
    ) -> Dict[str, SolveResult]:
        """
        Solve every registered sketch on a thread pool.

        Returns ``{sketch_id: SolveResult}`` in registration order.  Each
        sketch applies its own result on success.  Exceptions from a solve
        (bad references, degenerate input) are re-raised here.
        """
        jobs = list(self._sketches.items())
        if not jobs:
            return {}
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            pending = {sid: pool.submit(sketch.solve, options) for sid, sketch in jobs}
            results = {sid: fut.result() for sid, fut in pending.items()}
        unsolved = [sid for sid, res in results.items() if not res.success]
        if unsolved:
            logger.warning(f"{len(unsolved)}/{len(results)} sketches unsolved: {', '.join(unsolved)}")
        else:
            logger.info(f"Solved {len(results)} sketches")
        return results

    def to_dict(self) -> dict:
        return {
            "counter": self._counter,
            "sketches": {sid: s.to_dict() for sid, s in self._sketches.items()},
        }

    @classmethod
    def from_dict(cls, d: dict) -> "SketchRegistry":
        registry = cls()
        for sid, data in d.get("sketches", {}).items():
            registry.register(Sketch.from_dict(data), sid)
        registry._counter = max(registry._counter, int(d.get("counter", 0)))
        return registry
