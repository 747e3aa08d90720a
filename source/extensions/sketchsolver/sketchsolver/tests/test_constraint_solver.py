"""
Tests for the damped Gauss-Newton solver and its DOF diagnosis.
"""

import math
import unittest

from sketchsolver.kernel.constraint_solver import (
    ConstraintSolver,
    SolveOptions,
    SolveResult,
    solve,
)
from sketchsolver.kernel.constraints import Constraint, ConstraintKind
from sketchsolver.kernel.diagnostics import DOFStatus
from sketchsolver.kernel.entities import SketchEntity
from sketchsolver.kernel.errors import (
    DegenerateGeometryError,
    InvalidConstraintError,
    InvalidReferenceError,
)

K = ConstraintKind


def triangle(p2_guess=(3.5, 2.5), scale=1.0):
    """3-4-5 right triangle: P0 fixed at the origin, P1 on the x axis."""
    x2, y2 = p2_guess
    entities = [
        SketchEntity.point(0, 0.0, 0.0, fixed=True),
        SketchEntity.point(1, 4.3 * scale, 0.4 * scale),
        SketchEntity.point(2, x2 * scale, y2 * scale),
    ]
    constraints = [
        Constraint(0, K.HORIZONTAL, (0, 1)),
        Constraint(1, K.DISTANCE, (0, 1), 4.0 * scale),
        Constraint(2, K.DISTANCE, (1, 2), 3.0 * scale),
        Constraint(3, K.DISTANCE, (0, 2), 5.0 * scale),
    ]
    return entities, constraints


class TestSolveOptions(unittest.TestCase):

    def test_defaults(self):
        opts = SolveOptions()
        self.assertEqual(opts.max_iterations, 50)
        self.assertEqual(opts.tolerance, 1e-9)
        self.assertEqual(opts.damping_factor, 0.5)

    def test_validation(self):
        with self.assertRaises(ValueError):
            SolveOptions(damping_factor=1.0)
        with self.assertRaises(ValueError):
            SolveOptions(max_iterations=-1)
        with self.assertRaises(ValueError):
            SolveOptions(tolerance=0.0)

    def test_from_dict_and_replace(self):
        opts = SolveOptions.from_dict({"max_iterations": 10, "tolerance": 1e-6})
        self.assertEqual(opts.max_iterations, 10)
        self.assertEqual(opts.replace(max_iterations=3).max_iterations, 3)
        self.assertEqual(opts.max_iterations, 10)
        with self.assertRaises(ValueError):
            SolveOptions.from_dict({"maxIter": 3})


class TestSolverBasics(unittest.TestCase):
    """Convergence on small well-posed sketches."""

    def setUp(self):
        self.solver = ConstraintSolver()

    def test_already_satisfied_is_idempotent(self):
        entities = [SketchEntity.point(0, 0, 0, fixed=True), SketchEntity.point(1, 4, 0)]
        constraints = [
            Constraint(0, K.HORIZONTAL, (0, 1)),
            Constraint(1, K.DISTANCE, (0, 1), 4.0),
        ]
        result = self.solver.solve(entities, constraints)
        self.assertTrue(result.success)
        self.assertLessEqual(result.iterations, 1)
        self.assertEqual(result.parameters, (0.0, 0.0, 4.0, 0.0))
        self.assertEqual(result.diagnosis, DOFStatus.FULLY_CONSTRAINED)

    def test_triangle_is_fully_constrained(self):
        entities, constraints = triangle()
        result = self.solver.solve(entities, constraints)
        self.assertTrue(result.success)
        self.assertEqual(result.diagnosis, DOFStatus.FULLY_CONSTRAINED)
        self.assertLess(result.residual_norm, 1e-9)
        x1, y1 = result.entity_params(1)
        x2, y2 = result.entity_params(2)
        self.assertAlmostEqual(x1, 4.0, places=6)
        self.assertAlmostEqual(y1, 0.0, places=6)
        self.assertAlmostEqual(x2, 4.0, places=6)
        self.assertAlmostEqual(y2, 3.0, places=6)
        self.assertEqual(result.rank, 4)
        self.assertEqual(result.remaining_dof, 0)
        self.assertEqual(result.redundant, 0)

    def test_single_point_is_under_constrained(self):
        result = self.solver.solve([SketchEntity.point(0, 2.5, -1.0)], [])
        self.assertTrue(result.success)
        self.assertEqual(result.diagnosis, DOFStatus.UNDER_CONSTRAINED)
        self.assertEqual(result.remaining_dof, 2)
        self.assertEqual(result.parameters, (2.5, -1.0))
        self.assertEqual(result.iterations, 0)

    def test_horizontal_with_fixed_point(self):
        entities = [SketchEntity.point(0, 0, 0, fixed=True), SketchEntity.point(1, 5, 3)]
        result = self.solver.solve(entities, [Constraint(0, K.HORIZONTAL, (0, 1))])
        self.assertTrue(result.success)
        self.assertEqual(result.entity_params(0), (0.0, 0.0))
        x, y = result.entity_params(1)
        self.assertAlmostEqual(x, 5.0)
        self.assertAlmostEqual(y, 0.0)
        self.assertEqual(result.diagnosis, DOFStatus.UNDER_CONSTRAINED)

    def test_horizontal_both_free_meet_in_the_middle(self):
        """The minimum-norm step splits the correction between both points."""
        entities = [SketchEntity.point(0, 0, 0), SketchEntity.point(1, 5, 3)]
        result = self.solver.solve(entities, [Constraint(0, K.HORIZONTAL, (0, 1))])
        self.assertTrue(result.success)
        self.assertAlmostEqual(result.entity_params(0)[1], 1.5)
        self.assertAlmostEqual(result.entity_params(1)[1], 1.5)

    def test_horizontal_line(self):
        entities = [SketchEntity.line(0, 0, 0, 5, 3)]
        result = self.solver.solve(entities, [Constraint(0, K.HORIZONTAL, (0,))])
        x1, y1, x2, y2 = result.entity_params(0)
        self.assertAlmostEqual(y1, y2)

    def test_radius_dimension(self):
        entities = [SketchEntity.circle(0, 0, 0, 1.0)]
        result = self.solver.solve(entities, [Constraint(0, K.RADIUS, (0,), 10.0)])
        self.assertTrue(result.success)
        self.assertAlmostEqual(result.entity_params(0)[2], 10.0)
        self.assertLessEqual(result.iterations, SolveOptions().max_iterations)
        # Center is still free
        self.assertEqual(result.diagnosis, DOFStatus.UNDER_CONSTRAINED)
        self.assertEqual(result.remaining_dof, 2)

    def test_angle_dimension(self):
        entities = [
            SketchEntity.line(0, 0, 0, 1, 0, fixed=True),
            SketchEntity.line(1, 0, 0, 1, 1),
        ]
        result = self.solver.solve(entities, [
            Constraint(0, K.COINCIDENT, (0, 1), selectors=("start", "start")),
            Constraint(1, K.ANGLE, (0, 1), math.radians(30)),
        ])
        self.assertTrue(result.success)
        x1, y1, x2, y2 = result.entity_params(1)
        self.assertAlmostEqual(math.degrees(math.atan2(y2 - y1, x2 - x1)), 30.0, places=6)

    def test_tangent_line_circle(self):
        entities = [
            SketchEntity.line(0, 0, 2, 10, 2, fixed=True),
            SketchEntity.circle(1, 5, 0, 1),
        ]
        result = self.solver.solve(entities, [Constraint(0, K.TANGENT, (0, 1))])
        self.assertTrue(result.success)
        cx, cy, r = result.entity_params(1)
        self.assertAlmostEqual(abs(cy - 2.0), r, places=6)

    def test_arc_endpoint_on_line_end(self):
        entities = [
            SketchEntity.line(0, 2, 0.5, 4, 0.5, fixed=True),
            SketchEntity.arc(1, 0, 0, 2, 0.0, math.pi / 2),
        ]
        result = self.solver.solve(entities, [
            Constraint(0, K.COINCIDENT, (0, 1), selectors=("start", "start")),
            Constraint(1, K.RADIUS, (1,), 2.0),
        ])
        self.assertTrue(result.success)
        arc = result.apply(entities)[1]
        sx, sy = arc.point_at("start")
        self.assertAlmostEqual(sx, 2.0, places=6)
        self.assertAlmostEqual(sy, 0.5, places=6)

    def test_solve_does_not_mutate_inputs(self):
        entities, constraints = triangle()
        before = list(entities)
        result = solve(entities, constraints)
        self.assertEqual(entities, before)
        solved = result.apply(entities)
        self.assertIsNot(solved[1], entities[1])
        self.assertEqual(entities[1].params, (4.3, 0.4))

    def test_reference_constraints_are_measured_not_solved(self):
        entities = [SketchEntity.circle(0, 0, 0, 1.0)]
        c = Constraint(0, K.RADIUS, (0,), 10.0, driving=False)
        result = self.solver.solve(entities, [c])
        self.assertTrue(result.success)
        self.assertEqual(result.equations, 0)
        self.assertEqual(result.entity_params(0)[2], 1.0)
        self.assertAlmostEqual(result.constraint_residuals[0], -9.0)


class TestSolverScale(unittest.TestCase):
    """Convergence does not depend on how large the coordinates are."""

    def test_small_correction_far_from_origin(self):
        entities = [SketchEntity.point(0, 0, 0, fixed=True), SketchEntity.point(1, 1000.0, 5e-8)]
        result = solve(entities, [Constraint(0, K.HORIZONTAL, (0, 1))])
        self.assertTrue(result.success)
        self.assertEqual(result.iterations, 1)
        self.assertAlmostEqual(result.entity_params(1)[1], 0.0, places=12)

    def test_large_triangle(self):
        for scale in (25.0, 250.0):
            entities, constraints = triangle(p2_guess=(3.6, 2.9), scale=scale)
            result = solve(entities, constraints)
            self.assertTrue(result.success, scale)
            self.assertEqual(result.diagnosis, DOFStatus.FULLY_CONSTRAINED)
            x2, y2 = result.entity_params(2)
            self.assertAlmostEqual(x2 / scale, 4.0, places=9)
            self.assertAlmostEqual(y2 / scale, 3.0, places=9)


class TestSolverKinds(unittest.TestCase):
    """One small sketch per kind, solved and checked against the geometry."""

    def setUp(self):
        self.solver = ConstraintSolver()

    def solved(self, entities, constraints):
        result = self.solver.solve(entities, constraints)
        self.assertTrue(result.success, result.diagnosis)
        return result

    def test_tangent_circles_external(self):
        entities = [
            SketchEntity.circle(0, 0, 0, 2.0, fixed=True),
            SketchEntity.circle(1, 5.0, 0.5, 1.0),
        ]
        result = self.solved(entities, [Constraint(0, K.TANGENT, (0, 1))])
        cx, cy, r = result.entity_params(1)
        self.assertAlmostEqual(math.hypot(cx, cy), 2.0 + r, places=6)

    def test_tangent_circles_internal(self):
        entities = [
            SketchEntity.circle(0, 0, 0, 5.0, fixed=True),
            SketchEntity.circle(1, 1.0, 0.5, 1.0),
        ]
        result = self.solved(entities, [Constraint(0, K.TANGENT, (0, 1))])
        cx, cy, r = result.entity_params(1)
        self.assertLess(r, 5.0)
        self.assertAlmostEqual(math.hypot(cx, cy), 5.0 - r, places=6)

    def test_equal_lines(self):
        entities = [
            SketchEntity.line(0, 0, 0, 3, 4, fixed=True),
            SketchEntity.line(1, 1, 1, 2, 1),
        ]
        result = self.solved(entities, [Constraint(0, K.EQUAL, (0, 1))])
        x1, y1, x2, y2 = result.entity_params(1)
        self.assertAlmostEqual(math.hypot(x2 - x1, y2 - y1), 5.0, places=6)

    def test_equal_circles(self):
        entities = [
            SketchEntity.circle(0, 0, 0, 2.0, fixed=True),
            SketchEntity.circle(1, 4, 4, 0.5),
        ]
        result = self.solved(entities, [Constraint(0, K.EQUAL, (0, 1))])
        self.assertAlmostEqual(result.entity_params(1)[2], 2.0, places=9)

    def test_point_line_distance_keeps_side(self):
        entities = [
            SketchEntity.line(0, 0, 0, 10, 0, fixed=True),
            SketchEntity.point(1, 3.0, 1.0),
        ]
        result = self.solved(entities, [Constraint(0, K.DISTANCE, (1, 0), 2.5)])
        x, y = result.entity_params(1)
        self.assertAlmostEqual(x, 3.0, places=6)
        self.assertAlmostEqual(y, 2.5, places=6)

    def test_concentric(self):
        entities = [
            SketchEntity.circle(0, 1, 2, 1.0, fixed=True),
            SketchEntity.arc(1, 0.5, 0.3, 2.0, 0.0, 1.0),
        ]
        result = self.solved(entities, [Constraint(0, K.CONCENTRIC, (0, 1))])
        cx, cy = result.entity_params(1)[:2]
        self.assertAlmostEqual(cx, 1.0, places=9)
        self.assertAlmostEqual(cy, 2.0, places=9)

    def test_midpoint(self):
        entities = [
            SketchEntity.point(0, 1, 3),
            SketchEntity.line(1, 0, 0, 4, 2, fixed=True),
        ]
        result = self.solved(entities, [Constraint(0, K.MIDPOINT, (0, 1))])
        x, y = result.entity_params(0)
        self.assertAlmostEqual(x, 2.0, places=9)
        self.assertAlmostEqual(y, 1.0, places=9)

    def test_point_on_line(self):
        entities = [
            SketchEntity.point(0, 3, 0),
            SketchEntity.line(1, 0, 0, 4, 4, fixed=True),
        ]
        result = self.solved(entities, [Constraint(0, K.POINT_ON_LINE, (0, 1))])
        x, y = result.entity_params(0)
        self.assertAlmostEqual(x, y, places=6)

    def test_symmetric(self):
        entities = [
            SketchEntity.point(0, 2, 1, fixed=True),
            SketchEntity.point(1, -1.5, 1.4),
            SketchEntity.line(2, 0, 0, 0, 5, fixed=True),
        ]
        result = self.solved(entities, [Constraint(0, K.SYMMETRIC, (0, 1, 2))])
        x, y = result.entity_params(1)
        self.assertAlmostEqual(x, -2.0, places=6)
        self.assertAlmostEqual(y, 1.0, places=6)

    def test_collinear(self):
        entities = [
            SketchEntity.line(0, 0, 0, 4, 0, fixed=True),
            SketchEntity.line(1, 5, 0.3, 8, -0.2),
        ]
        result = self.solved(entities, [Constraint(0, K.COLLINEAR, (0, 1))])
        x1, y1, x2, y2 = result.entity_params(1)
        self.assertAlmostEqual(y1, 0.0, places=6)
        self.assertAlmostEqual(y2, 0.0, places=6)


class TestSolverDiagnosis(unittest.TestCase):
    """Failure modes are reported through the result, not raised."""

    def setUp(self):
        self.solver = ConstraintSolver()

    def test_conflicting_horizontal_distances(self):
        entities = [SketchEntity.point(0, 0, 0), SketchEntity.point(1, 3, 1)]
        constraints = [
            Constraint(0, K.HORIZONTAL_DISTANCE, (0, 1), 5.0),
            Constraint(1, K.HORIZONTAL_DISTANCE, (0, 1), 8.0),
        ]
        result = self.solver.solve(entities, constraints)
        self.assertFalse(result.success)
        self.assertIn(result.diagnosis, (DOFStatus.OVER_CONSTRAINED, DOFStatus.INCONSISTENT))
        self.assertTrue(
            abs(result.constraint_residuals[0]) > 1e-6 or abs(result.constraint_residuals[1]) > 1e-6
        )
        self.assertEqual(sorted(result.unsatisfied()), [0, 1])
        self.assertEqual(len(result.conflicts), 1)
        self.assertEqual(result.conflicts[0].constraint_ids, (0, 1))

    def test_least_squares_floor_is_over_constrained(self):
        entities = [SketchEntity.point(0, 0, 0), SketchEntity.point(1, 3, 1)]
        result = self.solver.solve(entities, [
            Constraint(0, K.HORIZONTAL_DISTANCE, (0, 1), 5.0),
            Constraint(1, K.HORIZONTAL_DISTANCE, (0, 1), 8.0),
        ])
        self.assertEqual(result.diagnosis, DOFStatus.OVER_CONSTRAINED)
        self.assertAlmostEqual(result.constraint_residuals[0], 1.5, places=6)
        self.assertAlmostEqual(result.constraint_residuals[1], -1.5, places=6)
        self.assertEqual(result.redundant, 1)

    def test_nothing_free_is_over_constrained(self):
        entities = [SketchEntity.circle(0, 0, 0, 1.0, fixed=True)]
        result = self.solver.solve(entities, [Constraint(0, K.RADIUS, (0,), 10.0)])
        self.assertFalse(result.success)
        self.assertEqual(result.diagnosis, DOFStatus.OVER_CONSTRAINED)
        self.assertEqual(result.free_parameters, 0)

    def test_vanishing_gradient_is_singular(self):
        """A distance between coincident points has no usable direction."""
        entities = [SketchEntity.point(0, 1, 1, fixed=True), SketchEntity.point(1, 1, 1)]
        result = self.solver.solve(entities, [Constraint(0, K.DISTANCE, (0, 1), 5.0)])
        self.assertFalse(result.success)
        self.assertEqual(result.diagnosis, DOFStatus.NUMERICALLY_SINGULAR)
        self.assertEqual(result.entity_params(1), (1.0, 1.0))

    def test_iteration_budget_exhausted_is_inconsistent(self):
        entities, constraints = triangle(p2_guess=(1.0, 4.5))
        result = self.solver.solve(entities, constraints, SolveOptions(max_iterations=1))
        self.assertFalse(result.success)
        self.assertEqual(result.iterations, 1)
        self.assertEqual(result.diagnosis, DOFStatus.INCONSISTENT)

    def test_invalid_reference(self):
        entities = [SketchEntity.point(0, 0, 0)]
        with self.assertRaises(InvalidReferenceError):
            self.solver.solve(entities, [Constraint(0, K.COINCIDENT, (0, 7))])

    def test_duplicate_constraint_ids(self):
        entities = [SketchEntity.point(0, 0, 0), SketchEntity.point(1, 1, 1)]
        with self.assertRaises(InvalidConstraintError):
            self.solver.solve(entities, [
                Constraint(0, K.HORIZONTAL, (0, 1)),
                Constraint(0, K.VERTICAL, (0, 1)),
            ])

    def test_zero_radius_tangent_is_rejected(self):
        entities = [SketchEntity.line(0, 0, 0, 10, 0), SketchEntity.circle(1, 5, 5, 0.0)]
        with self.assertRaises(DegenerateGeometryError):
            self.solver.solve(entities, [Constraint(0, K.TANGENT, (0, 1))])


class TestSolveResult(unittest.TestCase):

    def setUp(self):
        entities, constraints = triangle()
        self.entities = entities
        self.result = ConstraintSolver().solve(entities, constraints)

    def test_immutable(self):
        self.assertIsInstance(self.result, SolveResult)
        with self.assertRaises(Exception):
            self.result.success = False
        with self.assertRaises(TypeError):
            self.result.constraint_residuals[0] = 1.0

    def test_residual_shapes(self):
        self.assertEqual(set(self.result.constraint_residuals), {0, 1, 2, 3})
        self.assertEqual(self.result.unsatisfied(), [])

    def test_statistics(self):
        stats = self.result.statistics
        self.assertEqual(stats["total_constraints"], 4)
        self.assertEqual(stats["satisfied_constraints"], 4)
        self.assertEqual(stats["geometric_constraints"], 1)
        self.assertEqual(stats["dimensional_constraints"], 3)
        self.assertEqual(stats["degrees_of_freedom"], 0)

    def test_to_dict(self):
        d = self.result.to_dict()
        self.assertTrue(d["success"])
        self.assertEqual(d["diagnosis"], "fully-constrained")
        self.assertEqual(len(d["parameters"]), 6)
        self.assertEqual(d["layout"]["size"], 6)

    def test_unsatisfied_defaults_to_solve_tolerance(self):
        entities = [SketchEntity.circle(0, 0, 0, 1.0)]
        opts = SolveOptions(tolerance=1e-6)
        result = solve(entities, [Constraint(0, K.RADIUS, (0,), 10.0)], opts)
        self.assertTrue(result.success)
        self.assertEqual(result.tolerance, 1e-6)
        self.assertEqual(result.to_dict()["tolerance"], 1e-6)

        loose = SolveResult(
            success=True, parameters=(), iterations=0, residual_norm=1e-7,
            constraint_residuals={0: 1e-7}, diagnosis=DOFStatus.FULLY_CONSTRAINED,
            tolerance=1e-6,
        )
        self.assertEqual(loose.unsatisfied(), [])
        self.assertEqual(loose.unsatisfied(1e-9), [0])


if __name__ == "__main__":
    unittest.main()
