"""
Central numeric constants for the sketch solver.

Usage::

    from sketchsolver.kernel.tolerances import Tolerances

    eps = Tolerances.GEOMETRY_EPSILON
"""


class Tolerances:
    """
    Numeric defaults shared by the solver, diagnostics and inference.

    Categories:
    - SOLVER_*: Newton iteration and line search
    - JACOBIAN_*: derivatives and rank estimation
    - GEOMETRY_*: degeneracy detection
    - CONFLICT_*: structural conflict detection
    - INFERENCE_*: automatic constraint detection
    """

    # =========================================================================
    # Solver
    # =========================================================================

    # Absolute tolerance on the 2-norm of the residual vector
    SOLVER_TOLERANCE = 1e-9

    SOLVER_MAX_ITERATIONS = 50

    # Backtracking shrink factor for the line search
    SOLVER_DAMPING = 0.5

    # Smallest line-search step before the solve is declared stalled
    SOLVER_MIN_STEP = 1e-10

    # Interactive drags trade accuracy for latency
    DRAG_MAX_ITERATIONS = 15

    # =========================================================================
    # Jacobian
    # =========================================================================

    # Relative step for central differences: h = FD_STEP * max(1, |p|)
    JACOBIAN_FD_STEP = 1e-7

    # Singular values below RANK_TOLERANCE * sigma_max are treated as zero
    JACOBIAN_RANK_TOLERANCE = 1e-8

    # |J^T F| below this (scaled by max(1, |F|)) marks a least-squares floor
    JACOBIAN_GRADIENT_TOLERANCE = 1e-10

    # Row norm below which a constraint has lost all sensitivity
    JACOBIAN_ZERO_ROW = 1e-12

    # =========================================================================
    # Geometry
    # =========================================================================

    # Lines shorter / radii smaller than this are degenerate
    GEOMETRY_EPSILON = 1e-12

    # =========================================================================
    # Diagnostics
    # =========================================================================

    # Dimensional targets closer than this count as the same value
    CONFLICT_VALUE_TOLERANCE = 1e-9

    # =========================================================================
    # Inference
    # =========================================================================

    # Distance under which endpoints are inferred as coincident
    INFERENCE_DISTANCE = 0.1

    # |sin| or |cos| of an angle under which lines snap (about 0.57 deg)
    INFERENCE_ANGLE = 0.01
