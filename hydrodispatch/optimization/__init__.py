"""Optimization module for hydrothermal commitment, dispatch and pricing."""

from hydrodispatch.optimization.backend import (
    ConflictResult,
    ConflictStatus,
    PyomoBackend,
    SolverBackend,
)
from hydrodispatch.optimization.config import (
    ModelOptions,
    OptimizationConfig,
    SolverOptions,
)
from hydrodispatch.optimization.diagnostics import (
    InfeasibilityReport,
    RootCause,
    check_constraint_violations,
    diagnose_infeasibility,
)
from hydrodispatch.optimization.model import BuiltModel, DispatchModelBuilder
from hydrodispatch.optimization.results import (
    CostBreakdown,
    PriceTable,
    SolverResult,
    SolveStatus,
)
from hydrodispatch.optimization.two_stage import (
    HydrothermalOptimizer,
    solve_lp_relaxation,
    solve_two_stage,
)
from hydrodispatch.optimization.variables import QuantityKind

__all__ = [
    "BuiltModel",
    "ConflictResult",
    "ConflictStatus",
    "CostBreakdown",
    "DispatchModelBuilder",
    "HydrothermalOptimizer",
    "InfeasibilityReport",
    "ModelOptions",
    "OptimizationConfig",
    "PriceTable",
    "PyomoBackend",
    "QuantityKind",
    "RootCause",
    "SolveStatus",
    "SolverBackend",
    "SolverOptions",
    "SolverResult",
    "check_constraint_violations",
    "diagnose_infeasibility",
    "solve_lp_relaxation",
    "solve_two_stage",
]
