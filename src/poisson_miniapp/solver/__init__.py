from .crs_problem import CrsSystem, assemble_crs, crs_problem, cross_validate
from .diagnostics import CrossValidation, SolveReport
from .forms import PoissonForms, build_forms
from .petsc_problem import KrylovSolve, assemble_petsc, petsc_problem

__all__ = [
    "CrossValidation", "CrsSystem", "KrylovSolve", "PoissonForms", "SolveReport",
    "assemble_crs", "assemble_petsc", "build_forms", "crs_problem", "cross_validate",
    "petsc_problem",
]
