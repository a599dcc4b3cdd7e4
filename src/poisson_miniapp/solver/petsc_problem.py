#!/usr/bin/env python3
"""
petsc_problem.py
Assemble the Poisson system with PETSc and hand back a solve callback.

  A u = b,  A = a(V, V) with Dirichlet rows replaced by identity,
            b = L(V) lifted by the BC, BC values set in place.
"""
from __future__ import annotations
import logging
from typing import Dict, Mapping, Optional, Tuple

from dolfinx import fem, mesh
from dolfinx.fem import petsc as fem_petsc
from petsc4py import PETSc

from ..config import DEFAULT_PETSC_OPTIONS
from ..log import timed
from .diagnostics import SolveReport
from .forms import PoissonForms, build_forms

logger = logging.getLogger(__name__)

_KSP_REASONS = {getattr(PETSc.KSP.ConvergedReason, k): k
                for k in dir(PETSc.KSP.ConvergedReason) if not k.startswith("_")}


def assemble_petsc(forms: PoissonForms, timings: Optional[Dict[str, float]] = None) -> Tuple[PETSc.Mat, PETSc.Vec]:
    comm = forms.V.mesh.comm

    with timed("Assemble matrix", logger, timings):
        A = fem_petsc.create_matrix(forms.a)
        A.zeroEntries()
        fem_petsc.assemble_matrix(A, forms.a, bcs=forms.bcs)
        A.assemble()

    norm = A.norm(PETSc.NormType.FROBENIUS)
    if comm.rank == 0:
        logger.info("NormA(Petsc) = %.16g", norm)

    with timed("Assemble vector", logger, timings):
        b = fem_petsc.assemble_vector(forms.L)
        fem_petsc.apply_lifting(b, [forms.a], bcs=[forms.bcs])
        b.ghostUpdate(addv=PETSc.InsertMode.ADD, mode=PETSc.ScatterMode.REVERSE)
        fem_petsc.set_bc(b, forms.bcs)

    norm = b.norm(PETSc.NormType.NORM_2)
    if comm.rank == 0:
        logger.info("Norm[b](Petsc) = %.16g", norm)
    return A, b


class KrylovSolve:
    """Callable that solves A u = b with a PETSc KSP configured from an options dict."""

    def __init__(self, A: PETSc.Mat, b: PETSc.Vec, u: fem.Function,
                 prefix: str = "poisson_", petsc_options: Optional[Mapping] = None,
                 timings: Optional[Dict[str, float]] = None):
        self.A, self.b, self.u = A, b, u
        self.timings = timings
        self.ksp = PETSc.KSP().create(u.function_space.mesh.comm)
        self.ksp.setOperators(A)
        self.ksp.setOptionsPrefix(prefix)

        opts = PETSc.Options()
        options = dict(DEFAULT_PETSC_OPTIONS if petsc_options is None else petsc_options)
        for k, v in options.items():
            opts[f"{prefix}{k}"] = v
        self.ksp.setFromOptions()
        # Don't leak our keys into the global options database
        for k in options:
            del opts[f"{prefix}{k}"]

    def __call__(self) -> SolveReport:
        with timed("Solve", logger, self.timings):
            self.ksp.solve(self.b, self.u.x.petsc_vec)
        self.u.x.scatter_forward()
        reason = self.ksp.getConvergedReason()
        report = SolveReport(
            backend="petsc",
            iterations=self.ksp.getIterationNumber(),
            residual_norm=self.ksp.getResidualNorm(),
            converged=reason > 0,
            reason=_KSP_REASONS.get(reason, str(reason)),
        )
        logger.info("KSP %s/%s: its=%d rnorm=%.3e (%s)", self.ksp.getType(),
                    self.ksp.getPC().getType(), report.iterations, report.residual_norm, report.reason)
        return report

    def destroy(self):
        self.ksp.destroy()


def petsc_problem(domain: mesh.Mesh, prefix: str = "poisson_",
                  petsc_options: Optional[Mapping] = None,
                  timings: Optional[Dict[str, float]] = None):
    """
    Returns (A, b, u, solve): the assembled PETSc matrix and vector, a zero
    Function to hold the solution, and a callable that solves into it.
    """
    forms = build_forms(domain, timings=timings)
    A, b = assemble_petsc(forms, timings)
    u = fem.Function(forms.V, name="u")
    return A, b, u, KrylovSolve(A, b, u, prefix, petsc_options, timings)
