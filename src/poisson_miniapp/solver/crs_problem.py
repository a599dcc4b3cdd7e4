#!/usr/bin/env python3
"""
crs_problem.py
Assemble the Poisson system twice: into the distributed CRS backend and
into PETSc, and report the norms of both so the assemblies can be compared.

CRS matrix: the form is assembled into a dolfinx native CSR matrix without
the reverse scatter, so every local row (owned and ghost) still holds only
this rank's contributions. Each row is then summed into a CrsMatrix by
global index; ghost rows travel to their owners in fill_complete().
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

import numpy as np
from dolfinx import fem, la, mesh
from petsc4py import PETSc

from ..linalg.amg import amg_gmres
from ..linalg.crs import CrsGraph, CrsMatrix, DistributedVector, RowMap
from ..log import timed
from .diagnostics import CrossValidation, SolveReport
from .forms import PoissonForms, build_forms
from .petsc_problem import assemble_petsc

logger = logging.getLogger(__name__)


def _crs_graph(pattern: la.MatrixCSR, comm) -> Tuple[CrsGraph, RowMap, RowMap]:
    """Graph of the owned rows from a finalized dolfinx sparsity pattern."""
    row_map = RowMap.from_index_map(pattern.index_map(0), comm)
    col_map = RowMap.from_index_map(pattern.index_map(1), comm)
    n = row_map.size_local
    indptr = pattern.indptr[:n + 1]
    cols = col_map.local_to_global[pattern.indices[:indptr[-1]]]
    return CrsGraph.from_csr(row_map, indptr, cols), row_map, col_map


def assemble_crs(forms: PoissonForms, timings: Optional[Dict[str, float]] = None) -> Tuple[CrsMatrix, DistributedVector]:
    with timed("Sparsity (CRS)", logger, timings):
        local = fem.create_matrix(forms.a)
        graph, row_map, col_map = _crs_graph(local, forms.V.mesh.comm)

    with timed("Assemble matrix (CRS)", logger, timings):
        fem.assemble_matrix(local, forms.a, bcs=forms.bcs)
        A = CrsMatrix(graph, col_map)
        indptr, indices, data = local.indptr, local.indices, local.data
        for i in range(row_map.size_local + row_map.num_ghosts):
            s, e = indptr[i], indptr[i + 1]
            if s < e:
                A.insert_block([i], indices[s:e], data[s:e])
        A.fill_complete()

    with timed("Assemble vector (CRS)", logger, timings):
        vec_map = RowMap.from_index_map(forms.index_map, row_map.comm)
        bloc = fem.assemble_vector(forms.L)
        fem.apply_lifting(bloc.array, [forms.a], bcs=[forms.bcs])
        b = DistributedVector(vec_map).do_export(bloc.array, mode="add")
        ghosted = np.zeros_like(bloc.array)
        ghosted[:vec_map.size_local] = b.values
        forms.bc.set(ghosted)
        b.values[:] = ghosted[:vec_map.size_local]
    return A, b


@dataclass
class CrsSystem:
    """The CRS copy of the system plus an AMG-preconditioned GMRES solve."""
    A: CrsMatrix
    b: DistributedVector
    rtol: float = 1e-8
    maxiter: int = 200
    timings: Optional[Dict[str, float]] = field(default=None, repr=False)

    def solve(self, u: fem.Function, root: int = 0) -> SolveReport:
        comm = self.A.comm
        with timed("Solve (CRS)", logger, self.timings):
            A = self.A.gather(root)
            b = self.b.gather(root)
            stats = None
            x = None
            error = None
            if comm.rank == root:
                try:
                    x, its, rnorm, info = amg_gmres(A, b, rtol=self.rtol, maxiter=self.maxiter)
                    stats = (its, rnorm, info)
                except Exception as exc:
                    error = exc
                    stats = f"{type(exc).__name__}: {exc}"
            stats = comm.bcast(stats, root=root)
            # every rank leaves together when the root solve fails
            if isinstance(stats, str):
                if error is not None:
                    raise error
                raise RuntimeError(f"CRS solve failed on rank {root}: {stats}")
            its, rnorm, info = stats
            xdist = DistributedVector(self.b.row_map).scatter(x, root=root)

        n = self.b.row_map.size_local
        u.x.array[:n] = xdist.values
        u.x.scatter_forward()
        report = SolveReport(backend="crs", iterations=int(its), residual_norm=float(rnorm),
                             converged=(info == 0),
                             reason="CONVERGED" if info == 0 else f"DIVERGED (info={info})")
        logger.info("AMG/GMRES: its=%d rnorm=%.3e (%s)", report.iterations, report.residual_norm, report.reason)
        return report


def cross_validate(crs_A: CrsMatrix, crs_b: DistributedVector, A: PETSc.Mat, b: PETSc.Vec,
                   rtol: float = 1e-10) -> CrossValidation:
    norms = {
        "crs": {"A": crs_A.frobenius_norm(), "b": crs_b.norm2()},
        "petsc": {"A": A.norm(PETSc.NormType.FROBENIUS), "b": b.norm(PETSc.NormType.NORM_2)},
    }
    check = CrossValidation(norms=norms, rtol=rtol)
    if crs_A.comm.rank == 0:
        level = logging.INFO if check.passed else logging.WARNING
        logger.log(level, "CRS vs PETSc: dA=%.2e db=%.2e (rtol=%.0e)",
                   check.differences["A"], check.differences["b"], rtol)
    return check


def crs_problem(domain: mesh.Mesh, amg_rtol: float = 1e-8, amg_maxiter: int = 200,
                timings: Optional[Dict[str, float]] = None):
    """
    Returns (A, b, u, crs): the PETSc matrix and vector, a zero solution
    Function, and the CrsSystem assembled from the same forms.
    """
    comm = domain.comm
    forms = build_forms(domain, timings=timings)

    A_crs, b_crs = assemble_crs(forms, timings)
    norm_A = A_crs.frobenius_norm()
    norm_b = b_crs.norm2()
    if comm.rank == 0:
        logger.info("NormA(CRS) = %.16g", norm_A)
        logger.info("Norm[b](CRS) = %.16g", norm_b)

    A, b = assemble_petsc(forms, timings)
    u = fem.Function(forms.V, name="u")
    crs = CrsSystem(A_crs, b_crs, rtol=amg_rtol, maxiter=amg_maxiter, timings=timings)
    return A, b, u, crs
