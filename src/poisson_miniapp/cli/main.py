#!/usr/bin/env python3
"""
Poisson miniapp driver.

  mpirun -n 4 poisson-miniapp --backend petsc --dim 3 --ndofs 50000
  poisson-miniapp --backend crs --n 64 --plot results/u.png
"""
from __future__ import annotations
import argparse
import logging
import sys

import numpy as np
from mpi4py import MPI
from dolfinx import fem
from dolfinx.common import list_timings

from ..config import BACKENDS, DEFAULT_PETSC_OPTIONS, MESH_SOURCES, MiniappConfig
from ..geometry import create_unit_mesh, mesh_size_for_dofs
from ..log import configure_logging, timed
from ..solver import KrylovSolve, crs_problem, cross_validate, petsc_problem

logger = logging.getLogger("poisson_miniapp.cli")


def build_parser():
    p = argparse.ArgumentParser(prog="poisson-miniapp",
                                description="Assemble and solve -div(grad u) = f on the unit square/cube.")
    p.add_argument("--backend", choices=BACKENDS, default="petsc",
                   help="petsc: assemble and solve with PETSc; crs: also assemble/solve on the CRS backend and compare.")
    p.add_argument("--dim", type=int, choices=[2, 3], default=2)
    size = p.add_mutually_exclusive_group()
    size.add_argument("--n", type=int, default=32, help="Cells per side.")
    size.add_argument("--ndofs", type=int, default=None, help="Target dofs per process (weak scaling).")
    p.add_argument("--cell-type", dest="cell_type", default=None,
                   choices=["triangle", "quadrilateral", "tetrahedron", "hexahedron"])
    p.add_argument("--mesh", choices=MESH_SOURCES, default="builtin")
    p.add_argument("--h", type=float, default=0.05, help="Characteristic length for --mesh gmsh.")

    # Solver controls
    p.add_argument("--ksp-type", dest="ksp_type", default=DEFAULT_PETSC_OPTIONS["ksp_type"])
    p.add_argument("--pc-type", dest="pc_type", default=DEFAULT_PETSC_OPTIONS["pc_type"])
    p.add_argument("--rtol", type=float, default=DEFAULT_PETSC_OPTIONS["ksp_rtol"])
    p.add_argument("--max-it", dest="max_it", type=int, default=DEFAULT_PETSC_OPTIONS["ksp_max_it"])
    p.add_argument("--petsc-option", dest="petsc_option", action="append", metavar="KEY=VALUE",
                   help="Extra PETSc option (repeatable), e.g. pc_hypre_type=boomeramg")

    # Output
    p.add_argument("--output", default=None, help="Write the solution to PATH.xdmf")
    p.add_argument("--plot", default=None, help="Write a PNG of the 2D solution")
    p.add_argument("--log-level", dest="log_level", default="INFO",
                   choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    p.add_argument("--timings", action="store_true", help="Print the dolfinx timing table")
    return p


def build_mesh(cfg: MiniappConfig, comm: MPI.Comm):
    if cfg.mesh_source == "gmsh":
        from ..geometry.gmsh_mesh import create_gmsh_unit_mesh
        return create_gmsh_unit_mesh(comm, cfg.dim, cfg.h)
    n = cfg.n if cfg.ndofs is None else mesh_size_for_dofs(cfg.ndofs, cfg.dim, comm.size)
    return create_unit_mesh(comm, cfg.dim, n, cfg.cell_type)


def relative_l2_difference(u: fem.Function, w: fem.Function) -> float:
    comm = u.function_space.mesh.comm
    n = u.function_space.dofmap.index_map.size_local
    du = u.x.array[:n] - w.x.array[:n]
    num = comm.allreduce(float(np.dot(du, du)), op=MPI.SUM)
    den = comm.allreduce(float(np.dot(u.x.array[:n], u.x.array[:n])), op=MPI.SUM)
    return float(np.sqrt(num / den)) if den > 0.0 else float(np.sqrt(num))


def run(cfg: MiniappConfig, comm: MPI.Comm = MPI.COMM_WORLD) -> int:
    timings = {}
    with timed("Mesh", logger, timings):
        domain = build_mesh(cfg, comm)

    ok = True
    if cfg.backend == "petsc":
        A, b, u, solve = petsc_problem(domain, cfg.petsc_prefix, cfg.petsc_options, timings)
        report = solve()
        solve.destroy()
        ok = report.converged
    else:
        A, b, u, crs = crs_problem(domain, cfg.amg_rtol, cfg.amg_maxiter, timings)
        check = cross_validate(crs.A, crs.b, A, b, cfg.crosscheck_rtol)
        solve = KrylovSolve(A, b, u, cfg.petsc_prefix, cfg.petsc_options, timings)
        report = solve()
        solve.destroy()
        u_crs = fem.Function(u.function_space, name="u_crs")
        crs_report = crs.solve(u_crs)
        diff = relative_l2_difference(u, u_crs)
        if comm.rank == 0:
            logger.info("|u(Petsc) - u(CRS)| / |u(Petsc)| = %.3e", diff)
        ok = report.converged and crs_report.converged and check.passed

    ndofs = u.function_space.dofmap.index_map.size_global
    umin = comm.allreduce(float(u.x.array.min()) if u.x.array.size else np.inf, op=MPI.MIN)
    umax = comm.allreduce(float(u.x.array.max()) if u.x.array.size else -np.inf, op=MPI.MAX)
    if comm.rank == 0:
        logger.info("ranks=%d dofs=%d backend=%s", comm.size, ndofs, cfg.backend)
        logger.info("u range: min=%.6g, max=%.6g", umin, umax)
        for name, seconds in timings.items():
            logger.info("  %-24s %9.4f s", name, seconds)

    if cfg.output:
        from ..output import write_xdmf
        write_xdmf(u, cfg.output)
    if cfg.plot:
        from ..output import plot_solution
        plot_solution(u, cfg.plot)
    if cfg.timings:
        list_timings(comm)

    A.destroy()
    b.destroy()
    return 0 if ok else 1


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        cfg = MiniappConfig.from_args(args)
    except ValueError as e:
        parser.error(str(e))
    configure_logging(cfg.log_level)
    return run(cfg)


if __name__ == "__main__":
    sys.exit(main())
