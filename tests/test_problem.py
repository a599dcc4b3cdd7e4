import importlib

import numpy as np
import pytest
import scipy.sparse as sps

dolfinx = pytest.importorskip("dolfinx")
pytest.importorskip("pyamg")

from mpi4py import MPI
from petsc4py import PETSc
from dolfinx import fem

from poisson_miniapp.cli.main import main, relative_l2_difference
from poisson_miniapp.geometry import create_unit_mesh, mesh_size_for_dofs
from poisson_miniapp.physics import on_dirichlet_boundary
from poisson_miniapp.solver import build_forms, crs_problem, cross_validate, petsc_problem

N = 8


@pytest.fixture(scope="module")
def domain():
    return create_unit_mesh(MPI.COMM_WORLD, 2, N)


def _owned_boundary_rows(V):
    imap = V.dofmap.index_map
    dofs = fem.locate_dofs_geometrical(V, on_dirichlet_boundary)
    dofs = dofs[dofs < imap.size_local]
    return dofs + imap.local_range[0]


def test_mesh_size_for_dofs():
    assert mesh_size_for_dofs(1089, 2) == 32
    assert mesh_size_for_dofs(1000, 3) == 9
    assert mesh_size_for_dofs(250, 3, comm_size=4) == 9
    assert mesh_size_for_dofs(1, 2) == 1
    with pytest.raises(ValueError):
        mesh_size_for_dofs(0, 2)


def test_unit_cube():
    cube = create_unit_mesh(MPI.COMM_WORLD, 3, 2)
    assert cube.topology.dim == 3
    with pytest.raises(ValueError):
        create_unit_mesh(MPI.COMM_WORLD, 4, 2)


def test_forms(domain):
    forms = build_forms(domain)
    assert forms.num_dofs_global == (N + 1) ** 2
    # x0 = 0 and x0 = 1 columns of vertices
    nb = domain.comm.allreduce(len(_owned_boundary_rows(forms.V)), op=MPI.SUM)
    assert nb == 2 * (N + 1)
    assert domain.comm.allreduce(float(np.max(forms.f.x.array)), op=MPI.MAX) == pytest.approx(10.0)


def test_petsc_problem(domain):
    A, b, u, solve = petsc_problem(domain, prefix="test_petsc_")
    ndofs = (N + 1) ** 2
    assert A.getSize() == (ndofs, ndofs)
    assert b.getSize() == ndofs
    assert np.allclose(u.x.array, 0.0)

    # Dirichlet rows are identity rows, and their rhs entries are zero
    r0, r1 = A.getOwnershipRange()
    b_local = b.getArray(readonly=True)
    for row in _owned_boundary_rows(u.function_space):
        cols, vals = A.getRow(int(row))
        assert vals[cols == row] == pytest.approx([1.0])
        assert np.allclose(vals[cols != row], 0.0)
        assert b_local[row - r0] == 0.0

    report = solve()
    assert report.converged
    assert report.backend == "petsc"
    assert report.iterations > 0
    assert domain.comm.allreduce(float(np.abs(u.x.array).max()), op=MPI.MAX) > 0.0
    n = u.function_space.dofmap.index_map.size_local
    bdofs = fem.locate_dofs_geometrical(u.function_space, on_dirichlet_boundary)
    assert np.allclose(u.x.array[bdofs[bdofs < n]], 0.0)
    solve.destroy()


def test_crs_matches_petsc(domain):
    A, b, u, crs = crs_problem(domain)
    check = cross_validate(crs.A, crs.b, A, b, rtol=1e-10)
    assert check.passed, check.differences
    assert check.norms["crs"]["A"] == pytest.approx(A.norm(PETSc.NormType.FROBENIUS))

    # same matrix entry by entry
    full = crs.A.gather()
    if domain.comm.size == 1:
        ai, aj, av = A.getValuesCSR()
        petsc_csr = sps.csr_matrix((av, aj, ai), shape=A.getSize())
        np.testing.assert_allclose(full.toarray(), petsc_csr.toarray(), atol=1e-12)

    # same right-hand side, boundary entries included
    full_b = crs.b.gather()
    if domain.comm.size == 1:
        np.testing.assert_allclose(full_b, b.getArray(readonly=True), atol=1e-12)
        rows = _owned_boundary_rows(u.function_space)
        assert np.all(full_b[rows] == 0.0)


def test_crs_solve_matches_petsc(domain):
    A, b, u, crs = crs_problem(domain, amg_rtol=1e-10)
    _, _, u_petsc, solve = petsc_problem(domain, prefix="test_cmp_",
                                         petsc_options={"ksp_type": "cg", "pc_type": "jacobi",
                                                        "ksp_rtol": 1e-12, "ksp_max_it": 2000})
    assert solve().converged
    solve.destroy()
    report = crs.solve(u)
    assert report.converged
    assert report.backend == "crs"
    assert relative_l2_difference(u_petsc, u) < 1e-6


def test_cli_runs_both_backends(capsys):
    assert main(["--backend", "petsc", "--n", "6", "--log-level", "INFO"]) == 0
    assert main(["--backend", "crs", "--n", "6"]) == 0
    err = capsys.readouterr().err
    if MPI.COMM_WORLD.rank == 0:
        assert "NormA(Petsc)" in err
        assert "NormA(CRS)" in err
        assert "Norm[b](CRS)" in err


def test_cli_rejects_bad_option():
    with pytest.raises(SystemExit):
        main(["--petsc-option", "no_equals_sign"])


def test_cross_validation_flags_mismatch():
    from poisson_miniapp.solver import CrossValidation

    ok = CrossValidation({"crs": {"A": 2.0, "b": 1.0}, "petsc": {"A": 2.0, "b": 1.0 + 1e-14}}, rtol=1e-10)
    assert ok.passed
    bad = CrossValidation({"crs": {"A": 2.0, "b": 1.0}, "petsc": {"A": 2.2, "b": 1.0}}, rtol=1e-10)
    assert not bad.passed
    assert bad.differences["A"] == pytest.approx(0.2 / 2.2)
    with pytest.raises(ValueError):
        CrossValidation({"crs": {"A": 1.0}}, rtol=1e-10)


def test_gmsh_unit_square():
    pytest.importorskip("gmsh")
    from poisson_miniapp.geometry.gmsh_mesh import create_gmsh_unit_mesh

    mesh2d = create_gmsh_unit_mesh(MPI.COMM_WORLD, 2, h=0.25)
    assert mesh2d.topology.dim == 2
    ncells = mesh2d.topology.index_map(2).size_global
    assert ncells > 8
    with pytest.raises(ValueError):
        create_gmsh_unit_mesh(MPI.COMM_WORLD, 1, h=0.25)


@pytest.mark.skipif(MPI.COMM_WORLD.size > 1, reason="tmp_path differs per rank")
def test_output_files(domain, tmp_path):
    from poisson_miniapp.output import plot_solution, write_xdmf

    _, _, u, solve = petsc_problem(domain, prefix="test_out_")
    solve()
    solve.destroy()
    xdmf = write_xdmf(u, tmp_path / "out" / "u")
    assert xdmf.exists() and xdmf.with_suffix(".h5").exists()
    png = plot_solution(u, tmp_path / "u.png")
    assert png.exists()


def test_crs_solve_failure_reaches_every_rank(monkeypatch):
    from poisson_miniapp.linalg.crs import CrsGraph, CrsMatrix, DistributedVector, RowMap
    from poisson_miniapp.solver import CrsSystem
    crs_module = importlib.import_module("poisson_miniapp.solver.crs_problem")

    comm = MPI.COMM_WORLD
    rmap = RowMap(comm, [comm.rank])
    A = CrsMatrix(CrsGraph(rmap, [0, 1], [comm.rank]))
    A.insert_block([0], [0], [2.0])
    A.fill_complete()
    b = DistributedVector(rmap).do_export([1.0])

    def broken(*args, **kwargs):
        raise ValueError("hierarchy setup failed")

    monkeypatch.setattr(crs_module, "amg_gmres", broken)
    with pytest.raises((ValueError, RuntimeError), match="hierarchy setup failed"):
        CrsSystem(A, b).solve(u=None)
