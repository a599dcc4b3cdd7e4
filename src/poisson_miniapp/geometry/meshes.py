# geometry/meshes.py
from __future__ import annotations

import numpy as np
from mpi4py import MPI
from dolfinx import mesh

_CELL_TYPES = {
    "triangle": mesh.CellType.triangle,
    "quadrilateral": mesh.CellType.quadrilateral,
    "tetrahedron": mesh.CellType.tetrahedron,
    "hexahedron": mesh.CellType.hexahedron,
}


def unit_square(comm=MPI.COMM_WORLD, nx=32, ny=32, cell_type="triangle"):
    return mesh.create_rectangle(comm, [np.array([0., 0.]), np.array([1., 1.])],
                                 n=(nx, ny), cell_type=_CELL_TYPES[cell_type])


def unit_cube(comm=MPI.COMM_WORLD, n=(12, 12, 12), cell_type="tetrahedron"):
    return mesh.create_box(comm, [np.array([0., 0., 0.]), np.array([1., 1., 1.])],
                           n=n, cell_type=_CELL_TYPES[cell_type])


def create_unit_mesh(comm: MPI.Comm, dim: int, n: int, cell_type: str = None):
    """Unit square (dim=2) or unit cube (dim=3) with n cells per side."""
    if dim == 2:
        return unit_square(comm, n, n, cell_type or "triangle")
    if dim == 3:
        return unit_cube(comm, (n, n, n), cell_type or "tetrahedron")
    raise ValueError(f"dim must be 2 or 3, got {dim!r}")


def mesh_size_for_dofs(ndofs_per_process: int, dim: int, comm_size: int = 1) -> int:
    """
    Cells per side for a weak-scaling run: P1 on an n^dim grid has (n+1)^dim dofs,
    so pick n with (n+1)^dim ~ ndofs_per_process * comm_size.
    """
    if ndofs_per_process < 1 or comm_size < 1:
        raise ValueError("ndofs_per_process and comm_size must be positive")
    total = ndofs_per_process * comm_size
    return max(1, int(round(total ** (1.0 / dim))) - 1)
