#!/usr/bin/env python3
from __future__ import annotations
import gmsh
from mpi4py import MPI
from dolfinx.io import gmsh as gmshio

# ---------- Gmsh helpers ----------
def gmsh_preamble(name: str, h: float):
    gmsh.initialize()
    gmsh.option.setNumber("General.Terminal", 0)
    gmsh.model.add(name)
    gmsh.option.setNumber("Mesh.CharacteristicLengthMax", h)
    gmsh.option.setNumber("Mesh.CharacteristicLengthMin", h)

def finalize_to_dolfinx(comm: MPI.Comm, gdim: int, model_rank: int = 0):
    if comm.rank == model_rank:
        gmsh.model.occ.synchronize()
        gmsh.model.mesh.generate(gdim)
    out = gmshio.model_to_mesh(gmsh.model, comm, model_rank, gdim=gdim)
    return out[0]

def create_gmsh_unit_mesh(comm: MPI.Comm, dim: int, h: float = 0.05):
    """
    Unstructured unit square (dim=2) or unit cube (dim=3).
    The geometry is built on rank 0 only and distributed by dolfinx.
    Physical group 1 = all cells; there are no facet tags since the
    Dirichlet boundary is located geometrically.
    """
    if dim not in (2, 3):
        raise ValueError(f"dim must be 2 or 3, got {dim!r}")
    if h <= 0.0:
        raise ValueError(f"mesh size h must be positive, got {h}")
    gmsh_preamble(f"unit{dim}d", h)
    try:
        if comm.rank == 0:
            occ = gmsh.model.occ
            if dim == 2:
                tag = occ.addRectangle(0, 0, 0, 1.0, 1.0)
            else:
                tag = occ.addBox(0, 0, 0, 1.0, 1.0, 1.0)
            occ.synchronize()
            gmsh.model.addPhysicalGroup(dim, [tag], 1)
        return finalize_to_dolfinx(comm, dim)
    finally:
        gmsh.finalize()
