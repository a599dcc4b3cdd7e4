from __future__ import annotations
import logging
from pathlib import Path

import numpy as np
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import matplotlib.tri as mtri
from dolfinx import fem
from dolfinx.io import XDMFFile

logger = logging.getLogger(__name__)


def write_xdmf(u: fem.Function, path) -> Path:
    domain = u.function_space.mesh
    out = Path(path).with_suffix(".xdmf")
    if domain.comm.rank == 0:
        out.parent.mkdir(parents=True, exist_ok=True)
    domain.comm.Barrier()
    with XDMFFile(domain.comm, str(out), "w") as xf:
        xf.write_mesh(domain)
        xf.write_function(u)
    logger.info("wrote %s (+ .h5)", out)
    return out


def gather_dof_values(u: fem.Function, root: int = 0):
    """(coords, values) of all owned dofs on `root`, (None, None) elsewhere."""
    V = u.function_space
    comm = V.mesh.comm
    n = V.dofmap.index_map.size_local
    coords = V.tabulate_dof_coordinates()[:n]
    parts = comm.gather((coords, u.x.array[:n].real.copy()), root=root)
    if comm.rank != root:
        return None, None
    return np.vstack([c for c, _ in parts]), np.concatenate([v for _, v in parts])


def plot_solution(u: fem.Function, path, title: str = "u") -> Path:
    """Filled contour plot of a 2D solution on rank 0."""
    domain = u.function_space.mesh
    if domain.topology.dim != 2:
        raise ValueError("plot_solution only supports 2D meshes")
    coords, values = gather_dof_values(u)
    out = Path(path)
    if domain.comm.rank == 0:
        out.parent.mkdir(parents=True, exist_ok=True)
        tri = mtri.Triangulation(coords[:, 0], coords[:, 1])
        fig, ax = plt.subplots(figsize=(5.5, 4.5), dpi=120)
        cs = ax.tricontourf(tri, values, levels=30)
        fig.colorbar(cs, ax=ax)
        ax.set_aspect("equal")
        ax.set_xlabel("x"); ax.set_ylabel("y")
        ax.set_title(f"{title}: min={values.min():.3e}, max={values.max():.3e}")
        fig.tight_layout(); fig.savefig(out); plt.close(fig)
        logger.info("wrote %s", out)
    return out
