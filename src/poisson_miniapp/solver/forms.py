#!/usr/bin/env python3
"""
forms.py
Setup shared by both backends:

  Find u in V s.t.  ∫_Ω ∇u·∇v dx = ∫_Ω f v dx + ∫_∂Ω g v ds,   u = 0 on x0 ∈ {0, 1}

Returns the function space, the Dirichlet BC, the interpolated coefficients
and the compiled forms. No linear algebra is created here.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

import numpy as np
import ufl
from dolfinx import fem, mesh

from ..log import timed
from ..physics.sources import boundary_flux, on_dirichlet_boundary, source_term

logger = logging.getLogger(__name__)


@dataclass
class PoissonForms:
    V: fem.FunctionSpace
    bc: fem.DirichletBC
    f: fem.Function
    g: fem.Function
    a: fem.Form
    L: fem.Form

    @property
    def bcs(self) -> List[fem.DirichletBC]:
        return [self.bc]

    @property
    def index_map(self):
        return self.V.dofmap.index_map

    @property
    def num_dofs_global(self) -> int:
        return self.index_map.size_global * self.V.dofmap.index_map_bs


def build_forms(domain: mesh.Mesh, degree: int = 1, timings: Optional[Dict[str, float]] = None) -> PoissonForms:
    with timed("FunctionSpace", logger, timings):
        V = fem.functionspace(domain, ("Lagrange", degree))

    with timed("Forms", logger, timings):
        # Homogeneous Dirichlet BC on the x0 = 0 and x0 = 1 faces
        u0 = fem.Function(V, name="u0")
        u0.x.array[:] = 0.0
        bdofs = fem.locate_dofs_geometrical(V, on_dirichlet_boundary)
        bc = fem.dirichletbc(u0, bdofs)

        f = fem.Function(V, name="f")
        g = fem.Function(V, name="g")
        f.interpolate(source_term)
        g.interpolate(boundary_flux)

        u = ufl.TrialFunction(V)
        v = ufl.TestFunction(V)
        a = ufl.inner(ufl.grad(u), ufl.grad(v)) * ufl.dx
        L = ufl.inner(f, v) * ufl.dx + ufl.inner(g, v) * ufl.ds

        a_form = fem.form(a)
        L_form = fem.form(L)

    nb = domain.comm.allreduce(int(np.sum(bdofs < V.dofmap.index_map.size_local)))
    logger.debug("dofs=%d, Dirichlet dofs=%d", V.dofmap.index_map.size_global, nb)
    return PoissonForms(V=V, bc=bc, f=f, g=g, a=a_form, L=L_form)
