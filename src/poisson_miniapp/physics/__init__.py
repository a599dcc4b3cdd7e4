from .sources import boundary_flux, on_dirichlet_boundary, source_term

__all__ = ["boundary_flux", "on_dirichlet_boundary", "source_term"]
