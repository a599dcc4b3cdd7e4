from .meshes import create_unit_mesh, mesh_size_for_dofs, unit_cube, unit_square

__all__ = ["create_unit_mesh", "mesh_size_for_dofs", "unit_cube", "unit_square"]
