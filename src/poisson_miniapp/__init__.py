"""Poisson miniapp: DOLFINx assembly on PETSc and on a distributed CRS backend."""

__version__ = "0.2.0"
