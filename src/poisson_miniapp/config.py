"""
config.py
Run configuration for the Poisson miniapp.

Defaults mirror the PETSc option dicts used throughout the solvers:
CG + algebraic multigrid, tight relative tolerance.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Union

BACKENDS = ("petsc", "crs")
CELL_TYPES = {2: ("triangle", "quadrilateral"), 3: ("tetrahedron", "hexahedron")}
MESH_SOURCES = ("builtin", "gmsh")

PetscOption = Union[str, int, float]

DEFAULT_PETSC_OPTIONS: Dict[str, PetscOption] = {
    "ksp_type": "cg",
    "pc_type": "gamg",
    "ksp_rtol": 1.0e-8,
    "ksp_max_it": 1000,
}


def parse_option(text: str):
    """Split a ``KEY=VALUE`` string; VALUE is coerced to int/float when it looks like one."""
    key, sep, value = text.partition("=")
    key = key.strip().lstrip("-")
    if not sep or not key:
        raise ValueError(f"PETSc option must look like KEY=VALUE, got {text!r}")
    value = value.strip()
    for cast in (int, float):
        try:
            return key, cast(value)
        except ValueError:
            pass
    return key, value


@dataclass
class MiniappConfig:
    backend: str = "petsc"
    dim: int = 2
    n: Optional[int] = 32
    ndofs: Optional[int] = None      # per process, overrides n when given
    cell_type: Optional[str] = None  # default: simplex for the dimension
    mesh_source: str = "builtin"
    h: float = 0.05                  # characteristic length for gmsh meshes
    petsc_prefix: str = "poisson_"
    petsc_options: Dict[str, PetscOption] = field(default_factory=lambda: dict(DEFAULT_PETSC_OPTIONS))
    amg_rtol: float = 1.0e-8
    amg_maxiter: int = 200
    crosscheck_rtol: float = 1.0e-10
    output: Optional[str] = None
    plot: Optional[str] = None
    log_level: str = "INFO"
    timings: bool = False

    def __post_init__(self):
        if self.backend not in BACKENDS:
            raise ValueError(f"Unknown backend {self.backend!r}; expected one of {BACKENDS}")
        if self.dim not in CELL_TYPES:
            raise ValueError(f"dim must be 2 or 3, got {self.dim!r}")
        if self.cell_type is None:
            self.cell_type = CELL_TYPES[self.dim][0]
        if self.cell_type not in CELL_TYPES[self.dim]:
            raise ValueError(f"cell type {self.cell_type!r} is not valid in {self.dim}D")
        if self.mesh_source not in MESH_SOURCES:
            raise ValueError(f"Unknown mesh source {self.mesh_source!r}")
        if self.ndofs is None and (self.n is None or self.n < 1):
            raise ValueError("Need a positive n or ndofs")
        if self.ndofs is not None and self.ndofs < 1:
            raise ValueError(f"ndofs must be positive, got {self.ndofs}")

    def with_petsc_options(self, options: Iterable[str]) -> "MiniappConfig":
        for text in options:
            key, value = parse_option(text)
            self.petsc_options[key] = value
        return self

    @classmethod
    def from_args(cls, args) -> "MiniappConfig":
        opts = dict(DEFAULT_PETSC_OPTIONS)
        opts.update({"ksp_type": args.ksp_type, "pc_type": args.pc_type,
                     "ksp_rtol": args.rtol, "ksp_max_it": args.max_it})
        cfg = cls(
            backend=args.backend, dim=args.dim, n=args.n, ndofs=args.ndofs,
            cell_type=args.cell_type, mesh_source=args.mesh, h=args.h,
            petsc_options=opts,
            amg_rtol=args.rtol, amg_maxiter=args.max_it,
            output=args.output, plot=args.plot,
            log_level=args.log_level, timings=args.timings,
        )
        return cfg.with_petsc_options(args.petsc_option or [])
