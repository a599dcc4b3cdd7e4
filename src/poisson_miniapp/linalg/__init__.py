from .crs import CrsGraph, CrsMatrix, DistributedVector, InsertError, RowMap

__all__ = ["CrsGraph", "CrsMatrix", "DistributedVector", "InsertError", "RowMap"]
