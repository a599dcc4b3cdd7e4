#!/usr/bin/env python3
"""
crs.py
Row-distributed compressed-row matrix and vector addressed by global indices.

Each rank owns a set of global rows (a RowMap). Entries are summed into a
static sparsity graph; contributions to rows owned elsewhere are buffered
and exported to their owner in fill_complete(), combining by addition.
Communication is mpi4py object alltoall/allreduce/gather only.
"""
from __future__ import annotations
from collections import defaultdict
from typing import Optional, Sequence

import numpy as np
import scipy.sparse as sps
from mpi4py import MPI


class InsertError(RuntimeError):
    """Fewer entries were accepted by a row than were requested."""

    def __init__(self, row: int):
        super().__init__(f"Could not insert on row {row}")
        self.row = int(row)


def _lookup(sorted_keys: np.ndarray, order: np.ndarray, keys) -> np.ndarray:
    keys = np.atleast_1d(np.asarray(keys, dtype=np.int64))
    if sorted_keys.size == 0:
        return np.full(keys.shape, -1, dtype=np.int64)
    pos = np.minimum(np.searchsorted(sorted_keys, keys), sorted_keys.size - 1)
    return np.where(sorted_keys[pos] == keys, order[pos], -1)


class RowMap:
    """Owned (+ ghost) global indices of one rank."""

    def __init__(self, comm: MPI.Comm, owned: Sequence[int],
                 ghosts: Optional[Sequence[int]] = None,
                 ghost_owners: Optional[Sequence[int]] = None,
                 size_global: Optional[int] = None):
        self.comm = comm
        self.owned = np.asarray(owned, dtype=np.int64)
        self.ghosts = np.asarray([] if ghosts is None else ghosts, dtype=np.int64)
        self.ghost_owners = np.asarray([] if ghost_owners is None else ghost_owners, dtype=np.int32)
        if self.ghosts.size != self.ghost_owners.size:
            raise ValueError("ghosts and ghost_owners must have the same length")
        self.size_global = comm.allreduce(self.owned.size) if size_global is None else int(size_global)

        self._owned_order = np.argsort(self.owned, kind="stable")
        self._owned_sorted = self.owned[self._owned_order]
        self._ghost_order = np.argsort(self.ghosts, kind="stable")
        self._ghost_sorted = self.ghosts[self._ghost_order]

    @classmethod
    def from_index_map(cls, index_map, comm: MPI.Comm) -> "RowMap":
        r0, r1 = index_map.local_range
        return cls(comm, np.arange(r0, r1, dtype=np.int64), index_map.ghosts,
                   index_map.owners, index_map.size_global)

    @property
    def size_local(self) -> int:
        return int(self.owned.size)

    @property
    def num_ghosts(self) -> int:
        return int(self.ghosts.size)

    @property
    def local_to_global(self) -> np.ndarray:
        """Global index of every local index, owned first then ghosts."""
        return np.concatenate([self.owned, self.ghosts])

    def local_index(self, gids) -> np.ndarray:
        """Local (owned) index of each global index, -1 where not owned."""
        return _lookup(self._owned_sorted, self._owned_order, gids)

    def owner(self, gids) -> np.ndarray:
        """Owning rank of each global index known to this rank, -1 if unknown."""
        gids = np.atleast_1d(np.asarray(gids, dtype=np.int64))
        out = np.full(gids.shape, -1, dtype=np.int32)
        out[self.local_index(gids) >= 0] = self.comm.rank
        g = _lookup(self._ghost_sorted, self._ghost_order, gids)
        out[g >= 0] = self.ghost_owners[g[g >= 0]]
        return out


class CrsGraph:
    """Static sparsity of the owned rows, in global column indices (sorted per row)."""

    def __init__(self, row_map: RowMap, indptr: Sequence[int], cols: Sequence[int]):
        indptr = np.asarray(indptr, dtype=np.int64)
        cols = np.asarray(cols, dtype=np.int64)
        if indptr.size != row_map.size_local + 1:
            raise ValueError(f"indptr has {indptr.size} entries for {row_map.size_local} rows")
        if cols.size != indptr[-1]:
            raise ValueError("column array does not match indptr")
        self.row_map = row_map
        self.indptr = indptr
        self.indices = np.empty_like(cols)
        for i in range(row_map.size_local):
            s, e = indptr[i], indptr[i + 1]
            row = np.unique(cols[s:e])
            if row.size != e - s:
                raise ValueError(f"duplicate columns in row {row_map.owned[i]}")
            self.indices[s:e] = row

    @classmethod
    def from_csr(cls, row_map: RowMap, indptr, global_cols) -> "CrsGraph":
        return cls(row_map, indptr, global_cols)

    @property
    def num_entries(self) -> int:
        return int(self.indices.size)

    def row(self, local_row: int) -> np.ndarray:
        return self.indices[self.indptr[local_row]:self.indptr[local_row + 1]]


class CrsMatrix:
    def __init__(self, graph: CrsGraph, col_map: Optional[RowMap] = None):
        self.graph = graph
        self.row_map = graph.row_map
        self.col_map = col_map or graph.row_map
        self.comm = self.row_map.comm
        self.values = np.zeros(graph.num_entries, dtype=np.float64)
        self._nonlocal = defaultdict(list)
        self.filled = False

    @property
    def shape(self):
        return (self.row_map.size_global, self.col_map.size_global)

    def sum_into_global_values(self, row: int, cols, vals) -> int:
        """
        Add vals at (row, cols). Returns the number of valid entries, i.e.
        columns present in the graph. Rows owned by another known rank are
        buffered until fill_complete() and count as fully valid.
        """
        if self.filled:
            raise RuntimeError("Matrix is fill-complete; no further insertion")
        cols = np.asarray(cols, dtype=np.int64)
        vals = np.asarray(vals, dtype=np.float64)
        if cols.shape != vals.shape:
            raise ValueError("cols and vals must have the same length")

        lrow = int(self.row_map.local_index(row)[0])
        if lrow < 0:
            if self.row_map.owner(row)[0] < 0:
                return 0
            self._nonlocal[int(row)].append((cols.copy(), vals.copy()))
            return int(cols.size)

        s = self.graph.indptr[lrow]
        row_cols = self.graph.row(lrow)
        if row_cols.size == 0:
            return 0
        pos = np.minimum(np.searchsorted(row_cols, cols), row_cols.size - 1)
        valid = row_cols[pos] == cols
        np.add.at(self.values, s + pos[valid], vals[valid])
        return int(np.count_nonzero(valid))

    def insert_block(self, rows, cols, data) -> int:
        """
        Sum a dense row-major block given in local row/column indices.
        Raises InsertError with the global row if any entry is rejected.
        """
        rows = np.asarray(rows, dtype=np.int64)
        cols = np.asarray(cols, dtype=np.int64)
        data = np.asarray(data, dtype=np.float64).reshape(rows.size, cols.size)
        grows = self.row_map.local_to_global[rows]
        gcols = self.col_map.local_to_global[cols]
        for i, grow in enumerate(grows):
            nvalid = self.sum_into_global_values(grow, gcols, data[i])
            if nvalid != gcols.size:
                raise InsertError(grow)
        return 0

    def fill_complete(self):
        """Send buffered rows to their owners and freeze the matrix."""
        if self.filled:
            return
        send = [[] for _ in range(self.comm.size)]
        for grow, chunks in self._nonlocal.items():
            owner = int(self.row_map.owner(grow)[0])
            cols = np.concatenate([c for c, _ in chunks])
            vals = np.concatenate([v for _, v in chunks])
            send[owner].append((grow, cols, vals))
        self._nonlocal.clear()

        for items in self.comm.alltoall(send):
            for grow, cols, vals in items:
                if self.row_map.local_index(grow)[0] < 0:
                    raise InsertError(grow)
                if self.sum_into_global_values(grow, cols, vals) != cols.size:
                    raise InsertError(grow)
        self.filled = True

    def _require_filled(self):
        if not self.filled:
            raise RuntimeError("Call fill_complete() first")

    def frobenius_norm(self) -> float:
        self._require_filled()
        return float(np.sqrt(self.comm.allreduce(float(np.dot(self.values, self.values)), op=MPI.SUM)))

    def to_scipy(self) -> sps.csr_matrix:
        """Owned rows (local numbering) by global columns."""
        self._require_filled()
        return sps.csr_matrix((self.values, self.graph.indices, self.graph.indptr),
                              shape=(self.row_map.size_local, self.col_map.size_global))

    def gather(self, root: int = 0) -> Optional[sps.csr_matrix]:
        """The whole matrix on `root`, None elsewhere."""
        local = self.to_scipy().tocoo()
        parts = self.comm.gather((self.row_map.owned[local.row], local.col, local.data), root=root)
        if self.comm.rank != root:
            return None
        r, c, v = (np.concatenate(x) for x in zip(*parts))
        return sps.coo_matrix((v, (r, c)), shape=self.shape).tocsr()


class DistributedVector:
    def __init__(self, row_map: RowMap):
        self.row_map = row_map
        self.comm = row_map.comm
        self.values = np.zeros(row_map.size_local, dtype=np.float64)

    def do_export(self, ghosted, mode: str = "add"):
        """
        Combine a ghosted array (owned entries followed by ghosts) into the
        owned values. mode="add" sums, mode="insert" overwrites.
        """
        if mode not in ("add", "insert"):
            raise ValueError(f"unknown export mode {mode!r}")
        ghosted = np.asarray(ghosted, dtype=np.float64)
        n, ng = self.row_map.size_local, self.row_map.num_ghosts
        if ghosted.size < n + ng:
            raise ValueError(f"expected {n + ng} ghosted entries, got {ghosted.size}")

        if mode == "add":
            self.values += ghosted[:n]
        else:
            self.values[:] = ghosted[:n]

        send = [[] for _ in range(self.comm.size)]
        gvals = ghosted[n:n + ng]
        for p in np.unique(self.row_map.ghost_owners):
            sel = self.row_map.ghost_owners == p
            send[int(p)] = (self.row_map.ghosts[sel], gvals[sel])
        for item in self.comm.alltoall(send):
            if len(item) == 0:
                continue
            gids, vals = item
            lidx = self.row_map.local_index(gids)
            if np.any(lidx < 0):
                raise RuntimeError(f"received entries for rows not owned by rank {self.comm.rank}")
            if mode == "add":
                np.add.at(self.values, lidx, vals)
            else:
                self.values[lidx] = vals
        return self

    def norm2(self) -> float:
        return float(np.sqrt(self.comm.allreduce(float(np.dot(self.values, self.values)), op=MPI.SUM)))

    def gather(self, root: int = 0) -> Optional[np.ndarray]:
        parts = self.comm.gather((self.row_map.owned, self.values), root=root)
        if self.comm.rank != root:
            return None
        out = np.zeros(self.row_map.size_global, dtype=np.float64)
        for idx, vals in parts:
            out[idx] = vals
        return out

    def scatter(self, global_values, root: int = 0):
        """Inverse of gather(): take the owned entries of an array held on `root`."""
        owned = self.comm.gather(self.row_map.owned, root=root)
        chunks = None
        if self.comm.rank == root:
            global_values = np.asarray(global_values, dtype=np.float64)
            chunks = [global_values[idx] for idx in owned]
        self.values[:] = self.comm.scatter(chunks, root=root)
        return self
