# Run with: mpirun -n 2 python -m pytest tests/test_crs_parallel.py
import numpy as np
import pytest
from mpi4py import MPI

from poisson_miniapp.linalg.crs import CrsGraph, CrsMatrix, DistributedVector, RowMap

COMM = MPI.COMM_WORLD
pytestmark = pytest.mark.skipif(COMM.size != 2, reason="needs exactly 2 MPI ranks")


def _row_map():
    # rank 0 owns {0, 1} and ghosts 2; rank 1 owns {2, 3} and ghosts 1
    r = COMM.rank
    owned = [2 * r, 2 * r + 1]
    ghost = [2] if r == 0 else [1]
    return RowMap(COMM, owned, ghosts=ghost, ghost_owners=[1 - r])


def test_ghost_rows_are_exported_to_owner():
    rmap = _row_map()
    graph = CrsGraph(rmap, [0, 4, 8], [0, 1, 2, 3] * 2)
    A = CrsMatrix(graph)
    assert A.sum_into_global_values(rmap.ghosts[0], [0, 1, 2, 3], np.ones(4)) == 4
    assert A.sum_into_global_values(rmap.owned[0], [rmap.owned[0]], [2.0]) == 1
    A.fill_complete()

    assert A.frobenius_norm() == pytest.approx(np.sqrt(20.0))
    full = A.gather(root=0)
    if COMM.rank == 0:
        np.testing.assert_allclose(full.toarray(), [[2, 0, 0, 0],
                                                    [1, 1, 1, 1],
                                                    [1, 1, 3, 1],
                                                    [0, 0, 0, 0]])
    else:
        assert full is None


def test_vector_ghosts_are_added_to_owner():
    b = DistributedVector(_row_map()).do_export(np.ones(3))
    np.testing.assert_allclose(b.values, [1.0, 2.0] if COMM.rank == 0 else [2.0, 1.0])
    assert b.norm2() == pytest.approx(np.sqrt(10.0))
    full = b.gather(root=0)
    if COMM.rank == 0:
        np.testing.assert_allclose(full, [1.0, 2.0, 2.0, 1.0])
    b.scatter(np.arange(4.0) if COMM.rank == 0 else None)
    np.testing.assert_allclose(b.values, np.arange(4.0)[2 * COMM.rank:2 * COMM.rank + 2])
