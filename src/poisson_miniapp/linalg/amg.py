from __future__ import annotations
import logging

import numpy as np
import pyamg
import scipy.sparse as sps

logger = logging.getLogger(__name__)


def amg_gmres(A: sps.csr_matrix, b: np.ndarray, rtol: float = 1e-8, maxiter: int = 200, x0=None):
    """
    Solve A x = b with GMRES preconditioned by one smoothed-aggregation V-cycle.

    Returns (x, iterations, residual_norm, info); info == 0 means converged.
    """
    ml = pyamg.smoothed_aggregation_solver(A)
    logger.debug("AMG hierarchy: %d levels, operator complexity %.2f",
                 len(ml.levels), ml.operator_complexity())
    residuals = []
    x, info = ml.solve(b, x0=x0, tol=rtol, maxiter=maxiter, accel="gmres",
                       residuals=residuals, return_info=True)
    rnorm = float(np.linalg.norm(b - A @ x))
    return x, max(len(residuals) - 1, 0), rnorm, info
