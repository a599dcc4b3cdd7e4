#!/usr/bin/env python3
"""
sources.py
Data for the model problem

  -div(grad u) = f   in the unit square/cube
             u = 0   on x0 = 0 and x0 = 1
        du/dn  = g   on the remaining boundary

with a Gaussian bump source centred at (0.5, 0.5) and a sinusoidal flux.

All callables follow the dolfinx interpolation convention: x has shape
(3, npts) and the return value has shape (npts,).
"""
from __future__ import annotations
import sys

import numpy as np

DBL_EPSILON = sys.float_info.epsilon

SOURCE_AMPLITUDE = 10.0
SOURCE_WIDTH = 0.02
FLUX_FREQUENCY = 5.0


def on_dirichlet_boundary(x: np.ndarray) -> np.ndarray:
    return np.logical_or(x[0] < DBL_EPSILON, x[0] > 1.0 - DBL_EPSILON)


def source_term(x: np.ndarray) -> np.ndarray:
    """f = 10 exp(-((x0-0.5)^2 + (x1-0.5)^2) / 0.02)"""
    dx = x[0] - 0.5
    dy = x[1] - 0.5
    return SOURCE_AMPLITUDE * np.exp(-(dx * dx + dy * dy) / SOURCE_WIDTH)


def boundary_flux(x: np.ndarray) -> np.ndarray:
    """g = sin(5 x0)"""
    return np.sin(FLUX_FREQUENCY * x[0])
