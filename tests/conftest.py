import os
import sys

import numpy as np
import pytest
import taichi as ti

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

# Fields can only be allocated after init; every test shares one CPU runtime.
ti.init(arch=ti.cpu, default_fp=ti.f32, random_seed=0)

from config import SimulationParams  # noqa: E402


@pytest.fixture
def free_params():
    """No gravity, no damping, no sphere: springs only."""
    return SimulationParams(delta_time=0.1, damping=0.0, mass=1.0,
                            gravity=(0.0, 0.0, 0.0), sphere_radius=0.0)


@pytest.fixture
def rng():
    return np.random.default_rng(1234)
