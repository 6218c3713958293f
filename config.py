"""
Configuration parameters for the mass-spring cloth simulator.

This module defines all simulation parameters:
- Time stepping and particle mass
- External forces (gravity, viscous damping)
- Sphere obstacle (radius, restitution, friction)
- Grid springs (per-category stiffness, base rest length)
- Debug capture and host driver defaults

Module constants are defaults. Kernels never read them directly except the
numerical guards; everything tunable per step travels in SimulationParams.
"""

import math
from dataclasses import dataclass, fields, replace

import numpy as np

from errors import ConfigurationError

# ==============================================================================
# Time stepping
# ==============================================================================

DT = 0.001                  # Step size (s). Stiff springs need small steps,
                            # explicit integration has no stability guarantee
MASS = 1.0                  # Mass of every particle
DAMPING = 0.05              # Linear viscous drag: f -= DAMPING * v

# ==============================================================================
# External forces
# ==============================================================================

GRAVITY = (0.0, -9.81, 0.0)

# ==============================================================================
# Sphere obstacle (centered at the origin)
# ==============================================================================

SPHERE_RADIUS = 0.3         # 0 disables collision entirely
RESTITUTION = 0.3           # Fraction of reflected velocity kept after a bounce
FRICTION = 0.0              # Coulomb coefficient on the tangential force
                            # 0 = frictionless (instanced variant)

# ==============================================================================
# Grid springs (cloth topology)
# ==============================================================================

STRUCTURAL_K = 1000.0       # Left/right/up/down neighbors
SHEAR_K = 800.0             # Diagonals, slightly softer than structural
BEND_K = 500.0              # Two cells away, softest
BASE_REST_LENGTH = 0.02     # Structural rest length
                            # shear = base * sqrt(2), bend = base * 2

# Rest-length multipliers per category (structural, shear, bend)
REST_SCALE = (1.0, math.sqrt(2.0), 2.0)

# ==============================================================================
# Numerical guards
# ==============================================================================

LENGTH_EPS = 1e-4           # Springs shorter than this contribute no force
                            # (direction undefined)
SURFACE_OFFSET = 1e-3       # Push-out distance beyond the sphere surface
                            # so the next step does not start inside
TANGENT_EPS = 1e-4          # Below this tangential force, friction is skipped

# ==============================================================================
# Debug capture
# ==============================================================================

DEBUG_MAX_SPRINGS = 32      # Per-edge magnitudes kept for the debug particle
DEBUG_PARTICLE = 0          # Particle whose forces are summarized

# ==============================================================================
# Host driver (run.py / scripts/bench.py)
# ==============================================================================

GRID_SIDE = 32              # Cloth is GRID_SIDE x GRID_SIDE particles
CLOTH_HEIGHT = 0.5          # Initial y of the cloth plane
LOG_EVERY = 100             # Print the debug frame every N steps

# ==============================================================================
# Variants
# ==============================================================================
# The kernel shipped in several near-identical variants that disagree on
# gravity and bounce. They are kept as named overrides instead of picking one.

PRESETS = {
    # Instanced particles, explicit spring buffer, bouncy sphere
    "instances": {"gravity": (0.0, -9.8, 0.0), "restitution": 0.8, "friction": 0.0},
    # Cloth grid with friction against the sphere
    "cloth": {"gravity": (0.0, -9.81, 0.0), "restitution": 0.3, "friction": 0.5},
    # Slow-motion drape for inspecting the contact
    "slow": {"gravity": (0.0, -0.1, 0.0), "restitution": 0.3, "friction": 0.5},
}


@dataclass
class SimulationParams:
    """Per-step parameters. The host may edit these freely between steps."""

    delta_time: float = DT
    damping: float = DAMPING
    mass: float = MASS
    gravity: tuple = GRAVITY
    sphere_radius: float = SPHERE_RADIUS
    restitution: float = RESTITUTION
    friction: float = FRICTION
    structural_k: float = STRUCTURAL_K
    shear_k: float = SHEAR_K
    bend_k: float = BEND_K
    base_rest_length: float = BASE_REST_LENGTH

    def __post_init__(self):
        self._normalize_gravity()

    def _normalize_gravity(self):
        # gravity may be reassigned as a list or array between steps
        try:
            values = np.asarray(self.gravity, dtype=float).ravel()
        except (TypeError, ValueError) as err:
            raise ConfigurationError(f"gravity must be numeric, got {self.gravity!r}") from err
        self.gravity = tuple(float(g) for g in values)

    @classmethod
    def preset(cls, name, **overrides):
        """Build params from a named variant plus explicit overrides."""
        if name not in PRESETS:
            raise ConfigurationError(
                f"unknown preset {name!r} (expected one of {sorted(PRESETS)})")
        values = dict(PRESETS[name])
        values.update(overrides)
        return cls(**values)

    def with_changes(self, **changes):
        return replace(self, **changes)

    @property
    def grid_stiffness(self):
        """(structural, shear, bend) stiffness triple."""
        return (self.structural_k, self.shear_k, self.bend_k)

    def validate(self):
        """
        Check every parameter, raising ConfigurationError on the first bad one.

        Returns self so construction sites can chain it.
        """
        self._normalize_gravity()
        if len(self.gravity) != 3:
            raise ConfigurationError(f"gravity must have 3 components, got {len(self.gravity)}")
        for name in ("delta_time", "mass", "base_rest_length"):
            value = getattr(self, name)
            if not value > 0.0:
                raise ConfigurationError(f"{name} must be > 0, got {value}")
        for name in ("damping", "sphere_radius", "friction",
                     "structural_k", "shear_k", "bend_k"):
            value = getattr(self, name)
            if not value >= 0.0:
                raise ConfigurationError(f"{name} must be >= 0, got {value}")
        if not 0.0 <= self.restitution <= 1.0:
            raise ConfigurationError(f"restitution must be in [0, 1], got {self.restitution}")
        for f in fields(self):
            value = getattr(self, f.name)
            values = value if isinstance(value, tuple) else (value,)
            if not all(math.isfinite(v) for v in values):
                raise ConfigurationError(f"{f.name} must be finite, got {value}")
        return self

    def describe(self):
        g = ", ".join(f"{c:g}" for c in self.gravity)
        return (f"dt={self.delta_time:g} mass={self.mass:g} damping={self.damping:g} "
                f"g=({g}) sphere={self.sphere_radius:g} e={self.restitution:g} "
                f"mu={self.friction:g}")
