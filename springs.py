"""
Spring sources for the step kernel.

Two interchangeable topologies, both @ti.data_oriented so a kernel can take
either one as a template argument:

1. SpringTable: explicit edge list (a, b, rest_length, stiffness). A CSR
   adjacency index is built once on the host so each particle visits only
   its incident edges, in edge-list order.
2. GridTopology: implicit side x side cloth grid. Neighbors come from 12
   fixed offsets (4 structural, 4 shear, 4 bend), nothing is stored per edge.
   Row 0 is anchored.

Both expose the same two ti.funcs:
  spring_sum(i, pos)                                -> summed spring force
  record_spring_forces(i, pos, magnitudes, count)   -> same sum, plus per-edge
                                                       magnitudes for debugging
"""

import math
from dataclasses import dataclass

import numpy as np
import taichi as ti
import taichi.math as tm

from config import REST_SCALE
from dynamics import hooke_force
from errors import ConfigurationError

# ==============================================================================
# Grid offsets
# ==============================================================================

STRUCTURAL = 0
SHEAR = 1
BEND = 2
CATEGORY_NAMES = ("structural", "shear", "bend")

# (d_row, d_col, category). Order is the evaluation order, which is also the
# order debug magnitudes are recorded in.
GRID_OFFSETS = (
    (0, -1, STRUCTURAL), (0, 1, STRUCTURAL), (-1, 0, STRUCTURAL), (1, 0, STRUCTURAL),
    (-1, -1, SHEAR), (-1, 1, SHEAR), (1, -1, SHEAR), (1, 1, SHEAR),
    (0, -2, BEND), (0, 2, BEND), (-2, 0, BEND), (2, 0, BEND),
)
GRID_REST_SCALE = tuple(REST_SCALE[cat] for _, _, cat in GRID_OFFSETS)


@dataclass(frozen=True)
class SpringEdge:
    endpoint_a: int
    endpoint_b: int
    rest_length: float
    stiffness: float


# ==============================================================================
# Explicit edge list
# ==============================================================================

@ti.data_oriented
class SpringTable:
    """Explicit undirected springs with a precomputed per-particle adjacency."""

    def __init__(self, endpoint_a, endpoint_b, rest_length, stiffness, num_particles):
        a = np.asarray(endpoint_a, dtype=np.int64).ravel()
        b = np.asarray(endpoint_b, dtype=np.int64).ravel()
        rest = np.asarray(rest_length, dtype=np.float64).ravel()
        k = np.asarray(stiffness, dtype=np.float64).ravel()
        n = int(num_particles)

        if not (a.size == b.size == rest.size == k.size):
            raise ConfigurationError(
                f"spring arrays differ in length: a={a.size} b={b.size} "
                f"rest={rest.size} k={k.size}")
        if n <= 0:
            raise ConfigurationError(f"num_particles must be > 0, got {n}")
        if a.size:
            bad = (a < 0) | (a >= n) | (b < 0) | (b >= n)
            if bad.any():
                e = int(np.flatnonzero(bad)[0])
                raise ConfigurationError(
                    f"spring {e} references particle outside [0, {n}): ({a[e]}, {b[e]})")
            same = a == b
            if same.any():
                e = int(np.flatnonzero(same)[0])
                raise ConfigurationError(f"spring {e} connects particle {a[e]} to itself")
            if not (rest > 0.0).all():
                e = int(np.flatnonzero(~(rest > 0.0))[0])
                raise ConfigurationError(f"spring {e} rest_length must be > 0, got {rest[e]}")
            if not (k >= 0.0).all():
                e = int(np.flatnonzero(~(k >= 0.0))[0])
                raise ConfigurationError(f"spring {e} stiffness must be >= 0, got {k[e]}")

        self.num_particles = n
        self.num_springs = int(a.size)

        # CSR: every edge appears twice (once per endpoint), grouped by owner,
        # ordered by edge index inside each group.
        owner = np.concatenate([a, b])
        other = np.concatenate([b, a])
        edge_id = np.concatenate([np.arange(a.size), np.arange(a.size)])
        order = np.lexsort((edge_id, owner))
        counts = np.bincount(owner, minlength=n)
        start = np.zeros(n + 1, dtype=np.int32)
        np.cumsum(counts, out=start[1:])

        self._start_np = start
        self._other_np = other[order].astype(np.int32)
        self._rest_np = np.concatenate([rest, rest])[order].astype(np.float32)
        self._k_np = np.concatenate([k, k])[order].astype(np.float32)

        slots = max(1, self._other_np.size)
        self.adj_start = ti.field(dtype=ti.i32, shape=n + 1)
        self.adj_other = ti.field(dtype=ti.i32, shape=slots)
        self.adj_rest = ti.field(dtype=ti.f32, shape=slots)
        self.adj_k = ti.field(dtype=ti.f32, shape=slots)
        self.adj_start.from_numpy(start)
        if self._other_np.size:
            self.adj_other.from_numpy(self._other_np)
            self.adj_rest.from_numpy(self._rest_np)
            self.adj_k.from_numpy(self._k_np)

    @classmethod
    def from_edges(cls, edges, num_particles):
        edges = list(edges)
        return cls([e.endpoint_a for e in edges], [e.endpoint_b for e in edges],
                   [e.rest_length for e in edges], [e.stiffness for e in edges],
                   num_particles)

    def neighbors(self, i):
        """(neighbor, rest_length, stiffness) for every spring touching particle i."""
        lo, hi = self._start_np[i], self._start_np[i + 1]
        return [(int(self._other_np[e]), float(self._rest_np[e]), float(self._k_np[e]))
                for e in range(lo, hi)]

    def apply_params(self, params):
        """Explicit springs carry their own stiffness; nothing to upload."""

    def describe(self):
        return f"explicit springs={self.num_springs}"

    @ti.func
    def spring_sum(self, i, pos):
        total = tm.vec3(0.0)
        for e in range(self.adj_start[i], self.adj_start[i + 1]):
            total += hooke_force(pos[i], pos[self.adj_other[e]], self.adj_rest[e], self.adj_k[e])
        return total

    @ti.func
    def record_spring_forces(self, i, pos, magnitudes, count):
        total = tm.vec3(0.0)
        m = 0
        for e in range(self.adj_start[i], self.adj_start[i + 1]):
            f = hooke_force(pos[i], pos[self.adj_other[e]], self.adj_rest[e], self.adj_k[e])
            total += f
            if m < magnitudes.shape[0]:
                magnitudes[m] = f.norm()
                m += 1
        count[None] = m
        return total


# ==============================================================================
# Implicit cloth grid
# ==============================================================================

@ti.data_oriented
class GridTopology:
    """
    side x side grid over the first side**2 particles, side = floor(sqrt(N)).

    Particles at index >= side**2 (when N is not a perfect square) have no
    springs. Stiffness and base rest length are 0-D fields refreshed from
    SimulationParams before every step.
    """

    def __init__(self, num_particles):
        n = int(num_particles)
        if n <= 0:
            raise ConfigurationError(f"num_particles must be > 0, got {n}")
        self.num_particles = n
        self.side = math.isqrt(n)
        if self.side * self.side != n:
            print(f"[Grid][WARN] N={n} is not a perfect square; "
                  f"{n - self.side ** 2} particles outside the {self.side}x{self.side} grid "
                  f"get no springs")

        self.stiffness = ti.Vector.field(3, dtype=ti.f32, shape=())
        self.base_rest = ti.field(dtype=ti.f32, shape=())

    def row_col(self, i):
        return divmod(int(i), self.side)

    def is_pinned(self, i):
        return 0 <= i < self.side

    def pinned_indices(self):
        return np.arange(self.side)

    def neighbors(self, i):
        """(neighbor_index, category) in evaluation order."""
        if not 0 <= i < self.side * self.side:
            return []
        row, col = self.row_col(i)
        out = []
        for d_row, d_col, category in GRID_OFFSETS:
            r, c = row + d_row, col + d_col
            if 0 <= r < self.side and 0 <= c < self.side:
                out.append((r * self.side + c, category))
        return out

    def springs(self, i, params):
        """(neighbor, rest_length, stiffness) triples under the given params."""
        ks = params.grid_stiffness
        return [(j, params.base_rest_length * REST_SCALE[cat], ks[cat])
                for j, cat in self.neighbors(i)]

    def apply_params(self, params):
        self.stiffness[None] = ti.Vector(list(params.grid_stiffness))
        self.base_rest[None] = params.base_rest_length

    def describe(self):
        counts = ", ".join(f"{count} {name}" for name, count in
                           zip(CATEGORY_NAMES, grid_spring_counts(self.side)))
        return f"grid {self.side}x{self.side} ({counts})"

    @ti.func
    def neighbor_index(self, i, d_row, d_col):
        """Flat index of the neighbor at (d_row, d_col), or -1 if off-grid."""
        j = -1
        row = i // self.side
        col = i % self.side
        r = row + d_row
        c = col + d_col
        if i < self.side * self.side and r >= 0 and r < self.side and c >= 0 and c < self.side:
            j = r * self.side + c
        return j

    @ti.func
    def spring_sum(self, i, pos):
        total = tm.vec3(0.0)
        ks = self.stiffness[None]
        base = self.base_rest[None]
        for k in ti.static(range(len(GRID_OFFSETS))):
            j = self.neighbor_index(i, GRID_OFFSETS[k][0], GRID_OFFSETS[k][1])
            if j >= 0:
                total += hooke_force(pos[i], pos[j],
                                     base * GRID_REST_SCALE[k], ks[GRID_OFFSETS[k][2]])
        return total

    @ti.func
    def record_spring_forces(self, i, pos, magnitudes, count):
        total = tm.vec3(0.0)
        ks = self.stiffness[None]
        base = self.base_rest[None]
        m = 0
        for k in ti.static(range(len(GRID_OFFSETS))):
            j = self.neighbor_index(i, GRID_OFFSETS[k][0], GRID_OFFSETS[k][1])
            if j >= 0:
                f = hooke_force(pos[i], pos[j],
                                base * GRID_REST_SCALE[k], ks[GRID_OFFSETS[k][2]])
                total += f
                if m < magnitudes.shape[0]:
                    magnitudes[m] = f.norm()
                    m += 1
        count[None] = m
        return total


# ==============================================================================
# Explicit cloth generators
# ==============================================================================

def grid_spring_counts(side):
    """Undirected spring counts per category for a side x side grid."""
    return ((side - 1) * side * 2,
            (side - 1) ** 2 * 2,
            max(side - 2, 0) * side * 2)


def build_grid_springs(side, spacing, structural_k, shear_k, bend_k, structural_only=False):
    """
    Explicit springs equivalent to a side x side cloth grid.

    Per cell: horizontal and vertical structural springs, both diagonals
    (down-right from the cell, down-left from its right neighbor) and
    skip-one bend springs. structural_only keeps just the first two.
    """
    structural_rest = spacing * REST_SCALE[STRUCTURAL]
    shear_rest = spacing * REST_SCALE[SHEAR]
    bend_rest = spacing * REST_SCALE[BEND]

    springs = []
    for row in range(side):
        for col in range(side):
            current = row * side + col
            if col < side - 1:
                springs.append(SpringEdge(current, current + 1, structural_rest, structural_k))
            if row < side - 1:
                springs.append(SpringEdge(current, current + side, structural_rest, structural_k))
            if structural_only:
                continue
            if row < side - 1 and col < side - 1:
                springs.append(SpringEdge(current, current + side + 1, shear_rest, shear_k))
                springs.append(SpringEdge(current + 1, current + side, shear_rest, shear_k))
            if col < side - 2:
                springs.append(SpringEdge(current, current + 2, bend_rest, bend_k))
            if row < side - 2:
                springs.append(SpringEdge(current, current + 2 * side, bend_rest, bend_k))

    if structural_only:
        print(f"[Springs] Generated {len(springs)} structural springs for grid size {side}")
    else:
        counts = ", ".join(f"{count} {name}" for name, count in
                           zip(CATEGORY_NAMES, grid_spring_counts(side)))
        print(f"[Springs] Generated springs: {counts}")
    return springs
