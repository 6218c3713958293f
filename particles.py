"""
Ping-pong particle storage.

Two position/velocity field pairs: one is `current` (read-only during a
step), the other `next` (each lane writes only its own slot). After the step
kernel finishes, swap() exchanges the roles. No write ever aliases a read,
so the per-particle loop needs no atomics.

Fields may be allocated with more lanes than particles; the step kernel
skips lanes at or beyond the particle count.
"""

import numpy as np
import taichi as ti

from errors import ConfigurationError


def grid_positions(rows, cols, spacing, height):
    """
    Row-major lattice in the XZ plane, centered on the origin.

    Index = row * cols + col, x follows col, z follows row, y = height.
    """
    row, col = np.divmod(np.arange(rows * cols), cols)
    pos = np.empty((rows * cols, 3), dtype=np.float32)
    pos[:, 0] = (col - cols / 2.0) * spacing
    pos[:, 1] = height
    pos[:, 2] = (row - rows / 2.0) * spacing
    return pos


def _as_state_array(name, values, n=None):
    arr = np.asarray(values, dtype=np.float32)
    if arr.ndim != 2 or arr.shape[1] != 3:
        raise ConfigurationError(f"{name} must have shape (N, 3), got {arr.shape}")
    if n is not None and arr.shape[0] != n:
        raise ConfigurationError(
            f"mismatched buffer lengths: {name} has {arr.shape[0]} rows, expected {n}")
    return arr


class ParticleBuffer:
    """Double-buffered positions/velocities plus a pinned mask."""

    def __init__(self, positions, velocities=None, pinned=None, lanes=None):
        pos_np = _as_state_array("positions", positions)
        n = pos_np.shape[0]
        if n == 0:
            raise ConfigurationError("particle buffer needs at least one particle")
        if velocities is None:
            vel_np = np.zeros_like(pos_np)
        else:
            vel_np = _as_state_array("velocities", velocities, n)

        lanes = n if lanes is None else int(lanes)
        if lanes < n:
            raise ConfigurationError(f"lanes ({lanes}) must be >= particle count ({n})")

        self.n = n
        self.lanes = lanes
        self.pos = [ti.Vector.field(3, dtype=ti.f32, shape=lanes) for _ in range(2)]
        self.vel = [ti.Vector.field(3, dtype=ti.f32, shape=lanes) for _ in range(2)]
        self.pinned = ti.field(dtype=ti.i32, shape=lanes)
        self._front = 0

        self.load(pos_np, vel_np)
        if pinned is not None:
            self.pin(pinned)

    # ------------------------------------------------------------------
    # Buffer roles
    # ------------------------------------------------------------------

    @property
    def current_pos(self):
        return self.pos[self._front]

    @property
    def current_vel(self):
        return self.vel[self._front]

    @property
    def next_pos(self):
        return self.pos[1 - self._front]

    @property
    def next_vel(self):
        return self.vel[1 - self._front]

    def swap(self):
        """next becomes current for the following step."""
        self._front = 1 - self._front

    # ------------------------------------------------------------------
    # Host access
    # ------------------------------------------------------------------

    def _padded(self, arr):
        if self.lanes == self.n:
            return arr
        out = np.zeros((self.lanes, 3), dtype=np.float32)
        out[:self.n] = arr
        return out

    def load(self, positions, velocities=None):
        """Overwrite both buffers (host-side reset). Pinned flags are kept."""
        pos_np = _as_state_array("positions", positions, self.n)
        vel_np = (np.zeros_like(pos_np) if velocities is None
                  else _as_state_array("velocities", velocities, self.n))
        pos_np = self._padded(pos_np)
        vel_np = self._padded(vel_np)
        for k in range(2):
            self.pos[k].from_numpy(pos_np)
            self.vel[k].from_numpy(vel_np)

    def pin(self, indices):
        """Mark particles as anchored. Accepts indices or a boolean mask of length N."""
        idx = np.asarray(indices)
        if idx.dtype == bool:
            if idx.shape != (self.n,):
                raise ConfigurationError(
                    f"pinned mask must have length {self.n}, got {idx.shape}")
            idx = np.flatnonzero(idx)
        idx = idx.astype(np.int64).ravel()
        if idx.size and (idx.min() < 0 or idx.max() >= self.n):
            raise ConfigurationError(f"pinned index out of range [0, {self.n})")
        mask = self.pinned.to_numpy()
        mask[idx] = 1
        self.pinned.from_numpy(mask)

    def pinned_mask(self):
        return self.pinned.to_numpy()[:self.n].astype(bool)

    def positions(self):
        return self.current_pos.to_numpy()[:self.n]

    def velocities(self):
        return self.current_vel.to_numpy()[:self.n]
