"""
Simulation driver: owns the particle buffers and spring source, and advances
them one step at a time.

Step pipeline:
  1. validate params, refresh grid stiffness fields
  2. step_particles: parallel over lanes, current -> next
  3. record_particle: debug summary from the (still frozen) current buffer
  4. swap buffers

A step either runs for every particle or not at all; there is no partial
state to observe from the host.
"""

import numpy as np
import taichi as ti
import taichi.math as tm

from config import CLOTH_HEIGHT, DEBUG_PARTICLE, SimulationParams
from diagnostics import DebugRecorder
from dynamics import evaluate_forces, step_particles
from errors import ConfigurationError
from particles import ParticleBuffer, grid_positions
from springs import GridTopology, SpringTable


class Simulation:
    def __init__(self, particles, springs, params=None, debug_index=DEBUG_PARTICLE,
                 record_debug=True):
        self.params = (params if params is not None else SimulationParams()).validate()
        if springs.num_particles != particles.n:
            raise ConfigurationError(
                f"spring topology built for {springs.num_particles} particles, "
                f"buffer holds {particles.n}")
        if not 0 <= debug_index < particles.n:
            raise ConfigurationError(
                f"debug_index {debug_index} outside [0, {particles.n})")

        self.particles = particles
        self.springs = springs
        self.debug_index = debug_index
        self.recorder = DebugRecorder() if record_debug else None
        self.frame = 0
        self._forces = None

        if isinstance(springs, GridTopology):
            particles.pin(springs.pinned_indices())

        print(f"[Sim] N={particles.n} lanes={particles.lanes} {springs.describe()} "
              f"pinned={int(particles.pinned_mask().sum())}")
        print(f"[Sim] {self.params.describe()}")

    # ------------------------------------------------------------------
    # Factories
    # ------------------------------------------------------------------

    @classmethod
    def cloth(cls, side, params=None, spacing=None, height=CLOTH_HEIGHT, **kwargs):
        """Square cloth over the sphere using the implicit grid topology."""
        params = params if params is not None else SimulationParams.preset("cloth")
        spacing = params.base_rest_length if spacing is None else spacing
        particles = ParticleBuffer(grid_positions(side, side, spacing, height))
        return cls(particles, GridTopology(side * side), params, **kwargs)

    @classmethod
    def from_edges(cls, positions, edges, params=None, velocities=None, pinned=None,
                   lanes=None, **kwargs):
        """Explicit spring list over arbitrary initial positions."""
        particles = ParticleBuffer(positions, velocities, pinned=pinned, lanes=lanes)
        return cls(particles, SpringTable.from_edges(edges, particles.n), params, **kwargs)

    # ------------------------------------------------------------------
    # Stepping
    # ------------------------------------------------------------------

    def step(self, params=None):
        """
        Advance one step and return the DebugFrame (None when debug is off).

        params, when given, replaces the stored parameters from this step on.
        """
        if params is not None:
            self.params = params.validate()
        p = self.params.validate()
        self.springs.apply_params(p)

        buf = self.particles
        step_particles(buf.current_pos, buf.current_vel, buf.next_pos, buf.next_vel,
                       buf.pinned, self.springs, buf.n,
                       tm.vec3(*p.gravity), p.mass, p.damping, p.delta_time,
                       p.sphere_radius, p.restitution, p.friction)

        frame = None
        if self.recorder is not None:
            frame = self.recorder.record(buf, self.springs, p, self.debug_index, self.frame)

        buf.swap()
        self.frame += 1
        return frame

    def run(self, steps, params=None):
        frame = None
        for _ in range(steps):
            frame = self.step(params)
            params = None
        return frame

    # ------------------------------------------------------------------
    # Host-side views
    # ------------------------------------------------------------------

    def positions(self):
        return self.particles.positions()

    def velocities(self):
        return self.particles.velocities()

    def forces(self):
        """Pre-collision net force on every particle under the current params."""
        p = self.params.validate()
        self.springs.apply_params(p)
        buf = self.particles
        if self._forces is None:
            self._forces = ti.Vector.field(3, dtype=ti.f32, shape=buf.lanes)
        evaluate_forces(buf.current_pos, buf.current_vel, buf.pinned, self.springs, buf.n,
                        tm.vec3(*p.gravity), p.mass, p.damping, self._forces)
        return self._forces.to_numpy()[:buf.n]

    def kinetic_energy(self):
        v = self.velocities().astype(np.float64)
        return 0.5 * self.params.mass * float(np.sum(v * v))
