"""
Force breakdown for a single particle.

Runs as its own tiny serial kernel after the step kernel and before the
buffer swap, re-deriving gravity, spring and damping forces for one particle
from the same frozen `current` snapshot the step read. It never touches
simulation state.
"""

from dataclasses import dataclass, field

import taichi as ti
import taichi.math as tm

from config import DEBUG_MAX_SPRINGS, DEBUG_PARTICLE


@dataclass
class DebugFrame:
    gravity_force: float
    spring_forces: list = field(default_factory=list)
    total_spring_force: float = 0.0
    final_force: float = 0.0
    particle: int = DEBUG_PARTICLE
    frame: int = 0

    def lines(self):
        return [
            f"Forces on instance {self.particle} (frame {self.frame}):",
            f"  Gravity force: {self.gravity_force}",
            f"  Total spring force: {self.total_spring_force}",
            f"  Final force (with damping): {self.final_force}",
        ]


@ti.kernel
def record_particle(pos: ti.template(), vel: ti.template(), springs: ti.template(),
                    index: ti.i32, gravity: tm.vec3, mass: ti.f32, damping: ti.f32,
                    magnitudes: ti.template(), count: ti.template(), summary: ti.template()):
    # range(1) keeps the edge walk serial so magnitudes land in evaluation order
    for _ in range(1):
        g = gravity * mass
        spring_total = springs.record_spring_forces(index, pos, magnitudes, count)
        final = g + spring_total - damping * vel[index]
        summary[None] = tm.vec3(g.norm(), spring_total.norm(), final.norm())


class DebugRecorder:
    """Owns the small device buffers the debug kernel writes into."""

    def __init__(self, capacity=DEBUG_MAX_SPRINGS):
        self.capacity = capacity
        self.magnitudes = ti.field(dtype=ti.f32, shape=capacity)
        self.count = ti.field(dtype=ti.i32, shape=())
        self.summary = ti.Vector.field(3, dtype=ti.f32, shape=())

    def record(self, particles, springs, params, index=DEBUG_PARTICLE, frame=0):
        """Summarize the forces on `index` as seen from the current buffer."""
        record_particle(particles.current_pos, particles.current_vel, springs, index,
                        tm.vec3(*params.gravity), params.mass, params.damping,
                        self.magnitudes, self.count, self.summary)
        summary = self.summary[None]
        count = self.count[None]
        magnitudes = self.magnitudes.to_numpy()[:count]
        return DebugFrame(
            gravity_force=float(summary[0]),
            spring_forces=[float(m) for m in magnitudes],
            total_spring_force=float(summary[1]),
            final_force=float(summary[2]),
            particle=index,
            frame=frame,
        )
