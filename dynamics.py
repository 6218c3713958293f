"""
Per-step physics kernels for the mass-spring simulator.

This module provides:
1. Force accumulation (gravity + incident springs - viscous drag)
2. Sphere collision (push-out, Coulomb friction, restitution bounce)
3. Semi-implicit Euler integration
4. The step kernel that chains all three, one lane per particle

Every lane reads only the `current` buffers and writes only its own slot of
the `next` buffers, so the outer loop runs fully parallel with no atomics.
The spring source is a template argument: any object with a
spring_sum(i, pos) ti.func (SpringTable or GridTopology) works.
"""

import taichi as ti
import taichi.math as tm

from config import LENGTH_EPS, SURFACE_OFFSET, TANGENT_EPS

# ==============================================================================
# Force accumulation
# ==============================================================================

@ti.func
def hooke_force(p, q, rest_length, stiffness):
    """
    Spring force on the particle at p from a spring attached to q.

    Points from p toward q when stretched, away when compressed. Coincident
    endpoints (length < LENGTH_EPS) have no direction and contribute zero.
    """
    f = tm.vec3(0.0)
    d = q - p
    length = d.norm()
    if length >= LENGTH_EPS:
        f = d / length * stiffness * (length - rest_length)
    return f


@ti.func
def net_force(i, pos: ti.template(), vel: ti.template(), springs: ti.template(),
              gravity, mass, damping):
    """Total force on particle i before any collision adjustment."""
    return gravity * mass + springs.spring_sum(i, pos) - damping * vel[i]


# ==============================================================================
# Sphere collision (sphere centered at the origin)
# ==============================================================================

@ti.func
def contact_normal(p):
    """Outward normal at p. A particle exactly at the center is pushed up."""
    n = tm.vec3(0.0, 1.0, 0.0)
    r = p.norm()
    if r >= LENGTH_EPS:
        n = p / r
    return n


@ti.func
def apply_friction(force, normal, friction):
    """
    Coulomb friction on the tangential part of force.

    Ro_n = n (f . n), Ro_t = f - Ro_n. Friction opposes Ro_t with magnitude
    min(|Ro_t|, mu |Ro_n|), so it can stop sliding but never reverse it.
    """
    ro_n = normal * force.dot(normal)
    ro_t = force - ro_n
    t_len = ro_t.norm()
    adjusted = force
    if t_len > TANGENT_EPS:
        magnitude = ti.min(t_len, friction * ro_n.norm())
        adjusted = force - ro_t / t_len * magnitude
    return adjusted


@ti.func
def reflect_velocity(v, normal, restitution):
    return (v - 2.0 * v.dot(normal) * normal) * restitution


@ti.func
def resolve_collision(p, v, f, sphere_radius, restitution, friction):
    """
    Sphere contact for one particle, returning (position, velocity, force).

    Inside the sphere the particle is moved to radius + SURFACE_OFFSET along
    the normal, friction is applied to f and v is reflected with restitution.
    Outside it, the triple comes back unchanged.
    """
    p_out = p
    v_out = v
    f_out = f
    if p.norm() < sphere_radius:
        normal = contact_normal(p)
        p_out = normal * (sphere_radius + SURFACE_OFFSET)
        f_out = apply_friction(f, normal, friction)
        v_out = reflect_velocity(v, normal, restitution)
    return p_out, v_out, f_out


# ==============================================================================
# Integration (semi-implicit Euler)
# ==============================================================================

@ti.func
def integrate_velocity(v, force, mass, dt):
    return v + force / mass * dt


@ti.func
def integrate_position(p, v_next, dt):
    # Uses the already-updated velocity
    return p + v_next * dt


# ==============================================================================
# Kernel: one full step, current -> next
# ==============================================================================

@ti.kernel
def step_particles(pos_in: ti.template(), vel_in: ti.template(),
                   pos_out: ti.template(), vel_out: ti.template(),
                   pinned: ti.template(), springs: ti.template(), n: ti.i32,
                   gravity: tm.vec3, mass: ti.f32, damping: ti.f32, dt: ti.f32,
                   sphere_radius: ti.f32, restitution: ti.f32, friction: ti.f32):
    """
    Advance every particle by one step.

    Per lane:
      1. Pinned particles copy their state forward unchanged
      2. force = gravity*m + springs - damping*v
      3. resolve_collision: push out, friction, bounce when inside the sphere
      4. v' = v + f/m dt, p' = p + v' dt

    Lanes at or beyond n do nothing.
    """
    for i in range(pos_in.shape[0]):
        if i < n:
            p = pos_in[i]
            v = vel_in[i]
            if pinned[i] != 0:
                pos_out[i] = p
                vel_out[i] = v
            else:
                f = net_force(i, pos_in, vel_in, springs, gravity, mass, damping)
                p, v, f = resolve_collision(p, v, f, sphere_radius, restitution, friction)

                v = integrate_velocity(v, f, mass, dt)
                pos_out[i] = integrate_position(p, v, dt)
                vel_out[i] = v


# ==============================================================================
# Kernel: force snapshot (no state change)
# ==============================================================================

@ti.kernel
def evaluate_forces(pos: ti.template(), vel: ti.template(), pinned: ti.template(),
                    springs: ti.template(), n: ti.i32,
                    gravity: tm.vec3, mass: ti.f32, damping: ti.f32,
                    force_out: ti.template()):
    """Pre-collision net force per particle. Pinned particles report zero."""
    for i in range(pos.shape[0]):
        f = tm.vec3(0.0)
        if i < n and pinned[i] == 0:
            f = net_force(i, pos, vel, springs, gravity, mass, damping)
        force_out[i] = f
