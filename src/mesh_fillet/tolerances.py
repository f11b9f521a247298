"""Per-call numerical tolerances derived from the model scale and tool radius."""

from __future__ import annotations

from dataclasses import dataclass


def scale_adaptive_tolerance(size: float, base: float) -> float:
    """Scale ``base`` by ``size`` for sizes above one unit."""
    return base * max(1.0, abs(float(size)))


@dataclass(frozen=True)
class Tolerances:
    """Tolerance bundle for one fillet/chamfer invocation.

    Nothing here is a hard-coded absolute: every value grows with the requested
    radius (or distance) and with the bounding diagonal of the model so that
    millimetre and metre scale models behave the same.
    """

    eps: float
    vec_length_tol: float
    dist_tol: float
    angle_tol: float
    weld_eps: float
    radius: float
    diagonal: float

    @classmethod
    def for_radius(cls, radius: float, diagonal: float = 0.0) -> "Tolerances":
        r = abs(float(radius))
        diag = abs(float(diagonal))
        return cls(
            eps=scale_adaptive_tolerance(r, 1e-12),
            vec_length_tol=scale_adaptive_tolerance(r, 1e-14),
            dist_tol=max(1e-9, 1e-6 * max(r, diag)),
            angle_tol=1e-6,
            weld_eps=max(1e-9, 1e-6 * diag),
            radius=r,
            diagonal=diag,
        )

    @property
    def effective_radius(self) -> float:
        return max(self.eps, self.radius)
