"""Closed-form path-length multiplier estimates for honeycomb patterns.

Used only to rank candidates before the field solver runs. Two models:

- ``physical``: tortuosity over conducting fraction, ``tau / f**alpha``.
  Pattern ``islands`` treats the hexagons as insulated islands and the gap as
  the conducting channel; ``lines`` treats the gap as an ablated kerf.
- ``legacy``: proportional to total hexagon perimeter per unit length along
  the current direction.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import math

from config import Settings
from schemas import PanelSpec

logger = logging.getLogger(__name__)

SQRT3 = math.sqrt(3.0)

# Tortuosity stand-in for a closed channel.
_CLOSED_CHANNEL_RATIO = 1e6


@dataclass(frozen=True)
class HoneycombEstimator:
    model: str = "physical"
    pattern: str = "islands"
    alpha: float = 1.0
    tortuosity_coeff: float = 1.5
    min_conduct_fraction: float = 0.10
    legacy_coeff: float = 0.35
    scale: float = 1.0

    @classmethod
    def from_settings(cls, cfg: Settings) -> "HoneycombEstimator":
        return cls(
            model=cfg.estimator_model,
            pattern=cfg.estimator_pattern,
            alpha=cfg.estimator_alpha,
            tortuosity_coeff=cfg.estimator_tortuosity_coeff,
            min_conduct_fraction=cfg.estimator_min_conduct_fraction,
            legacy_coeff=cfg.estimator_legacy_coeff,
            scale=cfg.estimator_scale,
        )

    def estimate_multiplier(self, spec: PanelSpec, hex_side_mm: float, hex_gap_mm: float) -> float:
        if hex_side_mm <= 0 or hex_gap_mm < 0:
            return 0.0

        if self.model == "legacy":
            multiplier = self._legacy(spec, hex_side_mm, hex_gap_mm)
        elif self.pattern == "islands":
            multiplier = self._islands(hex_side_mm, hex_gap_mm)
        else:
            multiplier = self._lines(hex_side_mm, hex_gap_mm)

        multiplier *= self.scale
        logger.debug(
            "Estimate: model=%s pattern=%s a=%.3f gap=%.3f => %.4f",
            self.model,
            self.pattern,
            hex_side_mm,
            hex_gap_mm,
            multiplier,
        )
        return multiplier

    def _islands(self, a: float, gap: float) -> float:
        # Island plus half a channel on every side.
        s = a + gap / SQRT3
        f = max(self.min_conduct_fraction, 1.0 - (a / s) ** 2)
        ratio = a / gap if gap > 0 else _CLOSED_CHANNEL_RATIO
        tau = 1.0 + self.tortuosity_coeff * ratio
        return tau / f**self.alpha

    def _lines(self, a: float, gap: float) -> float:
        edge_length_density = 2.0 / (SQRT3 * a)
        f = max(self.min_conduct_fraction, 1.0 - edge_length_density * gap)
        tau = 1.0 + self.tortuosity_coeff * (gap / a)
        return tau / f**self.alpha

    def _legacy(self, spec: PanelSpec, a: float, gap: float) -> float:
        working_w = spec.width_mm - 2.0 * spec.edge
        working_h = spec.height_mm - 2.0 * spec.edge
        if working_w <= 0 or working_h <= 0:
            return 0.0

        step_x = 1.5 * a + gap
        step_y = SQRT3 * a + gap
        cell_count = (working_w / step_x) * (working_h / step_y)
        perimeter = 6.0 * a * cell_count
        direction_length = working_h if spec.current_along_height else working_w
        return self.legacy_coeff * perimeter / direction_length
