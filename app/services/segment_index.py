"""Bucket-hash index answering "is this point within a threshold of a segment"."""

from __future__ import annotations

import math
from typing import Dict, Iterable, List, NamedTuple, Sequence, Tuple

from services.honeycomb_geometry import AblationSegment

MIN_BUCKET_SIZE = 25.0


class _BoxedSegment(NamedTuple):
    segment: AblationSegment
    min_x: float
    max_x: float
    min_y: float
    max_y: float


def distance_point_to_segment_sq(
    px: float, py: float, x1: float, y1: float, x2: float, y2: float
) -> float:
    vx = x2 - x1
    vy = y2 - y1
    wx = px - x1
    wy = py - y1

    c1 = vx * wx + vy * wy
    if c1 <= 0:
        return wx * wx + wy * wy

    c2 = vx * vx + vy * vy
    if c2 <= c1:
        dx = px - x2
        dy = py - y2
        return dx * dx + dy * dy

    t = c1 / c2
    dx = px - (x1 + t * vx)
    dy = py - (y1 + t * vy)
    return dx * dx + dy * dy


def is_near_any_segment(
    x: float, y: float, segments: Iterable[AblationSegment], threshold: float
) -> bool:
    """Linear scan over all segments; reference for the bucketed lookup."""
    thr2 = threshold * threshold
    for s in segments:
        if x < min(s.x1, s.x2) - threshold or x > max(s.x1, s.x2) + threshold:
            continue
        if y < min(s.y1, s.y2) - threshold or y > max(s.y1, s.y2) + threshold:
            continue
        if distance_point_to_segment_sq(x, y, s.x1, s.y1, s.x2, s.y2) <= thr2:
            return True
    return False


class SegmentIndex:
    """Square buckets of side ``max(25, 4 * threshold)`` holding threshold-expanded segments."""

    def __init__(
        self,
        bucket_size: float,
        threshold: float,
        buckets: Dict[Tuple[int, int], List[_BoxedSegment]],
        segment_count: int,
    ) -> None:
        self.bucket_size = bucket_size
        self.threshold = threshold
        self._thr2 = threshold * threshold
        self._buckets = buckets
        self._segment_count = segment_count

    @classmethod
    def build(cls, segments: Sequence[AblationSegment], threshold: float) -> "SegmentIndex":
        bucket_size = max(MIN_BUCKET_SIZE, 4.0 * threshold)
        buckets: Dict[Tuple[int, int], List[_BoxedSegment]] = {}

        for s in segments:
            boxed = _BoxedSegment(
                segment=s,
                min_x=min(s.x1, s.x2) - threshold,
                max_x=max(s.x1, s.x2) + threshold,
                min_y=min(s.y1, s.y2) - threshold,
                max_y=max(s.y1, s.y2) + threshold,
            )
            cx0 = math.floor(boxed.min_x / bucket_size)
            cx1 = math.floor(boxed.max_x / bucket_size)
            cy0 = math.floor(boxed.min_y / bucket_size)
            cy1 = math.floor(boxed.max_y / bucket_size)
            for cx in range(cx0, cx1 + 1):
                for cy in range(cy0, cy1 + 1):
                    buckets.setdefault((cx, cy), []).append(boxed)

        return cls(bucket_size, threshold, buckets, len(segments))

    def __len__(self) -> int:
        return self._segment_count

    @property
    def bucket_count(self) -> int:
        return len(self._buckets)

    def is_near_any(self, x: float, y: float) -> bool:
        cx = math.floor(x / self.bucket_size)
        cy = math.floor(y / self.bucket_size)
        thr2 = self._thr2

        for dx in (-1, 0, 1):
            for dy in (-1, 0, 1):
                bucket = self._buckets.get((cx + dx, cy + dy))
                if bucket is None:
                    continue
                for boxed in bucket:
                    if x < boxed.min_x or x > boxed.max_x or y < boxed.min_y or y > boxed.max_y:
                        continue
                    s = boxed.segment
                    if distance_point_to_segment_sq(x, y, s.x1, s.y1, s.x2, s.y2) <= thr2:
                        return True
        return False
