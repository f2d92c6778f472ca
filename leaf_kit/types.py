from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Dict, Optional, Tuple

import numpy as np

from .geometry import Box


@dataclass(frozen=True)
class Candidate:
    """
    Pre-suppression detection guess, produced by the layout decoder.
    """

    box: Box
    score: float
    class_id: int = 0


def area_percentage(box: Box, image_width: int, image_height: int) -> float:
    total = float(image_width) * float(image_height)
    if total <= 0:
        return 0.0
    return min(100.0, max(0.0, 100.0 * box.area / total))


@dataclass(frozen=True)
class Detection:
    """
    Finalised detection: a suppressed candidate with a 1-based id and a resolved
    class name. `center_color` (RGB) is filled once via `with_center_color`.
    """

    id: int
    box: Box
    score: float
    class_id: int
    class_name: str
    area_percentage: float = 0.0
    center_color: Optional[Tuple[int, int, int]] = None

    @property
    def width(self) -> float:
        return self.box.width

    @property
    def height(self) -> float:
        return self.box.height

    @property
    def area(self) -> float:
        return self.box.area

    @property
    def center(self) -> Tuple[float, float]:
        return self.box.center

    @property
    def aspect_ratio(self) -> float:
        return self.box.aspect_ratio

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        return self.box.as_xyxy()

    def with_id(self, new_id: int) -> "Detection":
        return replace(self, id=int(new_id))

    def with_center_color(self, image_bgr: np.ndarray) -> "Detection":
        if self.center_color is not None:
            return self
        h, w = image_bgr.shape[:2]
        cx, cy = self.center
        x = int(np.clip(int(cx), 0, w - 1))
        y = int(np.clip(int(cy), 0, h - 1))
        b, g, r = (int(v) for v in image_bgr[y, x][:3])
        return replace(self, center_color=(r, g, b))

    def to_dict(self) -> Dict[str, Any]:
        cx, cy = self.center
        return {
            "id": self.id,
            "bbox": [round(v, 2) for v in self.as_xyxy()],
            "center": [round(cx, 2), round(cy, 2)],
            "confidence": round(self.score, 4),
            "class_id": self.class_id,
            "class_name": self.class_name,
            "width": round(self.width, 2),
            "height": round(self.height, 2),
            "area": round(self.area, 2),
            "area_percentage": round(self.area_percentage, 4),
            "aspect_ratio": round(self.aspect_ratio, 4),
            "center_color": list(self.center_color) if self.center_color is not None else None,
        }
