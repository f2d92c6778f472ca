from __future__ import annotations

import threading
from typing import Tuple

import cv2
import numpy as np

from leaf_kit.geometry import Box


class RegionExtractionError(RuntimeError):
    pass


class RegionExtractor:
    """
    Cuts padded regions out of one shared source image.

    The source array is only read; every region is copied into a task-private
    buffer while holding the per-image lock, and cropping/encoding then happen on
    that copy without further synchronisation.
    """

    def __init__(self, image: np.ndarray, padding: int = 10):
        if image is None or not hasattr(image, "shape") or image.ndim < 2:
            raise TypeError("image must be a NumPy array (H, W[, C]).")
        if padding < 0:
            raise ValueError("padding must be >= 0")
        self._image = image
        self._lock = threading.Lock()
        self.padding = int(padding)

    @property
    def size(self) -> Tuple[int, int]:
        h, w = self._image.shape[:2]
        return w, h

    def padded_box(self, box: Box) -> Tuple[int, int, int, int]:
        w, h = self.size
        x1, y1, x2, y2 = box.as_int_xyxy()
        return (
            max(0, x1 - self.padding),
            max(0, y1 - self.padding),
            min(w, x2 + self.padding),
            min(h, y2 + self.padding),
        )

    def extract(self, box: Box) -> np.ndarray:
        x1, y1, x2, y2 = self.padded_box(box)
        if x2 <= x1 or y2 <= y1:
            raise RegionExtractionError(f"Empty region for box {box.as_xyxy()} in image of size {self.size}")
        with self._lock:
            region = self._image[y1:y2, x1:x2].copy()
        return region

    def extract_png(self, box: Box) -> bytes:
        region = self.extract(box)
        ok, buf = cv2.imencode(".png", region)
        if not ok:
            raise RegionExtractionError(f"PNG encoding failed for box {box.as_xyxy()}")
        return buf.tobytes()
