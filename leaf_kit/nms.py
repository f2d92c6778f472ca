from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from .geometry import iou_matrix
from .types import Candidate


@dataclass
class NMSConfig:
    iou_threshold: float = 0.45
    # None keeps every survivor; truncation usually happens in the post-processor.
    max_detections: Optional[int] = None


def nms(boxes: np.ndarray, scores: np.ndarray, cfg: NMSConfig) -> np.ndarray:
    """
    Greedy NumPy NMS. Expects boxes shape (N,4) in xyxy and scores shape (N,).
    Returns indices of kept boxes, highest score first.

    Equal scores keep input order (stable sort). A box is dropped when its IoU
    with an already kept box is >= `cfg.iou_threshold`.
    """

    if boxes.size == 0:
        return np.empty((0,), dtype=np.int64)

    boxes = np.asarray(boxes, dtype=np.float64)
    order = np.argsort(-np.asarray(scores, dtype=np.float64), kind="stable")
    keep: List[int] = []

    while order.size > 0:
        if cfg.max_detections is not None and len(keep) >= cfg.max_detections:
            break
        i = int(order[0])
        keep.append(i)

        overlap = iou_matrix(boxes[i], boxes[order[1:]])
        order = order[1:][overlap < cfg.iou_threshold]

    return np.array(keep, dtype=np.int64)


def suppress(candidates: Sequence[Candidate], iou_threshold: float) -> List[Candidate]:
    """
    Candidate-level NMS. Output is ordered by descending confidence and is a
    subset of the input; no candidate is altered.
    """

    if not candidates:
        return []
    boxes = np.array([c.box.as_xyxy() for c in candidates], dtype=np.float64)
    scores = np.array([c.score for c in candidates], dtype=np.float64)
    keep = nms(boxes, scores, NMSConfig(iou_threshold=iou_threshold))
    return [candidates[int(i)] for i in keep]
