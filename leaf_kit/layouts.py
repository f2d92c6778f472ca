"""
Output-layout decoder for detection exports.

Supported layouts (per image):
- CHANNELS_FIRST  (1, 4 + C, N): rows cx, cy, w, h then one score row per class,
  one column per box (YOLOv8/v9 style).
- ROWS_OBJECTNESS (N, 5 + C): [cx, cy, w, h, obj, class_scores...],
  confidence = obj * max(class_scores).
- ROWS_XYXY       (1, N, >=6): [x1, y1, x2, y2, score, class_id, ...].

Anything else maps to UNKNOWN and decodes to zero candidates; the shape is kept
in the result note so the caller can report it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, Sequence, Tuple

import numpy as np

from .geometry import Box
from .types import Candidate

logger = logging.getLogger(__name__)


class OutputLayout(str, Enum):
    CHANNELS_FIRST = "channels_first"
    ROWS_OBJECTNESS = "rows_objectness"
    ROWS_XYXY = "rows_xyxy"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class LayoutMatch:
    layout: OutputLayout
    shape: Tuple[int, ...]
    num_boxes: int = 0
    num_classes: int = 0
    note: str = ""


@dataclass(frozen=True)
class DecodeResult:
    layout: OutputLayout
    shape: Tuple[int, ...]
    raw_count: int
    candidates: Tuple[Candidate, ...]
    note: str = ""


def match_layout(shape: Sequence[int], num_classes: Optional[int] = None) -> LayoutMatch:
    """
    Pick the layout from rank and relative axis sizes.

    When `num_classes` is known the class axis must match exactly; otherwise the
    channels-first layout is recognised by its short channel axis (5 <= rows < cols).
    """

    shape = tuple(int(s) for s in shape)

    if len(shape) == 3:
        if shape[0] != 1:
            return LayoutMatch(OutputLayout.UNKNOWN, shape, note=f"batch > 1 is not supported (shape {list(shape)})")
        rows, cols = shape[1], shape[2]

        if num_classes is not None:
            channels_first = num_classes >= 1 and rows == 4 + num_classes
        else:
            channels_first = 5 <= rows < cols
        if channels_first:
            return LayoutMatch(OutputLayout.CHANNELS_FIRST, shape, num_boxes=cols, num_classes=rows - 4)

        if cols >= 6:
            return LayoutMatch(OutputLayout.ROWS_XYXY, shape, num_boxes=rows)

        return LayoutMatch(OutputLayout.UNKNOWN, shape, note=f"unrecognised rank-3 output shape {list(shape)}")

    if len(shape) == 2:
        n, width = shape
        if width >= 6 and (num_classes is None or width == 5 + num_classes):
            return LayoutMatch(OutputLayout.ROWS_OBJECTNESS, shape, num_boxes=n, num_classes=width - 5)
        return LayoutMatch(OutputLayout.UNKNOWN, shape, note=f"unrecognised rank-2 output shape {list(shape)}")

    return LayoutMatch(OutputLayout.UNKNOWN, shape, note=f"unsupported output rank {len(shape)} (shape {list(shape)})")


# ---------------------------------------------------------------------- #
# Per-layout decoders: return xyxy boxes in model input space, scores, class ids
# ---------------------------------------------------------------------- #
_Decoded = Tuple[np.ndarray, np.ndarray, np.ndarray]


def _cxcywh_to_xyxy(boxes: np.ndarray) -> np.ndarray:
    cx, cy, w, h = boxes.T
    return np.stack([cx - w / 2, cy - h / 2, cx + w / 2, cy + h / 2], axis=1)


def _decode_channels_first(p: np.ndarray) -> _Decoded:
    a = p[0]
    boxes = _cxcywh_to_xyxy(a[0:4, :].T)
    class_scores = a[4:, :]
    class_ids = np.argmax(class_scores, axis=0)
    scores = class_scores[class_ids, np.arange(class_scores.shape[1])]
    return boxes, scores, class_ids


def _decode_rows_objectness(p: np.ndarray) -> _Decoded:
    boxes = _cxcywh_to_xyxy(p[:, 0:4])
    objectness = p[:, 4]
    class_scores = p[:, 5:]
    class_ids = np.argmax(class_scores, axis=1)
    class_conf = class_scores[np.arange(class_scores.shape[0]), class_ids]
    return boxes, objectness * class_conf, class_ids


def _decode_rows_xyxy(p: np.ndarray) -> _Decoded:
    rows = p[0]
    boxes = rows[:, 0:4].copy()
    scores = rows[:, 4]
    class_ids = rows[:, 5].astype(np.int64)
    return boxes, scores, class_ids


_DECODERS: Dict[OutputLayout, Callable[[np.ndarray], _Decoded]] = {
    OutputLayout.CHANNELS_FIRST: _decode_channels_first,
    OutputLayout.ROWS_OBJECTNESS: _decode_rows_objectness,
    OutputLayout.ROWS_XYXY: _decode_rows_xyxy,
}


def decode(
    output: np.ndarray,
    orig_size: Tuple[int, int],
    input_size: int,
    conf_threshold: float,
    num_classes: Optional[int] = None,
) -> DecodeResult:
    """
    Decode a raw output tensor into candidates in original-image pixels.

    Args:
        output: raw model output for a single image
        orig_size: (width, height) of the source image
        input_size: square model input resolution the image was resized to
        conf_threshold: candidates below this score are dropped here, before NMS
        num_classes: class count when known, tightens layout matching
    """

    p = np.asarray(output, dtype=np.float32)
    match = match_layout(p.shape, num_classes)
    logger.debug("decode: output shape %s -> layout %s", list(p.shape), match.layout.value)

    if match.layout is OutputLayout.UNKNOWN:
        logger.warning("decode: %s; no candidates produced", match.note)
        return DecodeResult(OutputLayout.UNKNOWN, match.shape, 0, (), note=match.note)

    boxes, scores, class_ids = _DECODERS[match.layout](p)
    raw_count = int(scores.shape[0])

    keep = scores >= conf_threshold
    boxes, scores, class_ids = boxes[keep], scores[keep], class_ids[keep]
    rejected_conf = raw_count - int(scores.shape[0])

    # Model input space -> original image space
    orig_w, orig_h = orig_size
    boxes = boxes.astype(np.float64)
    boxes[:, [0, 2]] *= float(orig_w) / float(input_size)
    boxes[:, [1, 3]] *= float(orig_h) / float(input_size)

    valid = (boxes[:, 2] >= boxes[:, 0]) & (boxes[:, 3] >= boxes[:, 1])
    boxes, scores, class_ids = boxes[valid], scores[valid], class_ids[valid]
    rejected_degenerate = int(valid.size - valid.sum())

    boxes[:, [0, 2]] = np.clip(boxes[:, [0, 2]], 0, orig_w)
    boxes[:, [1, 3]] = np.clip(boxes[:, [1, 3]], 0, orig_h)

    candidates = tuple(
        Candidate(
            box=Box(float(x1), float(y1), float(x2), float(y2)),
            score=float(score),
            class_id=int(cls_id),
        )
        for (x1, y1, x2, y2), score, cls_id in zip(boxes, scores, class_ids)
    )
    logger.debug(
        "decode: raw=%d kept=%d below_conf=%d (threshold %.4f) degenerate=%d",
        raw_count,
        len(candidates),
        rejected_conf,
        conf_threshold,
        rejected_degenerate,
    )
    note = f"{match.layout.value}: {len(candidates)}/{raw_count} candidates above threshold"
    return DecodeResult(match.layout, match.shape, raw_count, candidates, note=note)
