from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .geometry import iou
from .layouts import OutputLayout, decode
from .metadata import DEFAULT_DETECTOR_CLASSES, ClassNameTable
from .nms import suppress
from .types import Candidate, Detection, area_percentage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LeafPostConfig:
    """
    Post-processing configuration for the leaf detector.
    """

    conf_threshold: float = 0.007
    iou_threshold: float = 0.65
    max_detections: int = 15
    # Square resolution the detector was fed; used to rescale box coordinates.
    input_size: int = 640
    # If False, skip NMS and only keep the top `max_detections` by score.
    apply_nms: bool = True
    # Known class count tightens layout matching; None uses the shape heuristic.
    num_classes: Optional[int] = None

    def __post_init__(self) -> None:
        if not (0.0 <= self.conf_threshold <= 1.0):
            raise ValueError("conf_threshold must be within [0, 1]")
        if not (0.0 <= self.iou_threshold <= 1.0):
            raise ValueError("iou_threshold must be within [0, 1]")
        if self.max_detections < 1:
            raise ValueError("max_detections must be >= 1")
        if self.input_size < 1:
            raise ValueError("input_size must be >= 1")
        if self.num_classes is not None and self.num_classes < 1:
            raise ValueError("num_classes must be >= 1 when set")


@dataclass(frozen=True)
class DetectionOutcome:
    detections: Tuple[Detection, ...]
    layout: OutputLayout
    raw_count: int = 0
    candidate_count: int = 0
    note: str = ""
    image_size: Tuple[int, int] = (0, 0)


class LeafPostprocessor:
    """
    decode -> threshold -> suppress -> limit -> number -> annotate.

    An unknown layout or zero candidates is a valid, empty outcome.
    """

    def __init__(self, cfg: LeafPostConfig = LeafPostConfig(), class_names: Optional[ClassNameTable] = None):
        self.cfg = cfg
        self.class_names = class_names if class_names is not None else ClassNameTable(DEFAULT_DETECTOR_CLASSES)

    def process(self, output: np.ndarray, orig_size: Tuple[int, int]) -> DetectionOutcome:
        """
        Args:
            output: raw detector output for a single image
            orig_size: (width, height) of the source image
        """

        decoded = decode(
            output,
            orig_size=orig_size,
            input_size=self.cfg.input_size,
            conf_threshold=self.cfg.conf_threshold,
            num_classes=self.cfg.num_classes,
        )
        candidates = list(decoded.candidates)

        if self.cfg.apply_nms:
            survivors = suppress(candidates, self.cfg.iou_threshold)
            logger.debug("nms: %d -> %d candidates", len(candidates), len(survivors))
        else:
            survivors = _top_k(candidates, self.cfg.max_detections)

        if len(survivors) > self.cfg.max_detections:
            survivors = survivors[: self.cfg.max_detections]

        detections = tuple(self._finalise(survivors, orig_size))
        return DetectionOutcome(
            detections=detections,
            layout=decoded.layout,
            raw_count=decoded.raw_count,
            candidate_count=len(candidates),
            note=decoded.note,
            image_size=(int(orig_size[0]), int(orig_size[1])),
        )

    def _finalise(self, survivors: Sequence[Candidate], orig_size: Tuple[int, int]) -> List[Detection]:
        orig_w, orig_h = orig_size
        return [
            Detection(
                id=idx,
                box=c.box,
                score=c.score,
                class_id=c.class_id,
                class_name=self.class_names.resolve(c.class_id),
                area_percentage=area_percentage(c.box, orig_w, orig_h),
            )
            for idx, c in enumerate(survivors, start=1)
        ]


def _top_k(candidates: Sequence[Candidate], k: int) -> List[Candidate]:
    ranked = sorted(candidates, key=lambda c: c.score, reverse=True)
    return ranked[:k]


def renumber(detections: Sequence[Detection]) -> List[Detection]:
    return [d.with_id(i) for i, d in enumerate(detections, start=1)]


def filter_individual_leaves(detections: Sequence[Detection]) -> List[Detection]:
    """
    Drop boxes that cover almost the whole frame or are too small to be a leaf.
    """

    return [
        d
        for d in detections
        if 0.05 < d.area_percentage < 95.0 and d.area > 50 and d.width > 5 and d.height > 5
    ]


def filter_precise_leaves(detections: Sequence[Detection], max_area_percent: float = 95.0) -> List[Detection]:
    return [
        d
        for d in detections
        if 0.03 <= d.area_percentage <= max_area_percent
        and d.area >= 50
        and 0.1 <= d.aspect_ratio <= 10.0
        and d.width >= 3
        and d.height >= 3
    ]


def remove_overlapping(detections: Sequence[Detection], overlap_threshold: float) -> List[Detection]:
    """
    Second, stricter overlap pass (IoU > threshold is dropped); ids are re-numbered.
    """

    kept: List[Detection] = []
    for det in sorted(detections, key=lambda d: d.score, reverse=True):
        if all(iou(det.box, other.box) <= overlap_threshold for other in kept):
            kept.append(det)
    return renumber(kept)
