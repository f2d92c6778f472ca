from __future__ import annotations

import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence, Tuple

import numpy as np

from leaf_kit.types import Detection

from .extractor import RegionExtractor
from .records import ClassificationOutcome, LeafRecord

logger = logging.getLogger(__name__)


class BytesClassifier(Protocol):
    def classify_bytes(self, data: bytes, name: str = ...) -> ClassificationOutcome: ...


@dataclass(frozen=True)
class ClassificationBatch:
    records: Tuple[LeafRecord, ...]
    # Sum of every task's own wall clock time (compute consumed, not latency).
    total_task_s: float
    wall_s: float


def default_workers() -> int:
    return os.cpu_count() or 1


class ParallelClassificationPipeline:
    """
    One task per detection on a bounded thread pool: extract region -> classify
    -> LeafRecord.

    Tasks complete in any order; the returned records are always sorted by
    detection id. A failing task yields a sentinel record and never affects its
    siblings. With `classifier=None` only the regions are extracted.
    """

    def __init__(
        self,
        classifier: Optional[BytesClassifier] = None,
        *,
        padding: int = 10,
        max_workers: Optional[int] = None,
    ):
        if max_workers is not None and max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        self.classifier = classifier
        self.padding = padding
        self.max_workers = max_workers or default_workers()

    def run(self, image: np.ndarray, detections: Sequence[Detection]) -> ClassificationBatch:
        if not detections:
            return ClassificationBatch(records=(), total_task_s=0.0, wall_s=0.0)

        extractor = RegionExtractor(image, padding=self.padding)
        records: List[LeafRecord] = []
        wall_start = time.perf_counter()

        workers = min(self.max_workers, len(detections))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="leaf-task") as pool:
            futures = {pool.submit(self._process_one, extractor, det): det for det in detections}
            for fut in as_completed(futures):
                det = futures[fut]
                try:
                    records.append(fut.result())
                except Exception as exc:
                    logger.error("leaf %d: task crashed: %s", det.id, exc)
                    records.append(self._failed_record(det, b"", 0.0, str(exc)))

        wall_s = time.perf_counter() - wall_start
        records.sort(key=lambda r: r.id)
        total_task_s = sum(r.elapsed_s for r in records)
        failed = sum(1 for r in records if r.error is not None)
        logger.info(
            "classified %d regions on %d workers (tasks %.3fs, wall %.3fs, failed %d)",
            len(records),
            workers,
            total_task_s,
            wall_s,
            failed,
        )
        return ClassificationBatch(records=tuple(records), total_task_s=total_task_s, wall_s=wall_s)

    def _process_one(self, extractor: RegionExtractor, det: Detection) -> LeafRecord:
        start = time.perf_counter()
        region = b""
        try:
            region = extractor.extract_png(det.box)
            classification = None
            if self.classifier is not None:
                classification = self.classifier.classify_bytes(region, name=f"leaf_{det.id}")
            return LeafRecord(
                detection=det,
                classification=classification,
                region_png=region,
                elapsed_s=time.perf_counter() - start,
            )
        except Exception as exc:
            logger.warning("leaf %d: %s: %s", det.id, type(exc).__name__, exc)
            return self._failed_record(det, region, time.perf_counter() - start, str(exc))

    def _failed_record(self, det: Detection, region: bytes, elapsed_s: float, reason: str) -> LeafRecord:
        sentinel = ClassificationOutcome.failed(reason) if self.classifier is not None else None
        return LeafRecord(detection=det, classification=sentinel, region_png=region, elapsed_s=elapsed_s, error=reason)
