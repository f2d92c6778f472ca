"""
Integrated leaf analysis: detection -> parallel per-leaf classification ->
aggregation -> optional annotated output.

Errors are recovered at the smallest scope: a failing region becomes a sentinel
record, a failing image becomes `success=False`, and a batch always returns one
result per input path, in input order.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple, Union

import cv2
import numpy as np

from leaf_kit.metadata import DEFAULT_DETECTOR_CLASSES, DEFAULT_DISEASE_CLASSES, ClassNameTable
from leaf_kit.postprocess import LeafPostConfig
from leaf_kit.runtime import LeafDetector, load_detector

from .aggregate import aggregate, failed_result
from .classifier import RegionClassifier, load_classifier
from .config import AnalysisOptions
from .pipeline import ParallelClassificationPipeline, default_workers
from .records import AnalysisResult, PhaseTimings
from .render import save_annotated
from .reporting import output_image_path, write_region_images

PathLike = Union[str, Path]

logger = logging.getLogger(__name__)


def read_image(path: PathLike) -> np.ndarray:
    p = Path(path)
    if not p.is_file():
        raise FileNotFoundError(f"Image not found: {p}")
    image = cv2.imread(str(p), cv2.IMREAD_COLOR)
    if image is None:
        raise ValueError(f"Could not read image: {p}")
    return image


class LeafAnalysisService:
    """
    Detector and classifier may be injected (tests, custom engines); otherwise
    they are loaded lazily from `options` the first time an image needs them.
    """

    def __init__(
        self,
        options: AnalysisOptions = AnalysisOptions(),
        *,
        detector: Optional[LeafDetector] = None,
        classifier: Optional[RegionClassifier] = None,
    ):
        self.options = options
        self._detector = detector
        self._classifier = classifier
        self._init_lock = threading.Lock()

    def __enter__(self) -> "LeafAnalysisService":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        self._detector = None
        self._classifier = None

    # ------------------------------------------------------------------ #
    # Engine initialisation
    # ------------------------------------------------------------------ #
    def _ensure_engines(self) -> Tuple[Optional[LeafDetector], Optional[RegionClassifier]]:
        opts = self.options
        with self._init_lock:
            if opts.enable_detection and self._detector is None:
                # A metadata file pins the class count, so the decoder matches the
                # class axis exactly instead of guessing from relative axis sizes.
                num_classes: Optional[int] = None
                if opts.detector_metadata:
                    names = ClassNameTable.from_file(opts.detector_metadata)
                    num_classes = len(names) or None
                else:
                    names = ClassNameTable(DEFAULT_DETECTOR_CLASSES)
                self._detector = load_detector(
                    opts.detector_model,
                    post_cfg=LeafPostConfig(
                        conf_threshold=opts.confidence_threshold,
                        iou_threshold=opts.iou_threshold,
                        max_detections=opts.max_detections,
                        input_size=opts.input_size,
                        num_classes=num_classes,
                    ),
                    class_names=names,
                    onnx_providers=opts.onnx_providers,
                )
            if opts.enable_detection and opts.enable_classification and self._classifier is None:
                names = (
                    ClassNameTable.from_file(opts.classifier_metadata)
                    if opts.classifier_metadata
                    else ClassNameTable(DEFAULT_DISEASE_CLASSES)
                )
                self._classifier = load_classifier(
                    opts.classifier_model,
                    class_names=names,
                    input_size=opts.classifier_input_size,
                    onnx_providers=opts.onnx_providers,
                )
        return (
            self._detector if opts.enable_detection else None,
            self._classifier if opts.enable_classification else None,
        )

    # ------------------------------------------------------------------ #
    # Single image
    # ------------------------------------------------------------------ #
    def process_image(self, image_path: PathLike) -> AnalysisResult:
        started_at = datetime.now()
        path_str = str(image_path)
        try:
            return self._process_image(path_str, started_at)
        except Exception as exc:
            logger.error("%s: analysis failed: %s", path_str, exc)
            return failed_result(path_str, str(exc), started_at=started_at)

    def _process_image(self, path_str: str, started_at: datetime) -> AnalysisResult:
        opts = self.options
        if not Path(path_str).is_file():
            return failed_result(path_str, f"Image not found: {path_str}", started_at=started_at)

        detector, classifier = self._ensure_engines()
        image = read_image(path_str)
        h, w = image.shape[:2]

        if detector is None:
            logger.info("%s: detection disabled, nothing to analyse", path_str)
            return aggregate(image_path=path_str, started_at=started_at, records=(), image_size=(w, h), timings=PhaseTimings())

        # Phase 1: detection
        t0 = time.perf_counter()
        outcome = detector.detect(image)
        detection_s = time.perf_counter() - t0

        # Phase 2: per-leaf extraction (+ classification) in parallel
        pipeline = ParallelClassificationPipeline(
            classifier,
            padding=opts.region_padding,
            max_workers=opts.max_workers or default_workers(),
        )
        batch = pipeline.run(image, outcome.detections)

        # Phase 3: annotated output; a write failure only loses the output file
        rendering_s = 0.0
        output_path: Optional[str] = None
        if opts.save_results and batch.records:
            t0 = time.perf_counter()
            target = output_image_path(Path(opts.output_dir), path_str, started_at)
            try:
                output_path = str(save_annotated(target, image, batch.records))
                if opts.save_regions:
                    write_region_images(Path(opts.output_dir), path_str, batch.records)
            except (OSError, cv2.error) as exc:
                logger.error("%s: could not save results: %s", path_str, exc)
            rendering_s = time.perf_counter() - t0

        result = aggregate(
            image_path=path_str,
            started_at=started_at,
            records=batch.records,
            image_size=(w, h),
            timings=PhaseTimings(
                detection_s=detection_s,
                classification_s=batch.total_task_s,
                rendering_s=rendering_s,
            ),
            output_path=output_path,
            detection_note=outcome.note,
        )
        logger.info(
            "%s: %d leaves detected, %d classified in %.3fs",
            path_str,
            result.detected_count,
            result.classified_count,
            result.total_s,
        )
        return result

    # ------------------------------------------------------------------ #
    # Batch
    # ------------------------------------------------------------------ #
    def process_batch(
        self,
        image_paths: Sequence[PathLike],
        *,
        max_workers: Optional[int] = None,
        on_done: Optional[Callable[[AnalysisResult], None]] = None,
    ) -> List[AnalysisResult]:
        """
        One independent pipeline per image, run concurrently. Results come back
        in input order regardless of completion order.
        """

        paths = [str(p) for p in image_paths]
        if not paths:
            return []

        results: List[Optional[AnalysisResult]] = [None] * len(paths)
        workers = min(max_workers or self.options.max_workers or default_workers(), len(paths))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="leaf-image") as pool:
            futures = [pool.submit(self.process_image, p) for p in paths]
            for idx, fut in enumerate(futures):
                try:
                    results[idx] = fut.result()
                except Exception as exc:
                    results[idx] = failed_result(paths[idx], str(exc))
                if on_done is not None:
                    on_done(results[idx])

        return [r for r in results if r is not None]

    # ------------------------------------------------------------------ #
    # Centre colour
    # ------------------------------------------------------------------ #
    def center_color(self, image_path: PathLike) -> Tuple[int, int, int]:
        """
        RGB value of the pixel at the image centre.
        """

        image = read_image(image_path)
        h, w = image.shape[:2]
        b, g, r = (int(v) for v in image[h // 2, w // 2])
        return r, g, b
