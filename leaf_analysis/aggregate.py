from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import cv2
import numpy as np

from .records import AnalysisResult, LeafRecord, PhaseTimings


def aggregate(
    *,
    image_path: str,
    started_at: datetime,
    records: Iterable[LeafRecord],
    image_size: Tuple[int, int],
    timings: PhaseTimings,
    output_path: Optional[str] = None,
    detection_note: str = "",
    finished_at: Optional[datetime] = None,
) -> AnalysisResult:
    ordered = tuple(sorted(records, key=lambda r: r.id))
    return AnalysisResult(
        image_path=image_path,
        success=True,
        started_at=started_at,
        finished_at=finished_at or datetime.now(),
        records=ordered,
        image_size=image_size,
        timings=timings,
        output_path=output_path,
        detection_note=detection_note,
    )


def failed_result(
    image_path: str,
    message: str,
    started_at: Optional[datetime] = None,
    timings: PhaseTimings = PhaseTimings(),
) -> AnalysisResult:
    now = datetime.now()
    return AnalysisResult(
        image_path=image_path,
        success=False,
        started_at=started_at or now,
        finished_at=now,
        timings=timings,
        error=message,
    )


def center_pixel(region_png: bytes) -> Optional[Tuple[int, int, int]]:
    """
    RGB of the centre pixel of an encoded region; None if it cannot be decoded.
    """

    if not region_png:
        return None
    image = cv2.imdecode(np.frombuffer(region_png, dtype=np.uint8), cv2.IMREAD_COLOR)
    if image is None:
        return None
    h, w = image.shape[:2]
    b, g, r = (int(v) for v in image[h // 2, w // 2])
    return r, g, b


def illumination_level(rgb: Sequence[int]) -> Tuple[float, str]:
    intensity = sum(int(c) for c in rgb) / 3.0
    if intensity < 85:
        return intensity, "low"
    if intensity < 170:
        return intensity, "medium"
    return intensity, "high"


def record_to_dict(record: LeafRecord) -> Dict[str, Any]:
    payload = record.detection.to_dict()
    c = record.classification
    payload.update(
        {
            "classified": record.is_classified,
            "classification_label": c.label if c is not None else None,
            "classification_confidence": round(c.confidence, 4) if c is not None else None,
            "probabilities": {k: round(v, 6) for k, v in c.probabilities.items()} if c is not None else {},
            "elapsed_ms": round(record.elapsed_s * 1000.0, 3),
            "region_bytes": len(record.region_png),
            "error": record.error,
        }
    )
    rgb = center_pixel(record.region_png)
    if rgb is not None:
        intensity, level = illumination_level(rgb)
        payload["region_center_rgb"] = list(rgb)
        payload["illumination"] = {"intensity": round(intensity, 2), "level": level}
    return payload


def to_manifest(result: AnalysisResult) -> Dict[str, Any]:
    """
    JSON-ready view of one result, records in id order, for downstream rendering
    and reports.
    """

    return {
        "image_path": result.image_path,
        "success": result.success,
        "error": result.error,
        "started_at": result.started_at.isoformat(timespec="milliseconds"),
        "finished_at": result.finished_at.isoformat(timespec="milliseconds"),
        "total_ms": round(result.total_s * 1000.0, 3),
        "image_size": list(result.image_size),
        "timings_ms": {
            "detection": round(result.timings.detection_s * 1000.0, 3),
            "classification": round(result.timings.classification_s * 1000.0, 3),
            "rendering": round(result.timings.rendering_s * 1000.0, 3),
        },
        "detected": result.detected_count,
        "classified": result.classified_count,
        "detection_note": result.detection_note,
        "output_path": result.output_path,
        "class_summary": {
            label: {"count": s.count, "mean_confidence": round(s.mean_confidence, 4)}
            for label, s in result.class_summary().items()
        },
        "leaves": [record_to_dict(r) for r in result.records],
    }


def batch_summary(results: Sequence[AnalysisResult]) -> Dict[str, Any]:
    per_class: Dict[str, List[float]] = {}
    for res in results:
        for r in res.records:
            if r.is_classified:
                per_class.setdefault(r.classification.label, []).append(r.classification.confidence)

    return {
        "images": len(results),
        "succeeded": sum(1 for r in results if r.success),
        "failed": sum(1 for r in results if not r.success),
        "leaves_detected": sum(r.detected_count for r in results),
        "leaves_classified": sum(r.classified_count for r in results),
        "class_counts": {
            label: {"count": len(confs), "mean_confidence": round(sum(confs) / len(confs), 4)}
            for label, confs in sorted(per_class.items(), key=lambda kv: (-len(kv[1]), kv[0]))
        },
        "failures": [{"image_path": r.image_path, "error": r.error} for r in results if not r.success],
    }
