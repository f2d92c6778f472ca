from __future__ import annotations

import csv
import hashlib
import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .aggregate import batch_summary, to_manifest
from .records import AnalysisResult, LeafRecord

CSV_FIELDS = (
    "image_path",
    "success",
    "error",
    "leaf_id",
    "label",
    "confidence",
    "detector_score",
    "x1",
    "y1",
    "x2",
    "y2",
    "area_percentage",
    "classification_ms",
)


def today_date_str(now: Optional[datetime] = None) -> str:
    dt = now or datetime.now()
    return dt.strftime("%Y-%m-%d")


def output_key(image_path: str) -> str:
    """
    `<stem>_<8 hex of sha256(absolute path)>`: distinct inputs sharing a file name
    (`a/leaf.png`, `b/leaf.png`) never share output files.
    """

    p = Path(image_path)
    digest = hashlib.sha256(str(p.resolve()).encode("utf-8")).hexdigest()[:8]
    return f"{p.stem}_{digest}"


def output_image_path(out_dir: Path, image_path: str, started_at: Optional[datetime] = None) -> Path:
    stamp = (started_at or datetime.now()).strftime("%Y%m%d_%H%M%S")
    return out_dir / f"analysis_{output_key(image_path)}_{stamp}.png"


def write_result_manifest(*, out_dir: Path, result: AnalysisResult) -> Path:
    report_dir = out_dir / "reports" / today_date_str(result.started_at)
    report_dir.mkdir(parents=True, exist_ok=True)
    path = report_dir / f"{output_key(result.image_path)}.json"
    path.write_text(json.dumps(to_manifest(result), indent=2, sort_keys=True), encoding="utf-8")
    return path


def write_region_images(out_dir: Path, image_path: str, records: Iterable[LeafRecord]) -> List[Path]:
    """
    Dump each record's encoded region as `regions/<output key>/leaf_<id>.png`.
    Records without region bytes (extraction failed) are skipped.
    """

    region_dir = out_dir / "regions" / output_key(image_path)
    region_dir.mkdir(parents=True, exist_ok=True)
    written: List[Path] = []
    for record in records:
        if not record.region_png:
            continue
        path = region_dir / f"leaf_{record.id}.png"
        path.write_bytes(record.region_png)
        written.append(path)
    return written


def result_rows(result: AnalysisResult) -> List[Dict[str, Any]]:
    if not result.records:
        return [
            {
                "image_path": result.image_path,
                "success": result.success,
                "error": result.error or "",
            }
        ]

    rows: List[Dict[str, Any]] = []
    for r in result.records:
        x1, y1, x2, y2 = r.detection.as_xyxy()
        rows.append(
            {
                "image_path": result.image_path,
                "success": result.success,
                "error": r.error or "",
                "leaf_id": r.id,
                "label": r.display_label,
                "confidence": round(r.display_confidence, 4),
                "detector_score": round(r.detection.score, 4),
                "x1": round(x1, 1),
                "y1": round(y1, 1),
                "x2": round(x2, 1),
                "y2": round(y2, 1),
                "area_percentage": round(r.detection.area_percentage, 2),
                "classification_ms": round(r.elapsed_s * 1000.0, 3),
            }
        )
    return rows


def write_batch_csv(*, out_dir: Path, date: str, results: Sequence[AnalysisResult]) -> Path:
    report_dir = out_dir / "reports" / date
    report_dir.mkdir(parents=True, exist_ok=True)
    path = report_dir / "leaves.csv"
    rows: List[Dict[str, Any]] = []
    for res in results:
        rows.extend(result_rows(res))
    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=list(CSV_FIELDS), restval="")
        writer.writeheader()
        writer.writerows(rows)
    return path


def write_batch_report(*, out_dir: Path, date: str, results: Sequence[AnalysisResult]) -> Path:
    report_dir = out_dir / "reports" / date
    report_dir.mkdir(parents=True, exist_ok=True)
    path = report_dir / "batch_report.json"
    payload = batch_summary(results)
    payload["date"] = date
    path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
    return path
