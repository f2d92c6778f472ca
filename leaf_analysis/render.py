from __future__ import annotations

from pathlib import Path
from typing import List, Sequence, Tuple, Union

import cv2
import numpy as np

from .records import LeafRecord

# OpenCV expects BGR
CLASSIFIED_COLOR = (0, 200, 0)
UNCLASSIFIED_COLOR = (0, 0, 255)
TEXT_COLOR = (255, 255, 255)
PANEL_COLOR = (0, 0, 0)


def _label_lines(record: LeafRecord) -> List[str]:
    lines = [f"ID: {record.id}"]
    lines.append(f"{record.display_label} ({record.display_confidence:.2f})")
    lines.append(f"Area: {record.detection.area_percentage:.1f}%")
    return lines


def _draw_text_block(
    out: np.ndarray,
    lines: Sequence[str],
    origin: Tuple[int, int],
    *,
    font_scale: float,
    thickness: int,
    alpha: float = 0.7,
) -> None:
    """
    Semi-transparent background + one text line per entry, clipped to the image.
    """

    h, w = out.shape[:2]
    sizes = [cv2.getTextSize(line, cv2.FONT_HERSHEY_SIMPLEX, font_scale, thickness) for line in lines]
    line_h = max(th + base for (_, th), base in sizes) + 2
    block_w = max(tw for (tw, _), _ in sizes) + 10
    block_h = line_h * len(lines) + 4

    x0 = int(np.clip(origin[0], 0, max(0, w - 1)))
    y0 = int(np.clip(origin[1], 0, max(0, h - 1)))
    x1 = min(x0 + block_w, w - 1)
    y1 = min(y0 + block_h, h - 1)
    if x1 > x0 and y1 > y0:
        roi = out[y0:y1, x0:x1]
        panel = np.full_like(roi, PANEL_COLOR)
        out[y0:y1, x0:x1] = cv2.addWeighted(panel, alpha, roi, 1.0 - alpha, 0)

    for i, line in enumerate(lines):
        y = y0 + line_h * (i + 1)
        cv2.putText(
            out,
            line,
            (x0 + 5, min(y, h - 1)),
            cv2.FONT_HERSHEY_SIMPLEX,
            font_scale,
            TEXT_COLOR,
            thickness=thickness,
            lineType=cv2.LINE_AA,
        )


def draw_leaf_records(
    image_bgr: np.ndarray,
    records: Sequence[LeafRecord],
    *,
    box_thickness: int = 2,
    font_scale: float = 0.45,
    font_thickness: int = 1,
) -> np.ndarray:
    """
    Draw boxes, labels, centre points and a summary panel; returns a copy.

    Classified leaves are green, unclassified (or failed) ones red.
    """

    if image_bgr is None or not hasattr(image_bgr, "shape"):
        raise TypeError("image_bgr must be a NumPy array (BGR).")
    if image_bgr.ndim != 3 or image_bgr.shape[2] != 3:
        raise ValueError(f"Expected image shape (H, W, 3), got {getattr(image_bgr, 'shape', None)}")

    out = image_bgr.copy()
    h, w = out.shape[:2]

    for record in records:
        x1, y1, x2, y2 = record.detection.box.as_int_xyxy()
        x1, x2 = int(np.clip(x1, 0, w - 1)), int(np.clip(x2, 0, w - 1))
        y1, y2 = int(np.clip(y1, 0, h - 1)), int(np.clip(y2, 0, h - 1))
        color = CLASSIFIED_COLOR if record.is_classified else UNCLASSIFIED_COLOR

        cv2.rectangle(out, (x1, y1), (x2, y2), color, thickness=box_thickness)
        cx, cy = record.detection.center
        cv2.circle(out, (int(cx), int(cy)), 3, color, thickness=-1)

        lines = _label_lines(record)
        # Place the label block above the box if possible, else inside.
        _draw_text_block(out, lines, (x1, max(0, y1 - 60)), font_scale=font_scale, thickness=font_thickness)

    summary = [f"Total leaves: {len(records)}"]
    classified = sum(1 for r in records if r.is_classified)
    if classified:
        summary.append(f"Classified: {classified}")
    _draw_text_block(out, summary, (10, 10), font_scale=0.5, thickness=1, alpha=0.8)

    return out


def save_annotated(
    path: Union[str, Path],
    image_bgr: np.ndarray,
    records: Sequence[LeafRecord],
) -> Path:
    out_path = Path(path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    vis = draw_leaf_records(image_bgr, records)
    ok = cv2.imwrite(str(out_path), vis)
    if not ok:
        raise OSError(f"Failed to write annotated image: {out_path}")
    return out_path
