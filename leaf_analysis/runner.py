from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from tqdm import tqdm

from .aggregate import center_pixel, illumination_level
from .config import AnalysisOptions, apply_run_config, collect_cli_dests, load_run_config, options_from_dict
from .records import AnalysisResult
from .reporting import today_date_str, write_batch_csv, write_batch_report, write_result_manifest
from .service import LeafAnalysisService

logger = logging.getLogger("leaf_analysis.runner")

DEFAULTS = AnalysisOptions()


def _parse_providers(raw: Optional[str]) -> Optional[List[str]]:
    if raw is None:
        return None
    # Shell line continuations can leave stray quotes/backticks around names.
    parts = [p.strip().strip("'\"`") for p in str(raw).split(",")]
    return [p for p in parts if p] or None


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Tomato leaf detection + disease classification.")
    p.add_argument("--image", nargs="+", default=None, help="One or more image paths.")
    p.add_argument("--config", default=None, help="JSON run config; CLI flags override its values.")
    p.add_argument("--detector-model", default=DEFAULTS.detector_model)
    p.add_argument("--classifier-model", default=DEFAULTS.classifier_model)
    p.add_argument("--detector-metadata", default=None, help="Detector class names (metadata.yaml).")
    p.add_argument("--classifier-metadata", default=None, help="Class names for the disease classifier.")
    p.add_argument("--conf", type=float, default=DEFAULTS.confidence_threshold)
    p.add_argument("--iou", type=float, default=DEFAULTS.iou_threshold)
    p.add_argument("--max-det", type=int, default=DEFAULTS.max_detections)
    p.add_argument("--padding", type=int, default=DEFAULTS.region_padding)
    p.add_argument("--imgsz", type=int, default=DEFAULTS.input_size)
    p.add_argument("--cls-imgsz", type=int, default=DEFAULTS.classifier_input_size)
    p.add_argument("--workers", type=int, default=0, help="Worker threads (0 = one per CPU core).")
    p.add_argument("--onnx-providers", default=None, help='Comma separated, e.g. "CUDAExecutionProvider,CPUExecutionProvider".')
    p.add_argument("--out-dir", default="output")
    p.add_argument("--no-classify", action="store_true", help="Detection only.")
    p.add_argument("--no-save", action="store_true", help="Do not write annotated images.")
    p.add_argument("--save-regions", action="store_true", help="Also write every cropped leaf region.")
    p.add_argument("--no-report", action="store_true", help="Skip JSON/CSV reports.")
    p.add_argument("--center-color", action="store_true", help="Only print the RGB value at each image centre.")
    p.add_argument("--no-progress", action="store_true")
    p.add_argument("--log-level", default="WARNING", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return p


def options_from_args(args: argparse.Namespace) -> AnalysisOptions:
    """
    Map merged CLI args onto option keys; `options_from_dict` does the type and
    range checks for both the CLI and JSON configs.
    """

    return options_from_dict(
        {
            "detector_model": args.detector_model,
            "classifier_model": args.classifier_model,
            "detector_metadata": args.detector_metadata,
            "classifier_metadata": args.classifier_metadata,
            "enable_classification": not bool(args.no_classify),
            "save_results": not bool(args.no_save),
            "save_regions": bool(args.save_regions),
            "output_dir": str(args.out_dir),
            "confidence_threshold": float(args.conf),
            "iou_threshold": float(args.iou),
            "max_detections": int(args.max_det),
            "region_padding": int(args.padding),
            "input_size": int(args.imgsz),
            "classifier_input_size": int(args.cls_imgsz),
            "max_workers": int(args.workers) if args.workers and args.workers > 0 else None,
            "onnx_providers": _parse_providers(args.onnx_providers),
        }
    )


def format_result(result: AnalysisResult) -> List[str]:
    name = Path(result.image_path).name
    if not result.success:
        return [f"[FAIL] {name}: {result.error}"]

    t = result.timings
    lines = [
        f"[OK] {name}: {result.detected_count} leaves, {result.classified_count} classified "
        f"(total {result.total_s * 1000:.0f} ms | detect {t.detection_s * 1000:.0f} ms | "
        f"classify {t.classification_s * 1000:.0f} ms | render {t.rendering_s * 1000:.0f} ms)"
    ]
    if result.detection_note:
        lines.append(f"  note: {result.detection_note}")
    for r in result.records:
        x1, y1, x2, y2 = r.detection.box.as_int_xyxy()
        line = (
            f"  Leaf #{r.id}: {r.display_label} ({r.display_confidence:.1%}) "
            f"box=({x1},{y1},{x2},{y2}) area={r.detection.area_percentage:.1f}%"
        )
        rgb = center_pixel(r.region_png)
        if rgb is not None:
            _, level = illumination_level(rgb)
            line += f" rgb={rgb} light={level}"
        if r.error:
            line += f" error={r.error}"
        lines.append(line)
    if result.output_path:
        lines.append(f"  saved: {result.output_path}")
    return lines


def format_disease_summary(results: Sequence[AnalysisResult]) -> List[str]:
    counts: Dict[str, int] = {}
    for res in results:
        for label, summary in res.class_summary().items():
            counts[label] = counts.get(label, 0) + summary.count
    if not counts:
        return []
    total = sum(counts.values())
    lines = ["Disease summary:"]
    for label, count in sorted(counts.items(), key=lambda kv: (-kv[1], kv[0])):
        lines.append(f"  {label}: {count} ({count / total:.1%})")
    return lines


def run(args: argparse.Namespace) -> int:
    if not args.image:
        raise ValueError("At least one --image is required (or 'image' in --config).")

    options = options_from_args(args)
    logger.info("analysing %d image(s) with %s", len(args.image), options)
    with LeafAnalysisService(options) as service:
        if args.center_color:
            failed = 0
            for path in args.image:
                try:
                    r, g, b = service.center_color(path)
                except (FileNotFoundError, ValueError) as exc:
                    failed += 1
                    print(f"[FAIL] {Path(path).name}: {exc}")
                    continue
                print(f"{path}: RGB({r}, {g}, {b})")
            return 0 if failed == 0 else 1

        pbar = None
        if not args.no_progress and len(args.image) > 1:
            pbar = tqdm(total=len(args.image), unit="img", desc="leaves")
        try:
            results = service.process_batch(args.image, on_done=(lambda _r: pbar.update(1)) if pbar else None)
        finally:
            if pbar is not None:
                pbar.close()

    for res in results:
        for line in format_result(res):
            print(line)
    for line in format_disease_summary(results):
        print(line)

    if not args.no_report:
        out_dir = Path(options.output_dir)
        date = today_date_str()
        for res in results:
            write_result_manifest(out_dir=out_dir, result=res)
        csv_path = write_batch_csv(out_dir=out_dir, date=date, results=results)
        report_path = write_batch_report(out_dir=out_dir, date=date, results=results)
        print(f"Wrote leaves CSV: {csv_path}")
        print(f"Wrote batch report: {report_path}")

    failed = sum(1 for r in results if not r.success)
    print(f"Images: {len(results)} | succeeded: {len(results) - failed} | failed: {failed}")
    return 0 if failed == 0 else 1


def main(argv: Optional[Sequence[str]] = None) -> int:
    argv_list = list(sys.argv[1:] if argv is None else argv)
    parser = build_parser()
    args = parser.parse_args(argv_list)

    if args.config:
        apply_run_config(
            args=args,
            payload=load_run_config(Path(args.config)),
            cli_dests=collect_cli_dests(parser, argv_list),
            parser=parser,
        )

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    return run(args)


if __name__ == "__main__":
    raise SystemExit(main())
