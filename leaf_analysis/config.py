from __future__ import annotations

import argparse
import json
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Tuple


@dataclass(frozen=True)
class AnalysisOptions:
    detector_model: str = "models/tomato_leaf_detector.onnx"
    classifier_model: str = "models/tomato_disease_classifier.onnx"
    detector_metadata: Optional[str] = None
    classifier_metadata: Optional[str] = None
    enable_detection: bool = True
    enable_classification: bool = True
    save_results: bool = True
    save_regions: bool = False
    output_dir: str = "."
    confidence_threshold: float = 0.007
    iou_threshold: float = 0.65
    max_detections: int = 15
    region_padding: int = 10
    input_size: int = 640
    classifier_input_size: int = 224
    # None = one worker per CPU core
    max_workers: Optional[int] = None
    onnx_providers: Optional[Tuple[str, ...]] = None

    def __post_init__(self) -> None:
        if not (0.0 <= self.confidence_threshold <= 1.0):
            raise ValueError("confidence_threshold must be within [0, 1]")
        if not (0.0 <= self.iou_threshold <= 1.0):
            raise ValueError("iou_threshold must be within [0, 1]")
        if self.max_detections < 1:
            raise ValueError("max_detections must be >= 1")
        if self.region_padding < 0:
            raise ValueError("region_padding must be >= 0")
        if self.input_size < 32:
            raise ValueError("input_size must be >= 32")
        if self.classifier_input_size < 32:
            raise ValueError("classifier_input_size must be >= 32")
        if self.max_workers is not None and self.max_workers < 1:
            raise ValueError("max_workers must be >= 1 when set")


_STR_KEYS = {"detector_model", "classifier_model", "output_dir"}
_OPTIONAL_STR_KEYS = {"detector_metadata", "classifier_metadata"}
_BOOL_KEYS = {"enable_detection", "enable_classification", "save_results", "save_regions"}
_INT_KEYS = {"max_detections", "region_padding", "input_size", "classifier_input_size"}
_FLOAT_KEYS = {"confidence_threshold", "iou_threshold"}


def _require_number(payload: Dict[str, Any], key: str) -> float:
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key} must be a number")
    return float(value)


def _require_int(payload: Dict[str, Any], key: str) -> int:
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key} must be an integer")
    if isinstance(value, float) and not value.is_integer():
        raise ValueError(f"{key} must be an integer")
    return int(value)


def _coerce_providers(value: object) -> Tuple[str, ...]:
    if isinstance(value, str):
        parts = [p.strip() for p in value.split(",") if p.strip()]
    elif isinstance(value, list) and all(isinstance(p, str) for p in value):
        parts = [p.strip() for p in value if p.strip()]
    else:
        raise ValueError("onnx_providers must be a string or list of strings")
    if not parts:
        raise ValueError("onnx_providers must not be empty")
    return tuple(parts)


def options_from_dict(payload: Dict[str, Any]) -> AnalysisOptions:
    allowed = {f.name for f in fields(AnalysisOptions)}
    unknown = sorted(set(payload.keys()) - allowed)
    if unknown:
        raise ValueError(f"Unknown analysis option keys: {unknown}")

    kwargs: Dict[str, Any] = {}
    for key, value in payload.items():
        if key in _STR_KEYS:
            if not isinstance(value, str) or not value.strip():
                raise ValueError(f"{key} must be a non-empty string")
            kwargs[key] = value
        elif key in _OPTIONAL_STR_KEYS:
            if value is not None and (not isinstance(value, str) or not value.strip()):
                raise ValueError(f"{key} must be a non-empty string if provided")
            kwargs[key] = value
        elif key in _BOOL_KEYS:
            if not isinstance(value, bool):
                raise ValueError(f"{key} must be a boolean")
            kwargs[key] = value
        elif key in _INT_KEYS:
            kwargs[key] = _require_int(payload, key)
        elif key in _FLOAT_KEYS:
            kwargs[key] = _require_number(payload, key)
        elif key == "max_workers":
            kwargs[key] = None if value is None else _require_int(payload, key)
        elif key == "onnx_providers":
            kwargs[key] = None if value is None else _coerce_providers(value)

    return AnalysisOptions(**kwargs)


def load_run_config(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Run config not found: {path}")
    raw = path.read_text(encoding="utf-8")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid run config JSON: {path}") from exc
    if not isinstance(payload, dict):
        raise ValueError("Run config must be a JSON object")
    return payload


# ---------------------------------------------------------------------- #
# JSON run config merged into argparse args (CLI flags win)
# ---------------------------------------------------------------------- #
def collect_cli_dests(parser: argparse.ArgumentParser, argv: Sequence[str]) -> set[str]:
    dests: set[str] = set()
    for opt, action in parser._option_string_actions.items():
        for arg in argv:
            if arg == opt or arg.startswith(f"{opt}="):
                dests.add(action.dest)
                break
    return dests


def apply_run_config(
    *,
    args: argparse.Namespace,
    payload: Dict[str, Any],
    cli_dests: set[str],
    parser: argparse.ArgumentParser,
) -> None:
    """
    Copy run-config values onto `args` unless the same option was given on the
    command line. Keys are argparse dests; values are type-checked against the
    parser defaults.
    """

    allowed = {action.dest for action in parser._actions if action.dest != "help"}
    if "config" in payload:
        raise ValueError("run config must not include the 'config' key")
    unknown = sorted(k for k in payload.keys() if k not in allowed)
    if unknown:
        raise ValueError(f"Unknown run config keys: {unknown}")

    for key, value in payload.items():
        if key in cli_dests or value is None:
            continue
        default = parser.get_default(key)
        if key == "image":
            if isinstance(value, str):
                value = [value]
            if not isinstance(value, list) or not all(isinstance(v, str) and v.strip() for v in value):
                raise ValueError("image must be a path or list of paths")
        elif isinstance(default, bool):
            if not isinstance(value, bool):
                raise ValueError(f"{key} must be a boolean")
        elif isinstance(default, int):
            value = _require_int(payload, key)
        elif isinstance(default, float):
            value = _require_number(payload, key)
        elif isinstance(value, list) and all(isinstance(v, str) for v in value):
            value = ",".join(v.strip() for v in value if v.strip())
        elif isinstance(value, (int, float)) and not isinstance(value, bool):
            value = _require_int(payload, key)
        elif not isinstance(value, str) or not value.strip():
            raise ValueError(f"{key} must be a non-empty string")
        setattr(args, key, value)
