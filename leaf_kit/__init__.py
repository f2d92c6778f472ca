"""
Detection engine for the leaf analysis pipeline.

Framework-agnostic: decoding, NMS and post-processing work on NumPy arrays
emitted by ONNX Runtime or TorchScript. OpenCV is used for resizing only.
"""

from .geometry import Box, iou
from .types import Candidate, Detection
from .layouts import DecodeResult, OutputLayout, decode, match_layout
from .nms import NMSConfig, nms, suppress
from .postprocess import DetectionOutcome, LeafPostConfig, LeafPostprocessor
from .metadata import ClassNameTable, load_class_names
from .runtime import LeafDetector, create_backend, find_project_root, load_detector, resolve_path

__all__ = [
    "Box",
    "iou",
    "Candidate",
    "Detection",
    "DecodeResult",
    "OutputLayout",
    "decode",
    "match_layout",
    "NMSConfig",
    "nms",
    "suppress",
    "DetectionOutcome",
    "LeafPostConfig",
    "LeafPostprocessor",
    "ClassNameTable",
    "load_class_names",
    "LeafDetector",
    "create_backend",
    "find_project_root",
    "load_detector",
    "resolve_path",
]
