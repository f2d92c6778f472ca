from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional, Sequence, Tuple, Union

import numpy as np

from .metadata import ClassNameTable
from .postprocess import DetectionOutcome, LeafPostConfig, LeafPostprocessor
from .preprocess import detector_blob

PathLike = Union[str, Path]
InferFn = Callable[[np.ndarray], np.ndarray]

logger = logging.getLogger(__name__)


def find_project_root(
    start: Optional[PathLike] = None,
    markers: Sequence[str] = ("pyproject.toml", "setup.py", ".git", "requirements.txt"),
) -> Path:
    """
    Best-effort project root discovery, so `models/...` resolves from anywhere
    inside the checkout.
    """

    p = Path(start) if start is not None else Path.cwd()
    p = p.resolve()

    # If a file is provided, start from its directory.
    if p.is_file():
        p = p.parent

    for parent in (p, *p.parents):
        for m in markers:
            if (parent / m).exists():
                return parent
    return p


def resolve_path(path: PathLike, root: Optional[PathLike] = "auto") -> Path:
    """
    Resolve `path` to an absolute Path.

    - Absolute paths are returned as-is.
    - Relative paths are resolved against `root` if provided, the project root otherwise.
    """

    p = Path(path)
    if p.is_absolute():
        return p

    if root == "auto" or root is None:
        base = find_project_root()
    else:
        base = Path(root).resolve()

    return (base / p).resolve()


def backend_for_suffix(suffix: str) -> str:
    suffix = suffix.lower()
    if suffix == ".onnx":
        return "onnxruntime"
    if suffix in {".torchscript", ".ts", ".pt"}:
        return "torchscript"
    raise ValueError(f"Could not infer backend from extension '{suffix}'. Pass backend=... explicitly.")


def create_backend(
    model_path: PathLike,
    *,
    backend: Optional[str] = None,
    root: Optional[PathLike] = "auto",
    onnx_providers: Optional[Sequence[str]] = None,
    torch_device: str = "cpu",
) -> Tuple[InferFn, object]:
    """
    Load an inference engine for `model_path`.

    Returns (infer_fn, backend_object). Raises FileNotFoundError for a missing
    model file and ValueError for an unknown backend.
    """

    resolved = resolve_path(model_path, root=root)
    if not resolved.exists():
        raise FileNotFoundError(f"Model not found: {resolved}")
    chosen = (backend or backend_for_suffix(resolved.suffix)).lower()

    if chosen == "onnxruntime":
        from .backends.onnxruntime_backend import OnnxRuntimeBackend, OnnxRuntimeBackendConfig

        ort_backend = OnnxRuntimeBackend(resolved, OnnxRuntimeBackendConfig(providers=onnx_providers))
        return ort_backend.infer, ort_backend

    if chosen == "torchscript":
        from .backends.torchscript_backend import TorchScriptBackend, TorchScriptBackendConfig

        ts_backend = TorchScriptBackend(resolved, TorchScriptBackendConfig(device=torch_device))
        return ts_backend.infer, ts_backend

    raise ValueError(f"Unsupported backend: {backend!r}")


class LeafDetector:
    """
    Preprocess (square resize) -> inference -> post-process.

    Takes BGR images (OpenCV-style) and returns a `DetectionOutcome` in original
    image coordinates, each detection carrying its centre pixel colour.
    """

    def __init__(
        self,
        infer_fn: InferFn,
        *,
        post_cfg: LeafPostConfig = LeafPostConfig(),
        class_names: Optional[ClassNameTable] = None,
        backend: Optional[object] = None,
    ):
        self._infer_fn = infer_fn
        self.backend = backend
        self.post = LeafPostprocessor(post_cfg, class_names)

    @property
    def input_size(self) -> int:
        return self.post.cfg.input_size

    def detect(self, image_bgr: np.ndarray) -> DetectionOutcome:
        blob = detector_blob(image_bgr, self.input_size)
        preds = self._infer_fn(blob)
        orig_h, orig_w = image_bgr.shape[:2]
        outcome = self.post.process(np.asarray(preds), orig_size=(orig_w, orig_h))
        logger.info(
            "detector: %s layout, %d raw boxes, %d above threshold, %d kept",
            outcome.layout.value,
            outcome.raw_count,
            outcome.candidate_count,
            len(outcome.detections),
        )
        coloured = tuple(d.with_center_color(image_bgr) for d in outcome.detections)
        return DetectionOutcome(
            detections=coloured,
            layout=outcome.layout,
            raw_count=outcome.raw_count,
            candidate_count=outcome.candidate_count,
            note=outcome.note,
            image_size=outcome.image_size,
        )

    __call__ = detect


def load_detector(
    model_path: PathLike,
    *,
    backend: Optional[str] = None,
    root: Optional[PathLike] = "auto",
    post_cfg: LeafPostConfig = LeafPostConfig(),
    class_names: Optional[ClassNameTable] = None,
    onnx_providers: Optional[Sequence[str]] = None,
    torch_device: str = "cpu",
) -> LeafDetector:
    """
    Create a detector for a model on disk.

        detector = load_detector("models/tomato_leaf.onnx")  # resolves from project root
    """

    infer_fn, engine = create_backend(
        model_path,
        backend=backend,
        root=root,
        onnx_providers=onnx_providers,
        torch_device=torch_device,
    )
    return LeafDetector(infer_fn, post_cfg=post_cfg, class_names=class_names, backend=engine)
