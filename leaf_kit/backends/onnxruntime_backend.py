from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np
import onnxruntime as ort

PathLike = Union[str, Path]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OnnxRuntimeBackendConfig:
    """
    Configuration for ONNX Runtime inference.

    - providers: ORT execution providers (e.g., ["CUDAExecutionProvider", "CPUExecutionProvider"])
    - input_name/output_name: override auto-selected I/O names if needed
    - optimize: enable every graph optimisation level
    """

    providers: Optional[Sequence[str]] = None
    input_name: Optional[str] = None
    output_name: Optional[str] = None
    optimize: bool = True


class OnnxRuntimeBackend:
    """
    ONNX Runtime backend shared by the detector and the region classifier.

    Expects an NCHW float32 blob, typically shaped (1, 3, H, W), and returns the
    selected output as a NumPy array. `InferenceSession.run` is safe to call
    from several threads, so one backend serves a whole worker pool.
    """

    def __init__(self, model_path: PathLike, cfg: OnnxRuntimeBackendConfig = OnnxRuntimeBackendConfig()):
        self.model_path = Path(model_path)
        if not self.model_path.exists():
            raise FileNotFoundError(f"Model not found: {self.model_path}")

        sess_opts = ort.SessionOptions()
        if cfg.optimize:
            sess_opts.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL
        providers = list(cfg.providers) if cfg.providers is not None else None
        self.session = ort.InferenceSession(str(self.model_path), sess_options=sess_opts, providers=providers)

        self.input_name = cfg.input_name or self.session.get_inputs()[0].name
        # If output_name not provided, pick first output.
        self.output_name = cfg.output_name or self.session.get_outputs()[0].name
        logger.info(
            "Loaded %s (inputs=%s outputs=%s providers=%s)",
            self.model_path.name,
            self.input_shapes,
            self.output_shapes,
            list(self.providers_in_use),
        )

    @property
    def providers_in_use(self) -> Sequence[str]:
        # ORT returns providers in priority order for this session.
        return tuple(self.session.get_providers())

    @property
    def input_shapes(self) -> Dict[str, List[Any]]:
        return {i.name: list(i.shape) for i in self.session.get_inputs()}

    @property
    def output_shapes(self) -> Dict[str, List[Any]]:
        return {o.name: list(o.shape) for o in self.session.get_outputs()}

    def infer(self, blob: np.ndarray) -> np.ndarray:
        outputs = self.session.run([self.output_name], {self.input_name: blob})
        return outputs[0]
