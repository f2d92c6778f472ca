from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Union

import cv2
import numpy as np

from leaf_kit.metadata import DEFAULT_DISEASE_CLASSES, ClassNameTable
from leaf_kit.preprocess import classifier_blob
from leaf_kit.runtime import create_backend

from .records import ClassificationOutcome

PathLike = Union[str, Path]
InferFn = Callable[[np.ndarray], np.ndarray]

logger = logging.getLogger(__name__)


def softmax(values: np.ndarray) -> np.ndarray:
    v = np.asarray(values, dtype=np.float64).ravel()
    if v.size == 0:
        raise ValueError("softmax of an empty vector")
    e = np.exp(v - v.max())
    return e / e.sum()


def decode_image_bytes(data: bytes) -> np.ndarray:
    if not data:
        raise ValueError("Image bytes are empty")
    image = cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_COLOR)
    if image is None:
        raise ValueError("Could not decode image bytes")
    return image


class RegionClassifier:
    """
    Disease classifier for one leaf region.

    The model is a black box mapping a (1, 3, S, S) ImageNet-normalised blob to
    one logit per class; probabilities are the softmax of those logits.
    """

    def __init__(
        self,
        infer_fn: InferFn,
        *,
        class_names: Optional[ClassNameTable] = None,
        input_size: int = 224,
        backend: Optional[object] = None,
    ):
        self._infer_fn = infer_fn
        self.class_names = class_names if class_names is not None else ClassNameTable(DEFAULT_DISEASE_CLASSES)
        self.input_size = input_size
        self.backend = backend

    def classify_image(self, image_bgr: np.ndarray) -> ClassificationOutcome:
        blob = classifier_blob(image_bgr, self.input_size)
        logits = np.asarray(self._infer_fn(blob))
        probs = softmax(logits)
        best = int(np.argmax(probs))
        return ClassificationOutcome(
            label=self.class_names.resolve(best),
            confidence=float(probs[best]),
            probabilities={self.class_names.resolve(i): float(p) for i, p in enumerate(probs)},
            class_index=best,
        )

    def classify_bytes(self, data: bytes, name: str = "region") -> ClassificationOutcome:
        """
        Classify an encoded image (PNG/JPEG). Raises ValueError on empty or
        undecodable input; callers that need a sentinel catch it themselves.
        """

        outcome = self.classify_image(decode_image_bytes(data))
        logger.debug("classified %s as %s (%.3f)", name, outcome.label, outcome.confidence)
        return outcome

    def classify_path(self, image_path: PathLike) -> ClassificationOutcome:
        path = Path(image_path)
        if not path.exists():
            raise FileNotFoundError(f"Image not found: {path}")
        image = cv2.imread(str(path))
        if image is None:
            raise ValueError(f"Could not read image: {path}")
        return self.classify_image(image)

    def classify_batch(self, images: Sequence[bytes]) -> List[ClassificationOutcome]:
        """
        Classify encoded images one by one; a failing item becomes a sentinel
        outcome at its own position.
        """

        outcomes: List[ClassificationOutcome] = []
        for i, data in enumerate(images):
            try:
                outcomes.append(self.classify_bytes(data, name=f"batch_image_{i}"))
            except Exception as exc:
                logger.warning("batch item %d could not be classified: %s", i, exc)
                outcomes.append(ClassificationOutcome.failed(str(exc)))
        return outcomes


def load_classifier(
    model_path: PathLike,
    *,
    backend: Optional[str] = None,
    root: Optional[PathLike] = "auto",
    class_names: Optional[ClassNameTable] = None,
    input_size: int = 224,
    onnx_providers: Optional[Sequence[str]] = None,
) -> RegionClassifier:
    infer_fn, engine = create_backend(model_path, backend=backend, root=root, onnx_providers=onnx_providers)
    return RegionClassifier(infer_fn, class_names=class_names, input_size=input_size, backend=engine)
