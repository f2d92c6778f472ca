from typing import Sequence

import cv2
import numpy as np

IMAGENET_MEAN = (0.485, 0.456, 0.406)
IMAGENET_STD = (0.229, 0.224, 0.225)


def _check_bgr(image_bgr: np.ndarray) -> None:
    if image_bgr is None or not hasattr(image_bgr, "shape"):
        raise TypeError("image_bgr must be a NumPy array (BGR).")
    if image_bgr.ndim != 3 or image_bgr.shape[2] != 3:
        raise ValueError(f"Expected image shape (H, W, 3), got {getattr(image_bgr, 'shape', None)}")


def _to_chw_rgb(image_bgr: np.ndarray, input_size: int) -> np.ndarray:
    _check_bgr(image_bgr)
    h, w = image_bgr.shape[:2]
    if (w, h) != (input_size, input_size):
        image_bgr = cv2.resize(image_bgr, (input_size, input_size), interpolation=cv2.INTER_LINEAR)
    # BGR -> RGB, scale to [0, 1], HWC -> CHW
    rgb = image_bgr[:, :, ::-1].astype(np.float32) / 255.0
    return np.transpose(rgb, (2, 0, 1))


def detector_blob(image_bgr: np.ndarray, input_size: int = 640) -> np.ndarray:
    """
    Plain square resize (no letterbox): box coordinates map back with
    `coord * original / input_size` on each axis.

    Returns float32 blob shaped (1, 3, S, S).
    """

    return np.ascontiguousarray(_to_chw_rgb(image_bgr, input_size)[None, ...])


def classifier_blob(
    image_bgr: np.ndarray,
    input_size: int = 224,
    mean: Sequence[float] = IMAGENET_MEAN,
    std: Sequence[float] = IMAGENET_STD,
) -> np.ndarray:
    chw = _to_chw_rgb(image_bgr, input_size)
    m = np.asarray(mean, dtype=np.float32).reshape(3, 1, 1)
    s = np.asarray(std, dtype=np.float32).reshape(3, 1, 1)
    return np.ascontiguousarray(((chw - m) / s)[None, ...])
