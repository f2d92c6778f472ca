"""
Inference backends for leaf_kit.

Backend modules are imported on demand (see `leaf_kit.runtime.create_backend`) so
decoding, NMS and post-processing can be used without an inference runtime.
"""

from __future__ import annotations

__all__ = []
