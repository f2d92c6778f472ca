import tempfile
import unittest
from pathlib import Path

import numpy as np

from leaf_kit.layouts import OutputLayout
from leaf_kit.postprocess import LeafPostConfig
from leaf_kit.runtime import LeafDetector, backend_for_suffix, create_backend, find_project_root, resolve_path


class TestBackendSelection(unittest.TestCase):
    def test_suffix_mapping(self) -> None:
        self.assertEqual(backend_for_suffix(".onnx"), "onnxruntime")
        self.assertEqual(backend_for_suffix(".ONNX"), "onnxruntime")
        self.assertEqual(backend_for_suffix(".pt"), "torchscript")
        self.assertEqual(backend_for_suffix(".torchscript"), "torchscript")
        with self.assertRaises(ValueError):
            backend_for_suffix(".engine")

    def test_missing_model_raises_before_loading(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        with self.assertRaises(FileNotFoundError) as ctx:
            create_backend(Path(tmpdir.name) / "missing.onnx")
        self.assertIn("Model not found", str(ctx.exception))

    def test_resolve_path(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        root = Path(tmpdir.name)
        (root / "pyproject.toml").write_text("", encoding="utf-8")
        (root / "models").mkdir()
        self.assertEqual(find_project_root(root / "models"), root.resolve())
        self.assertEqual(resolve_path("models/a.onnx", root=root), (root / "models" / "a.onnx").resolve())
        absolute = (root / "b.onnx").resolve()
        self.assertEqual(resolve_path(absolute), absolute)


class TestLeafDetector(unittest.TestCase):
    def test_detect_maps_boxes_to_original_image(self) -> None:
        seen = []

        def infer(blob: np.ndarray) -> np.ndarray:
            seen.append(blob.shape)
            out = np.zeros((1, 1, 6), dtype=np.float32)
            out[0, 0] = [0, 0, 320, 320, 0.9, 0]
            return out

        det = LeafDetector(infer, post_cfg=LeafPostConfig(input_size=320))
        image = np.zeros((100, 200, 3), dtype=np.uint8)
        image[50, 100] = (0, 255, 0)
        outcome = det(image)
        self.assertEqual(seen, [(1, 3, 320, 320)])
        self.assertEqual(outcome.layout, OutputLayout.ROWS_XYXY)
        self.assertEqual(len(outcome.detections), 1)
        d = outcome.detections[0]
        self.assertEqual(d.as_xyxy(), (0.0, 0.0, 200.0, 100.0))
        self.assertAlmostEqual(d.area_percentage, 100.0)
        self.assertEqual(d.center_color, (0, 255, 0))


if __name__ == "__main__":
    unittest.main()
