import tempfile
import unittest
from pathlib import Path
from unittest import mock

import cv2
import numpy as np

from leaf_analysis.classifier import RegionClassifier
from leaf_analysis.config import AnalysisOptions
from leaf_analysis.reporting import output_key
from leaf_analysis.service import LeafAnalysisService
from leaf_kit.layouts import OutputLayout
from leaf_kit.metadata import ClassNameTable
from leaf_kit.postprocess import LeafPostConfig
from leaf_kit.runtime import LeafDetector

DISEASES = ClassNameTable(["Tomato_healthy", "Tomato_Early_blight", "Tomato_Late_blight"])


def _fake_detector_output(blob: np.ndarray) -> np.ndarray:
    # Two leaves in model input space (640 x 640), xyxy rows.
    assert blob.shape == (1, 3, 640, 640)
    out = np.zeros((1, 3, 6), dtype=np.float32)
    out[0, 0] = [64, 64, 320, 320, 0.9, 0]
    out[0, 1] = [384, 384, 576, 576, 0.8, 0]
    out[0, 2] = [0, 0, 5, 5, 0.001, 0]
    return out


def _fake_classifier_output(blob: np.ndarray) -> np.ndarray:
    return np.array([[0.1, 3.0, 0.2]], dtype=np.float32)


class TestLeafAnalysisService(unittest.TestCase):
    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.tmp = Path(tmpdir.name)
        self.out_dir = self.tmp / "out"

        self.images = []
        for i in range(3):
            img = np.full((200, 200, 3), 40 + i * 50, dtype=np.uint8)
            path = self.tmp / f"leaf_{i}.png"
            cv2.imwrite(str(path), img)
            self.images.append(path)

        self.detector = LeafDetector(_fake_detector_output, post_cfg=LeafPostConfig(conf_threshold=0.5))
        self.classifier = RegionClassifier(_fake_classifier_output, class_names=DISEASES)

    def _service(self, **overrides) -> LeafAnalysisService:
        opts = dict(output_dir=str(self.out_dir), max_workers=2)
        opts.update(overrides)
        return LeafAnalysisService(AnalysisOptions(**opts), detector=self.detector, classifier=self.classifier)

    def test_process_image_end_to_end(self) -> None:
        with self._service() as service:
            res = service.process_image(self.images[0])

        self.assertTrue(res.success, res.error)
        self.assertEqual(res.image_size, (200, 200))
        self.assertEqual([r.id for r in res.records], [1, 2])
        self.assertEqual(res.records[0].detection.box.as_xyxy(), (20.0, 20.0, 100.0, 100.0))
        self.assertEqual(res.classified_count, 2)
        self.assertEqual(res.records[0].classification.label, "Tomato_Early_blight")
        self.assertEqual(res.records[0].detection.center_color, (40, 40, 40))
        self.assertEqual(list(res.class_summary().keys()), ["Tomato_Early_blight"])
        self.assertGreaterEqual(res.timings.detection_s, 0.0)
        self.assertIsNotNone(res.output_path)
        self.assertTrue(Path(res.output_path).exists())
        self.assertTrue(Path(res.output_path).name.startswith("analysis_leaf_0_"))

    def test_batch_keeps_input_order_and_isolates_failures(self) -> None:
        paths = [self.images[0], self.tmp / "missing.png", self.images[2]]
        with self._service(save_results=False) as service:
            results = service.process_batch(paths)

        self.assertEqual([r.image_path for r in results], [str(p) for p in paths])
        self.assertEqual([r.success for r in results], [True, False, True])
        self.assertIn("not found", results[1].error)
        self.assertEqual(results[0].detected_count, 2)
        self.assertEqual(results[2].classified_count, 2)
        self.assertIsNone(results[0].output_path)

    def test_unreadable_image_is_a_failed_result(self) -> None:
        bogus = self.tmp / "bogus.png"
        bogus.write_text("not an image", encoding="utf-8")
        res = self._service().process_image(bogus)
        self.assertFalse(res.success)
        self.assertIn("Could not read image", res.error)

    def test_save_failure_only_drops_output_path(self) -> None:
        blocker = self.tmp / "blocker"
        blocker.write_text("x", encoding="utf-8")
        res = self._service(output_dir=str(blocker)).process_image(self.images[1])
        self.assertTrue(res.success)
        self.assertIsNone(res.output_path)
        self.assertEqual(res.detected_count, 2)

    def test_save_regions(self) -> None:
        self._service(save_regions=True).process_image(self.images[0])
        regions = sorted((self.out_dir / "regions" / output_key(str(self.images[0]))).glob("*.png"))
        self.assertEqual([p.name for p in regions], ["leaf_1.png", "leaf_2.png"])

    def test_detection_only(self) -> None:
        service = LeafAnalysisService(
            AnalysisOptions(enable_classification=False, save_results=False),
            detector=self.detector,
        )
        res = service.process_image(self.images[0])
        self.assertTrue(res.success)
        self.assertEqual(res.detected_count, 2)
        self.assertEqual(res.classified_count, 0)
        self.assertIsNone(res.records[0].classification)
        self.assertEqual(res.records[0].display_label, "tomato_leaf")

    def test_missing_model_is_reported(self) -> None:
        service = LeafAnalysisService(AnalysisOptions(detector_model=str(self.tmp / "nope.onnx")))
        res = service.process_image(self.images[0])
        self.assertFalse(res.success)
        self.assertIn("Model not found", res.error)

    def test_same_file_name_in_different_folders(self) -> None:
        paths = []
        for sub, value in (("a", 60), ("b", 160)):
            (self.tmp / sub).mkdir()
            path = self.tmp / sub / "leaf.png"
            cv2.imwrite(str(path), np.full((200, 200, 3), value, dtype=np.uint8))
            paths.append(path)

        with self._service(save_regions=True) as service:
            results = service.process_batch(paths)

        outputs = [r.output_path for r in results]
        self.assertTrue(all(outputs))
        self.assertEqual(len(set(outputs)), 2)
        for res, value in zip(results, (60, 160)):
            self.assertTrue(Path(res.output_path).exists())
            self.assertEqual(res.records[0].detection.center_color, (value, value, value))
        region_dirs = sorted(p.name for p in (self.out_dir / "regions").iterdir())
        self.assertEqual(region_dirs, sorted(output_key(str(p)) for p in paths))

    def test_detector_metadata_fixes_class_count(self) -> None:
        names = "\n".join(f"  {i}: c{i}" for i in range(80))
        metadata = self.tmp / "metadata.yaml"
        metadata.write_text(f"names:\n{names}\n", encoding="utf-8")
        model = self.tmp / "detector.onnx"
        model.write_bytes(b"")

        def infer(blob: np.ndarray) -> np.ndarray:
            # Channels-first with fewer boxes (20) than rows (4 + 80).
            out = np.zeros((1, 84, 20), dtype=np.float32)
            out[0, 0:4, 0] = [320, 320, 64, 64]
            out[0, 4 + 7, 0] = 0.9
            return out

        def fake_load_detector(model_path, *, post_cfg, class_names, onnx_providers):
            return LeafDetector(infer, post_cfg=post_cfg, class_names=class_names)

        image = self.tmp / "square.png"
        cv2.imwrite(str(image), np.full((640, 640, 3), 90, dtype=np.uint8))
        opts = AnalysisOptions(
            detector_model=str(model),
            detector_metadata=str(metadata),
            enable_classification=False,
            save_results=False,
            confidence_threshold=0.5,
        )
        with mock.patch("leaf_analysis.service.load_detector", side_effect=fake_load_detector) as loader:
            res = LeafAnalysisService(opts).process_image(image)

        self.assertEqual(loader.call_args.kwargs["post_cfg"].num_classes, 80)
        self.assertTrue(res.success, res.error)
        self.assertIn(OutputLayout.CHANNELS_FIRST.value, res.detection_note)
        self.assertEqual(len(res.records), 1)
        det = res.records[0].detection
        self.assertEqual(det.class_name, "c7")
        self.assertEqual(det.as_xyxy(), (288.0, 288.0, 352.0, 352.0))

    def test_center_color(self) -> None:
        img = np.zeros((11, 21, 3), dtype=np.uint8)
        img[5, 10] = (1, 2, 3)
        path = self.tmp / "centre.png"
        cv2.imwrite(str(path), img)
        self.assertEqual(LeafAnalysisService().center_color(path), (3, 2, 1))
        with self.assertRaises(FileNotFoundError):
            LeafAnalysisService().center_color(self.tmp / "missing.png")


if __name__ == "__main__":
    unittest.main()
