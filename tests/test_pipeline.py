import threading
import time
import unittest

import numpy as np

from leaf_analysis.pipeline import ParallelClassificationPipeline
from leaf_analysis.records import FAILED_LABEL, ClassificationOutcome
from leaf_kit.geometry import Box
from leaf_kit.types import Detection


class _SlowFirstClassifier:
    """Lower ids sleep longer, so tasks finish in reverse id order."""

    def __init__(self, max_id: int):
        self.max_id = max_id
        self.finished = []
        self._lock = threading.Lock()

    def classify_bytes(self, data: bytes, name: str = "region") -> ClassificationOutcome:
        leaf_id = int(name.split("_")[1])
        time.sleep(0.02 * (self.max_id + 1 - leaf_id))
        with self._lock:
            self.finished.append(leaf_id)
        return ClassificationOutcome(label=f"label_{leaf_id}", confidence=0.5, probabilities={f"label_{leaf_id}": 0.5})


def _detections(n: int, broken=()) -> list:
    dets = []
    for i in range(1, n + 1):
        box = Box(500, 500, 600, 600) if i in broken else Box(i * 10, 10, i * 10 + 8, 30)
        dets.append(Detection(id=i, box=box, score=0.9, class_id=0, class_name="tomato_leaf"))
    return dets


class TestParallelClassificationPipeline(unittest.TestCase):
    def setUp(self) -> None:
        self.image = np.full((100, 100, 3), 90, dtype=np.uint8)

    def test_records_are_sorted_by_id_regardless_of_completion(self) -> None:
        clf = _SlowFirstClassifier(max_id=5)
        batch = ParallelClassificationPipeline(clf, padding=2, max_workers=5).run(self.image, _detections(5))
        self.assertEqual([r.id for r in batch.records], [1, 2, 3, 4, 5])
        self.assertEqual([r.classification.label for r in batch.records], [f"label_{i}" for i in range(1, 6)])
        self.assertNotEqual(clf.finished, [1, 2, 3, 4, 5])

    def test_failing_region_does_not_affect_siblings(self) -> None:
        clf = _SlowFirstClassifier(max_id=5)
        batch = ParallelClassificationPipeline(clf, max_workers=3).run(self.image, _detections(5, broken={3}))
        self.assertEqual(len(batch.records), 5)
        failed = batch.records[2]
        self.assertEqual(failed.id, 3)
        self.assertEqual(failed.classification.label, FAILED_LABEL)
        self.assertEqual(failed.classification.confidence, 0.0)
        self.assertIsNotNone(failed.error)
        self.assertFalse(failed.is_classified)
        for r in batch.records[:2] + batch.records[3:]:
            self.assertTrue(r.is_classified)
            self.assertIsNone(r.error)
            self.assertTrue(r.region_png)

    def test_total_task_time_is_sum_of_tasks(self) -> None:
        clf = _SlowFirstClassifier(max_id=4)
        batch = ParallelClassificationPipeline(clf, max_workers=4).run(self.image, _detections(4))
        self.assertAlmostEqual(batch.total_task_s, sum(r.elapsed_s for r in batch.records))
        self.assertGreater(batch.total_task_s, batch.wall_s)

    def test_detection_only_mode(self) -> None:
        batch = ParallelClassificationPipeline(None).run(self.image, _detections(2, broken={2}))
        self.assertIsNone(batch.records[0].classification)
        self.assertTrue(batch.records[0].region_png)
        self.assertIsNone(batch.records[1].classification)
        self.assertIsNotNone(batch.records[1].error)

    def test_no_detections(self) -> None:
        batch = ParallelClassificationPipeline(_SlowFirstClassifier(1)).run(self.image, [])
        self.assertEqual(batch.records, ())
        self.assertEqual(batch.total_task_s, 0.0)

    def test_invalid_worker_count(self) -> None:
        with self.assertRaises(ValueError):
            ParallelClassificationPipeline(None, max_workers=0)


if __name__ == "__main__":
    unittest.main()
