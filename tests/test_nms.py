import unittest

import numpy as np

from leaf_kit.geometry import Box
from leaf_kit.nms import NMSConfig, nms, suppress
from leaf_kit.types import Candidate


class TestNms(unittest.TestCase):
    def test_overlap_at_threshold_is_suppressed(self) -> None:
        cands = [Candidate(Box(0, 0, 10, 10), 0.9), Candidate(Box(0, 0, 10, 8), 0.8)]
        kept = suppress(cands, iou_threshold=0.8)
        self.assertEqual(kept, [cands[0]])

    def test_lower_confidence_overlap_is_dropped(self) -> None:
        cands = [Candidate(Box(0, 0, 10, 8), 0.6), Candidate(Box(0, 0, 10, 10), 0.9)]
        kept = suppress(cands, iou_threshold=0.5)
        self.assertEqual(kept, [cands[1]])

    def test_overlap_below_threshold_survives(self) -> None:
        cands = [Candidate(Box(0, 0, 10, 8), 0.8), Candidate(Box(0, 0, 10, 10), 0.9)]
        kept = suppress(cands, iou_threshold=0.85)
        self.assertEqual([c.score for c in kept], [0.9, 0.8])

    def test_equal_scores_keep_input_order(self) -> None:
        cands = [Candidate(Box(0, 0, 10, 10), 0.5), Candidate(Box(1, 1, 11, 11), 0.5)]
        kept = suppress(cands, iou_threshold=0.5)
        self.assertEqual(kept, [cands[0]])

    def test_output_is_subset_sorted_by_confidence(self) -> None:
        cands = [
            Candidate(Box(0, 0, 10, 10), 0.3),
            Candidate(Box(100, 100, 110, 110), 0.7),
            Candidate(Box(200, 200, 210, 210), 0.5),
        ]
        kept = suppress(cands, iou_threshold=0.5)
        self.assertEqual([c.score for c in kept], [0.7, 0.5, 0.3])
        for c in kept:
            self.assertIn(c, cands)

    def test_empty(self) -> None:
        self.assertEqual(suppress([], 0.5), [])
        self.assertEqual(nms(np.empty((0, 4)), np.empty((0,)), NMSConfig()).shape, (0,))

    def test_max_detections_caps_kept_indices(self) -> None:
        boxes = np.array([[0, 0, 1, 1], [10, 10, 11, 11], [20, 20, 21, 21]], dtype=np.float32)
        scores = np.array([0.1, 0.9, 0.5], dtype=np.float32)
        keep = nms(boxes, scores, NMSConfig(iou_threshold=0.5, max_detections=2))
        self.assertEqual(keep.tolist(), [1, 2])


if __name__ == "__main__":
    unittest.main()
