import json
import tempfile
import unittest
from pathlib import Path

from leaf_analysis.config import (
    AnalysisOptions,
    apply_run_config,
    collect_cli_dests,
    load_run_config,
    options_from_dict,
)
from leaf_analysis.runner import build_parser


class TestAnalysisOptions(unittest.TestCase):
    def test_defaults(self) -> None:
        opts = AnalysisOptions()
        self.assertEqual(opts.confidence_threshold, 0.007)
        self.assertEqual(opts.iou_threshold, 0.65)
        self.assertEqual(opts.max_detections, 15)
        self.assertEqual(opts.region_padding, 10)
        self.assertEqual(opts.input_size, 640)
        self.assertIsNone(opts.max_workers)

    def test_validation(self) -> None:
        for bad in (
            {"confidence_threshold": 1.1},
            {"iou_threshold": -0.5},
            {"max_detections": 0},
            {"region_padding": -1},
            {"input_size": 16},
            {"max_workers": 0},
        ):
            with self.subTest(bad=bad):
                with self.assertRaises(ValueError):
                    AnalysisOptions(**bad)


class TestOptionsFromDict(unittest.TestCase):
    def test_ok(self) -> None:
        opts = options_from_dict(
            {
                "confidence_threshold": 0.25,
                "max_detections": 5,
                "enable_classification": False,
                "onnx_providers": "CUDAExecutionProvider, CPUExecutionProvider",
                "max_workers": None,
            }
        )
        self.assertEqual(opts.confidence_threshold, 0.25)
        self.assertEqual(opts.max_detections, 5)
        self.assertFalse(opts.enable_classification)
        self.assertEqual(opts.onnx_providers, ("CUDAExecutionProvider", "CPUExecutionProvider"))

    def test_unknown_keys_rejected(self) -> None:
        with self.assertRaises(ValueError):
            options_from_dict({"confidence": 0.5})

    def test_type_errors(self) -> None:
        with self.assertRaises(ValueError):
            options_from_dict({"max_detections": 2.5})
        with self.assertRaises(ValueError):
            options_from_dict({"confidence_threshold": True})
        with self.assertRaises(ValueError):
            options_from_dict({"save_results": "yes"})
        with self.assertRaises(ValueError):
            options_from_dict({"detector_model": ""})

    def test_load_run_config(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        path = Path(tmpdir.name) / "run.json"
        path.write_text(json.dumps({"padding": 4}), encoding="utf-8")
        self.assertEqual(load_run_config(path), {"padding": 4})

        bad = Path(tmpdir.name) / "bad.json"
        bad.write_text("[1, 2]", encoding="utf-8")
        with self.assertRaises(ValueError):
            load_run_config(bad)
        broken = Path(tmpdir.name) / "broken.json"
        broken.write_text("{not json", encoding="utf-8")
        with self.assertRaises(ValueError):
            load_run_config(broken)
        with self.assertRaises(FileNotFoundError):
            load_run_config(Path(tmpdir.name) / "missing.json")


class TestRunConfigMerge(unittest.TestCase):
    def _merge(self, argv, payload):
        parser = build_parser()
        args = parser.parse_args(argv)
        apply_run_config(args=args, payload=payload, cli_dests=collect_cli_dests(parser, argv), parser=parser)
        return args

    def test_cli_flags_win(self) -> None:
        args = self._merge(["--conf", "0.3"], {"conf": 0.9, "iou": 0.4, "max_det": 7})
        self.assertEqual(args.conf, 0.3)
        self.assertEqual(args.iou, 0.4)
        self.assertEqual(args.max_det, 7)

    def test_image_accepts_single_path(self) -> None:
        args = self._merge([], {"image": "a.jpg", "no_classify": True})
        self.assertEqual(args.image, ["a.jpg"])
        self.assertTrue(args.no_classify)

    def test_equals_form_counts_as_cli(self) -> None:
        args = self._merge(["--out-dir=cli_out"], {"out_dir": "cfg_out"})
        self.assertEqual(args.out_dir, "cli_out")

    def test_rejects_bad_payloads(self) -> None:
        with self.assertRaises(ValueError):
            self._merge([], {"unknown_key": 1})
        with self.assertRaises(ValueError):
            self._merge([], {"config": "other.json"})
        with self.assertRaises(ValueError):
            self._merge([], {"max_det": "ten"})
        with self.assertRaises(ValueError):
            self._merge([], {"no_save": 1})


if __name__ == "__main__":
    unittest.main()
