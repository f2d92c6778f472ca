"""
Tomato leaf analysis built on top of `leaf_kit`.

`leaf_kit` owns the detection runtime (backends, output decoding, NMS); this
package owns everything per leaf:
- padded region extraction and disease classification
- the parallel per-leaf pipeline and result aggregation
- the integrated single image / batch service
- rendering, reporting and the command line runner
"""

from __future__ import annotations

from .aggregate import aggregate, batch_summary, failed_result, to_manifest
from .classifier import RegionClassifier, load_classifier, softmax
from .config import AnalysisOptions, load_run_config, options_from_dict
from .extractor import RegionExtractionError, RegionExtractor
from .pipeline import ClassificationBatch, ParallelClassificationPipeline
from .records import FAILED_LABEL, AnalysisResult, ClassificationOutcome, ClassSummary, LeafRecord, PhaseTimings
from .render import draw_leaf_records, save_annotated
from .reporting import today_date_str, write_batch_csv, write_batch_report, write_region_images, write_result_manifest
from .service import LeafAnalysisService

__all__ = [
    "aggregate",
    "batch_summary",
    "failed_result",
    "to_manifest",
    "RegionClassifier",
    "load_classifier",
    "softmax",
    "AnalysisOptions",
    "load_run_config",
    "options_from_dict",
    "RegionExtractionError",
    "RegionExtractor",
    "ClassificationBatch",
    "ParallelClassificationPipeline",
    "FAILED_LABEL",
    "AnalysisResult",
    "ClassificationOutcome",
    "ClassSummary",
    "LeafRecord",
    "PhaseTimings",
    "draw_leaf_records",
    "save_annotated",
    "today_date_str",
    "write_batch_csv",
    "write_batch_report",
    "write_region_images",
    "write_result_manifest",
    "LeafAnalysisService",
]
