"""
Records produced by the integrated analysis.

Everything here is frozen: the renderer and the reporting layer receive a stable,
ordered sequence and never mutate it. Summary statistics are computed from the
record sequence on demand, never stored.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Mapping, Optional, Tuple

from leaf_kit.types import Detection

FAILED_LABEL = "classification_failed"


@dataclass(frozen=True)
class ClassificationOutcome:
    label: str
    confidence: float
    probabilities: Mapping[str, float] = field(default_factory=dict)
    class_index: int = -1
    error: Optional[str] = None

    @classmethod
    def failed(cls, reason: str) -> "ClassificationOutcome":
        return cls(label=FAILED_LABEL, confidence=0.0, probabilities={}, class_index=-1, error=reason)

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.label != FAILED_LABEL


@dataclass(frozen=True)
class LeafRecord:
    """
    One detection joined with its (possibly failed) classification and an owned
    PNG copy of its padded region.
    """

    detection: Detection
    classification: Optional[ClassificationOutcome] = None
    region_png: bytes = b""
    elapsed_s: float = 0.0
    error: Optional[str] = None

    @property
    def id(self) -> int:
        return self.detection.id

    @property
    def is_classified(self) -> bool:
        return self.classification is not None and self.classification.succeeded

    @property
    def display_label(self) -> str:
        if self.is_classified:
            return self.classification.label
        return self.detection.class_name

    @property
    def display_confidence(self) -> float:
        if self.is_classified:
            return self.classification.confidence
        return self.detection.score


@dataclass(frozen=True)
class PhaseTimings:
    detection_s: float = 0.0
    # Sum of per-region task times, not pipeline wall clock.
    classification_s: float = 0.0
    rendering_s: float = 0.0


@dataclass(frozen=True)
class ClassSummary:
    count: int
    mean_confidence: float


@dataclass(frozen=True)
class AnalysisResult:
    image_path: str
    success: bool
    started_at: datetime
    finished_at: datetime
    records: Tuple[LeafRecord, ...] = ()
    image_size: Tuple[int, int] = (0, 0)
    timings: PhaseTimings = PhaseTimings()
    error: Optional[str] = None
    output_path: Optional[str] = None
    detection_note: str = ""

    @property
    def total_s(self) -> float:
        return max(0.0, (self.finished_at - self.started_at).total_seconds())

    @property
    def detected_count(self) -> int:
        return len(self.records)

    @property
    def classified_count(self) -> int:
        return sum(1 for r in self.records if r.is_classified)

    def class_summary(self) -> Dict[str, ClassSummary]:
        """
        label -> (count, mean confidence) over classified records, most frequent first.
        """

        grouped: Dict[str, list] = {}
        for r in self.records:
            if not r.is_classified:
                continue
            grouped.setdefault(r.classification.label, []).append(r.classification.confidence)

        ranked = sorted(grouped.items(), key=lambda kv: (-len(kv[1]), kv[0]))
        return {
            label: ClassSummary(count=len(confs), mean_confidence=sum(confs) / len(confs))
            for label, confs in ranked
        }
