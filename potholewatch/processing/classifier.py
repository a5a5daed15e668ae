"""Rule-based pothole classifier over generic object-detection output.

The inference backends are general-purpose detectors, so their labels are
re-ranked here: a primary pass keeps road anomalies, surface irregularities
and unusual objects, and a looser fallback pass keeps the strongest
non-person boxes when the primary pass finds nothing.
"""

from __future__ import annotations

import logging

from potholewatch.config import ClassificationConfig
from potholewatch.recording.models import (
    ClassifiedDetection,
    RawDetection,
    Severity,
)

logger = logging.getLogger(__name__)


def _matches_any(label: str, keywords: list[str]) -> bool:
    """Case-insensitive substring match against a keyword list."""
    label = label.lower()
    return any(keyword in label for keyword in keywords)


def proxy_severity(score: float) -> Severity:
    """Confidence-only tiering used when reshaping proxy responses."""
    if score > 0.8:
        return Severity.HIGH
    if score > 0.5:
        return Severity.MEDIUM
    return Severity.LOW


def report_severity(confidence: float) -> Severity:
    """Tiering used when a live detection is turned into a stored report."""
    if confidence > 0.9:
        return Severity.HIGH
    if confidence > 0.8:
        return Severity.MEDIUM
    return Severity.LOW


class Classifier:
    """Turns raw backend detections into severity-tagged pothole boxes."""

    def __init__(self, config: ClassificationConfig):
        self._cfg = config

    @property
    def config(self) -> ClassificationConfig:
        return self._cfg

    def classify(self, raw: list[RawDetection], frame_width: int,
                 frame_height: int) -> list[ClassifiedDetection]:
        """Classify raw detections for a frame of the given size.

        Returns primary-pass results when any survive, otherwise the
        fallback-pass results. Never raises for empty input or a
        zero-area frame; both give an empty list.
        """
        if not raw or frame_width <= 0 or frame_height <= 0:
            return []

        frame_area = float(frame_width * frame_height)

        primary = [
            self._to_classified(d, self.primary_severity(
                d.score, d.box.area / frame_area))
            for d in raw if self._is_candidate(d)
        ]
        if primary:
            logger.debug("Using %d primary anomaly detections", len(primary))
            return primary

        fallback = self.fallback(raw, frame_area)
        logger.debug("No primary anomalies, showing %d fallback detections",
                     len(fallback))
        return fallback

    def fallback(self, raw: list[RawDetection],
                 frame_area: float) -> list[ClassifiedDetection]:
        """Top-scoring non-person detections, highest score first."""
        cfg = self._cfg
        kept = [
            d for d in raw
            if d.score > cfg.fallback_score
            and not _matches_any(d.label, cfg.fallback_excluded)
        ]
        kept.sort(key=lambda d: d.score, reverse=True)
        return [
            self._to_classified(d, self.fallback_severity(
                d.score, d.box.area / frame_area))
            for d in kept[:cfg.fallback_limit]
        ]

    def primary_severity(self, score: float, normalized_area: float) -> Severity:
        """High first, then medium, default low."""
        cfg = self._cfg
        if score > cfg.high_score and normalized_area > cfg.high_area:
            return Severity.HIGH
        if score > cfg.medium_score or normalized_area > cfg.medium_area:
            return Severity.MEDIUM
        return Severity.LOW

    def fallback_severity(self, score: float, normalized_area: float) -> Severity:
        cfg = self._cfg
        severity = Severity.MEDIUM if score > cfg.fallback_medium_score else Severity.LOW
        if score > cfg.fallback_high_score and normalized_area > cfg.fallback_high_area:
            severity = Severity.HIGH
        return severity

    def _is_candidate(self, detection: RawDetection) -> bool:
        """Primary-pass filter: any of three signals, plus the score floor."""
        cfg = self._cfg
        label = detection.label
        is_anomaly = _matches_any(label, cfg.anomaly_keywords)
        is_surface = _matches_any(label, cfg.surface_keywords)
        is_unusual = (detection.score > cfg.unusual_score
                      and not _matches_any(label, cfg.common_objects))
        return (is_anomaly or is_surface or is_unusual) and detection.score > cfg.min_score

    @staticmethod
    def _to_classified(detection: RawDetection,
                       severity: Severity) -> ClassifiedDetection:
        box = detection.box
        return ClassifiedDetection(
            x=box.xmin,
            y=box.ymin,
            width=box.width,
            height=box.height,
            confidence=detection.score,
            severity=severity,
            label=detection.label,
        )
