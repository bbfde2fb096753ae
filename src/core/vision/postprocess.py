"""
Version: 0.3.0
License: MIT
"""

from __future__ import annotations

from typing import Any, Iterable, Sequence

import numpy as np

from shared.interfaces.hal import BoundingBox
from src.core.logic.models import DefectReport, DetectionResult

# [centerX, centerY, width, height, objectness, classScore_0 ... classScore_{K-1}]
_BOX_ATTRS = 5


def parse_raw_output(
    output: Any, class_labels: Sequence[str], confidence_threshold: float
) -> list[BoundingBox]:
    data = np.asarray(output, dtype=np.float64)
    if data.ndim == 3:
        if data.shape[0] != 1:
            raise ValueError(f"expected a single-image batch, got shape {data.shape}")
        data = data[0]
    if data.ndim != 2:
        raise ValueError(f"expected [detections, attributes], got shape {data.shape}")
    if data.shape[0] == 0:
        return []
    if data.shape[1] <= _BOX_ATTRS:
        raise ValueError(f"expected at least one class score, got {data.shape[1]} attributes")

    scores = data[:, _BOX_ATTRS:]
    class_idx = scores.argmax(axis=1)
    best = scores[np.arange(scores.shape[0]), class_idx]
    final = data[:, 4] * best
    keep = (final > confidence_threshold) & (class_idx < len(class_labels))

    boxes: list[BoundingBox] = []
    for row, idx, conf in zip(data[keep], class_idx[keep], final[keep]):
        cx, cy, w, h = (float(v) for v in row[:4])
        boxes.append(
            BoundingBox(
                class_label=class_labels[int(idx)],
                confidence=float(conf),
                x=cx - w / 2,
                y=cy - h / 2,
                width=w,
                height=h,
            )
        )
    return boxes


def iou(a: BoundingBox, b: BoundingBox) -> float:
    x1 = max(a.x, b.x)
    y1 = max(a.y, b.y)
    x2 = min(a.x + a.width, b.x + b.width)
    y2 = min(a.y + a.height, b.y + b.height)
    intersection = max(0.0, x2 - x1) * max(0.0, y2 - y1)
    if intersection <= 0.0:
        return 0.0
    union = a.area + b.area - intersection
    return intersection / union if union > 0.0 else 0.0


def non_max_suppression(boxes: Iterable[BoundingBox], iou_threshold: float) -> list[BoundingBox]:
    """Greedy NMS across classes. IoU equal to the threshold suppresses."""
    kept: list[BoundingBox] = []
    for box in sorted(boxes, key=lambda b: b.confidence, reverse=True):
        if all(iou(box, k) < iou_threshold for k in kept):
            kept.append(box)
    return kept


def aggregate_confidence(boxes: Sequence[BoundingBox]) -> float:
    """Quality score: 1.0 without defects, lower with more confident detections."""
    if not boxes:
        return 1.0
    mean = sum(b.confidence for b in boxes) / len(boxes)
    return round(1.0 - mean, 6)


def defect_reports(result: DetectionResult, station: int) -> list[DefectReport]:
    return [
        DefectReport(
            class_label=box.class_label,
            confidence=box.confidence,
            station=station,
            bounding_box=box,
        )
        for box in result.boxes
    ]
