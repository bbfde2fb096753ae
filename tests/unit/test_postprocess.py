"""Version: 0.3.0
License: MIT
"""

from __future__ import annotations

import pytest

np = pytest.importorskip("numpy")

from shared.interfaces.hal import BoundingBox
from src.core.logic.models import DetectionResult
from src.core.vision.postprocess import (
    aggregate_confidence,
    defect_reports,
    iou,
    non_max_suppression,
    parse_raw_output,
)

LABELS = ("scratch", "dent", "discoloration")


def _box(conf: float, x: float, y: float, w: float = 10.0, h: float = 10.0, label: str = "dent") -> BoundingBox:
    return BoundingBox(label, conf, x, y, w, h)


def test_parse_converts_center_to_top_left() -> None:
    raw = np.array([[[100, 100, 50, 50, 0.9, 0.1, 0.95, 0.05]]], dtype=np.float32)
    (box,) = parse_raw_output(raw, LABELS, 0.5)
    assert box.class_label == "dent"
    assert box.confidence == pytest.approx(0.855, abs=1e-6)
    assert (box.x, box.y, box.width, box.height) == (75.0, 75.0, 50.0, 50.0)


def test_parse_uses_objectness_times_best_class_score() -> None:
    raw = np.array(
        [
            [10, 10, 4, 4, 0.95, 0.8, 0.1, 0.1],  # 0.76
            [20, 20, 4, 4, 0.6, 0.1, 0.1, 0.9],  # 0.54
        ]
    )
    boxes = parse_raw_output(raw, LABELS, 0.7)
    assert [b.class_label for b in boxes] == ["scratch"]


def test_parse_threshold_is_strict() -> None:
    raw = np.array([[10, 10, 4, 4, 0.5, 1.0, 0.0, 0.0]])
    assert parse_raw_output(raw, LABELS, 0.5) == []


def test_parse_drops_classes_without_labels() -> None:
    raw = np.array([[10, 10, 4, 4, 1.0, 0.0, 0.0, 0.99]])
    assert parse_raw_output(raw, ("scratch", "dent"), 0.5) == []


def test_parse_empty_output() -> None:
    assert parse_raw_output(np.zeros((0, 11)), LABELS, 0.5) == []
    assert parse_raw_output(np.zeros((1, 0, 11)), LABELS, 0.5) == []


@pytest.mark.parametrize("shape", [(2, 3, 8), (8,), (4, 5)])
def test_parse_rejects_malformed_shapes(shape: tuple[int, ...]) -> None:
    with pytest.raises(ValueError):
        parse_raw_output(np.ones(shape), LABELS, 0.5)


def test_iou_basics() -> None:
    a = _box(0.9, 0, 0)
    assert iou(a, a) == pytest.approx(1.0)
    assert iou(a, _box(0.9, 20, 20)) == 0.0
    assert iou(a, _box(0.9, 10, 0)) == 0.0
    assert iou(a, _box(0.9, 0, 0, 10, 5)) == pytest.approx(0.5)
    assert iou(a, _box(0.9, 0, 0, -5, 10)) == 0.0


def test_nms_keeps_most_confident_of_overlapping_boxes() -> None:
    boxes = [_box(0.75, 1, 1), _box(0.9, 0, 0), _box(0.8, 50, 50)]
    kept = non_max_suppression(boxes, 0.45)
    assert [b.confidence for b in kept] == [0.9, 0.8]


def test_nms_suppresses_at_exact_threshold() -> None:
    boxes = [_box(0.9, 0, 0), _box(0.8, 0, 0, 10, 5)]
    assert non_max_suppression(boxes, 0.5) == [boxes[0]]


def test_nms_is_class_agnostic_and_idempotent() -> None:
    boxes = [_box(0.9, 0, 0, label="dent"), _box(0.85, 0, 0, label="scratch"), _box(0.7, 30, 30)]
    once = non_max_suppression(boxes, 0.45)
    assert [b.class_label for b in once] == ["dent", "dent"]
    assert non_max_suppression(once, 0.45) == once


def test_nms_orders_ties_stably() -> None:
    first, second = _box(0.8, 0, 0), _box(0.8, 40, 40)
    assert non_max_suppression([first, second], 0.45) == [first, second]


def test_aggregate_confidence() -> None:
    assert aggregate_confidence([]) == 1.0
    assert aggregate_confidence([_box(0.8, 0, 0)]) == 0.2
    assert aggregate_confidence([_box(0.9, 0, 0), _box(0.7, 30, 30)]) == pytest.approx(0.2)


def test_defect_reports_carry_station_and_box() -> None:
    box = _box(0.91, 3, 4)
    result = DetectionResult(boxes=(box,), aggregate_confidence=0.09, processing_time_ms=1.0, used_fallback=False)
    (report,) = defect_reports(result, station=2)
    assert report.station == 2
    assert report.bounding_box == box
    assert report.disposition == "pending"
    assert report.severity.value == "high"
