"""Version: 0.3.0
License: MIT
"""

from __future__ import annotations

import pytest

pytest.importorskip("pytest_bdd")
np = pytest.importorskip("numpy")
from pytest_bdd import given, parsers, scenarios, then, when

from shared.interfaces.hal import BoundingBox
from src.core.vision.postprocess import aggregate_confidence, non_max_suppression, parse_raw_output

scenarios("../../features/defect_detection.feature")


@given(parsers.parse("class labels {labels}"), target_fixture="labels")
def _labels(labels: str) -> list[str]:
    return [label.strip() for label in labels.split(",")]


@given(parsers.parse("a raw detection row {row}"), target_fixture="raw")
def _raw(row: str) -> np.ndarray:
    return np.array([[float(v) for v in row.split(",")]], dtype=np.float32)


@when(parsers.parse("the raw output is parsed with threshold {threshold:f}"), target_fixture="boxes")
def _parse(raw: np.ndarray, labels: list[str], threshold: float) -> list[BoundingBox]:
    return parse_raw_output(raw, labels, threshold)


@then(parsers.re(r"exactly (?P<count>\d+) box(?:es)? (?:is|are) returned"), converters={"count": int})
def _count(boxes: list[BoundingBox], count: int) -> None:
    assert len(boxes) == count


@then(
    parsers.parse(
        'the box is a "{label}" with confidence {confidence:f} at {x:d},{y:d} size {w:d}x{h:d}'
    )
)
def _box(boxes: list[BoundingBox], label: str, confidence: float, x: int, y: int, w: int, h: int) -> None:
    box = boxes[0]
    assert box.class_label == label
    assert box.confidence == pytest.approx(confidence, abs=1e-3)
    assert (box.x, box.y, box.width, box.height) == pytest.approx((x, y, w, h))


@given(
    parsers.parse(
        "two dent boxes overlapping with IoU 0.5 and confidences {high:f} and {low:f}"
    ),
    target_fixture="boxes",
)
def _overlapping(high: float, low: float) -> list[BoundingBox]:
    # intersection 50, union 100
    return [
        BoundingBox("dent", low, 0.0, 0.0, 10.0, 5.0),
        BoundingBox("dent", high, 0.0, 0.0, 10.0, 10.0),
    ]


@when(parsers.parse("non-max suppression runs with IoU threshold {threshold:f}"), target_fixture="kept")
def _nms(boxes: list[BoundingBox], threshold: float) -> dict[str, object]:
    return {"threshold": threshold, "boxes": non_max_suppression(boxes, threshold)}


@then(parsers.parse("only the box with confidence {confidence:f} remains"))
def _only(kept: dict[str, object], confidence: float) -> None:
    boxes = kept["boxes"]
    assert [b.confidence for b in boxes] == [confidence]  # type: ignore[union-attr]


@then("running non-max suppression again changes nothing")
def _idempotent(kept: dict[str, object]) -> None:
    boxes = kept["boxes"]
    assert non_max_suppression(boxes, kept["threshold"]) == boxes  # type: ignore[arg-type]


@given("no detections", target_fixture="boxes")
def _empty() -> list[BoundingBox]:
    return []


@then(parsers.parse("the aggregate confidence is {expected:f}"))
def _aggregate(boxes: list[BoundingBox], expected: float) -> None:
    assert aggregate_confidence(boxes) == expected
