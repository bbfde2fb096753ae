"""
Version: 0.3.0
License: MIT
"""

from __future__ import annotations

import logging
import random
import threading
from importlib import import_module
from importlib.util import find_spec
from pathlib import Path
from time import perf_counter
from typing import Any, Callable, Optional, Sequence, Union

from shared.interfaces.hal import BoundingBox, IInferenceEngine
from src.core.logic.models import DetectionResult
from src.core.vision.postprocess import aggregate_confidence, non_max_suppression, parse_raw_output
from src.core.vision.preprocess import INPUT_SIZE, preprocess

DEFAULT_CLASSES: tuple[str, ...] = (
    "scratch",
    "dent",
    "discoloration",
    "missing_component",
    "misalignment",
    "contamination",
)

InferenceFn = Callable[[Any], Any]


class OnnxDefectModel(IInferenceEngine):
    """ONNX Runtime adapter for the YOLO-style defect network."""

    def __init__(
        self,
        model_path: Optional[str] = None,
        providers: Sequence[str] = ("CPUExecutionProvider",),
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.model_path = model_path
        self.providers = tuple(providers)
        self.logger = logger or logging.getLogger("linewatch")
        self._session: Any = None
        self._input_name: Optional[str] = None
        if model_path:
            self._load_session(Path(model_path))

    def _load_session(self, model_path: Path) -> None:
        if not model_path.exists():
            self.logger.warning("Defect model %s not found, using mock detection", model_path)
            return
        if find_spec("onnxruntime") is None:
            self.logger.warning("onnxruntime is not installed, using mock detection")
            return
        ort = import_module("onnxruntime")
        self._session = ort.InferenceSession(str(model_path), providers=list(self.providers))
        self._input_name = self._session.get_inputs()[0].name
        self.logger.info("ONNX model loaded successfully")

    @property
    def available(self) -> bool:
        return self._session is not None and self._input_name is not None

    def infer(self, tensor: Any) -> Any:
        if not self.available:
            raise RuntimeError("ONNX model not loaded")
        return self._session.run(None, {self._input_name: tensor})[0]


class MockDefectGenerator:
    """Seeded stand-in for the network: zero or one synthetic box per frame."""

    def __init__(
        self,
        class_labels: Sequence[str] = DEFAULT_CLASSES,
        defect_rate: float = 0.05,
        seed: Optional[int] = None,
    ) -> None:
        self.class_labels = tuple(class_labels)
        self.defect_rate = defect_rate
        self._rng = random.Random(seed)
        self._lock = threading.Lock()

    def generate(self) -> list[BoundingBox]:
        with self._lock:
            if not self.class_labels or self._rng.random() >= self.defect_rate:
                return []
            # normalised image coordinates
            return [
                BoundingBox(
                    class_label=self._rng.choice(self.class_labels),
                    confidence=0.7 + self._rng.random() * 0.3,
                    x=self._rng.random() * 0.6 + 0.2,
                    y=self._rng.random() * 0.6 + 0.2,
                    width=self._rng.random() * 0.15 + 0.05,
                    height=self._rng.random() * 0.15 + 0.05,
                )
            ]


class DefectDetector:
    """preprocess -> inference -> parse -> NMS -> aggregate.

    Falls back to `MockDefectGenerator` when the backend is missing or fails;
    such results carry `used_fallback=True`.
    """

    def __init__(
        self,
        backend: Union[IInferenceEngine, InferenceFn, None] = None,
        *,
        class_labels: Sequence[str] = DEFAULT_CLASSES,
        confidence_threshold: float = 0.7,
        iou_threshold: float = 0.45,
        input_size: tuple[int, int] = INPUT_SIZE,
        fallback: Optional[MockDefectGenerator] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.backend = backend
        self.class_labels = tuple(class_labels)
        self.confidence_threshold = confidence_threshold
        self.iou_threshold = iou_threshold
        self.input_size = input_size
        self.fallback = fallback or MockDefectGenerator(self.class_labels)
        self.logger = logger or logging.getLogger("linewatch")

    def _infer(self, tensor: Any) -> Optional[Any]:
        backend = self.backend
        if backend is None:
            return None
        if isinstance(backend, IInferenceEngine):
            if not backend.available:
                return None
            run = backend.infer
        else:
            run = backend
        try:
            return run(tensor)
        except Exception as exc:
            self.logger.warning("Inference failed, using mock detection: %s", exc)
            return None

    def detect(self, image_bytes: bytes | bytearray | memoryview) -> DetectionResult:
        start = perf_counter()
        tensor = preprocess(image_bytes, self.input_size)
        raw = self._infer(tensor)
        boxes: Optional[list[BoundingBox]] = None
        if raw is not None:
            try:
                parsed = parse_raw_output(raw, self.class_labels, self.confidence_threshold)
                boxes = non_max_suppression(parsed, self.iou_threshold)
            except ValueError as exc:
                self.logger.warning("Unexpected model output, using mock detection: %s", exc)
        used_fallback = boxes is None
        if boxes is None:
            boxes = self.fallback.generate()
        return DetectionResult(
            boxes=tuple(boxes),
            aggregate_confidence=aggregate_confidence(boxes),
            processing_time_ms=(perf_counter() - start) * 1000.0,
            used_fallback=used_fallback,
        )
