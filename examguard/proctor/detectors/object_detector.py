"""
Object Detector - Detects persons and objects using YOLO
"""

import numpy as np
import logging
from typing import Dict, Any, List, Optional

logger = logging.getLogger(__name__)


class ObjectDetector:
    """
    General object/person oracle backed by ultralytics YOLO.

    Returns every detected class with its confidence. Deciding which
    classes are prohibited is left to the perception adapter.
    """

    def __init__(self, model_path: Optional[str] = None, confidence: float = 0.5):
        """
        Initialize object detector.

        Args:
            model_path: Path to YOLO model weights. If None, uses default from model_loader.
            confidence: Minimum confidence passed to the model.
        """
        self.confidence = confidence
        self.model = None
        self._model_path = model_path

    @property
    def is_loaded(self) -> bool:
        return self.model is not None

    def load(self):
        """Load YOLO weights. Raises on failure so setup can be retried."""
        if self.model is not None:
            return
        from ..models import get_yolo_model
        self.model = get_yolo_model(self._model_path)
        logger.info("YOLO model loaded successfully")

    def detect_objects(self, frame: np.ndarray) -> List[Dict[str, Any]]:
        """
        Detect objects in a frame.

        Args:
            frame: BGR image from OpenCV

        Returns:
            List of dicts with 'class' (lowercase name) and 'score'
        """
        if frame is None or frame.size == 0:
            return []

        if self.model is None:
            raise RuntimeError("Object detector not loaded")

        results = self.model.predict(
            frame,
            conf=self.confidence,
            verbose=False
        )

        detections: List[Dict[str, Any]] = []
        for result in results:
            if result.boxes is None:
                continue

            for box in result.boxes:
                cls_id = int(box.cls[0])
                name = self.model.names.get(cls_id, f"class_{cls_id}")
                detections.append({
                    "class": name.lower(),
                    "score": float(box.conf[0])
                })

        return detections
