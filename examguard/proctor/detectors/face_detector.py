"""
Face Detector - Counts faces using dlib's HOG detector
"""

import cv2
import numpy as np
import logging
from typing import Dict, Any, List, Tuple

logger = logging.getLogger(__name__)


class FaceDetector:
    """
    Face-presence oracle backed by dlib's HOG-based frontal face detector.

    Only the face count matters to the proctoring engine; bounding boxes
    are returned for callers that want to draw them.
    """

    def __init__(self, upsample: int = 0):
        """
        Initialize face detector.

        Args:
            upsample: Number of times dlib upsamples the image before
                      detecting. Higher finds smaller faces but is slower.
        """
        self.upsample = upsample
        self.detector = None

    @property
    def is_loaded(self) -> bool:
        return self.detector is not None

    def load(self):
        """Load the detector. Raises if dlib is unavailable."""
        if self.detector is not None:
            return
        try:
            from ..models import get_face_detector
            self.detector = get_face_detector()
        except ImportError:
            logger.error("dlib not installed. Run: pip install dlib")
            raise

    def detect_faces(self, frame: np.ndarray) -> List[Dict[str, Any]]:
        """
        Detect faces in a frame.

        Args:
            frame: BGR image from OpenCV

        Returns:
            List of dicts with:
                - bbox: (x, y, width, height)
                - area: width * height in pixels
        """
        if frame is None or frame.size == 0:
            return []

        if self.detector is None:
            raise RuntimeError("Face detector not loaded")

        gray = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
        faces = self.detector(gray, self.upsample)

        results = []
        for face in faces:
            x, y, w, h = self.get_face_bbox(face)
            results.append({"bbox": (x, y, w, h), "area": w * h})
        return results

    def get_face_bbox(self, face) -> Tuple[int, int, int, int]:
        """
        Get bounding box from dlib face rectangle.

        Returns:
            (x, y, width, height)
        """
        return (face.left(), face.top(), face.width(), face.height())
