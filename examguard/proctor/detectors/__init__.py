"""Perception oracles for proctoring"""

from .face_detector import FaceDetector
from .object_detector import ObjectDetector

__all__ = [
    "FaceDetector",
    "ObjectDetector"
]
