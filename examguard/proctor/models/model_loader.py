"""
Model Loader - Lazy loading and caching of perception models
"""

import os
import logging
from functools import lru_cache
from typing import Optional

logger = logging.getLogger(__name__)

# Default model paths (relative to this file's directory)
MODELS_DIR = os.path.join(os.path.dirname(__file__), "weights")

# COCO-trained fallback; its class names match the prohibited-object groups
DEFAULT_YOLO_WEIGHTS = "yolov8n.pt"


@lru_cache(maxsize=1)
def get_face_detector():
    """
    Get dlib's HOG frontal face detector.

    No weights file is needed; the detector ships with dlib.

    Returns:
        dlib.fhog_object_detector instance
    """
    import dlib

    logger.info("Loading dlib frontal face detector")
    return dlib.get_frontal_face_detector()


@lru_cache(maxsize=4)
def get_yolo_model(model_path: Optional[str] = None):
    """
    Get YOLO model for person and object detection.

    Args:
        model_path: Explicit weights path. If None, looks in MODELS_DIR and
                    then falls back to the COCO yolov8n weights.

    Returns:
        YOLO model instance
    """
    from ultralytics import YOLO

    if model_path:
        if not os.path.exists(model_path):
            raise FileNotFoundError(f"YOLO weights not found: {model_path}")
        logger.info(f"Loading YOLO model from: {model_path}")
        return YOLO(model_path)

    local_path = os.path.join(MODELS_DIR, DEFAULT_YOLO_WEIGHTS)
    if os.path.exists(local_path):
        logger.info(f"Loading YOLO model from: {local_path}")
        return YOLO(local_path)

    logger.warning(f"No local YOLO weights found, using {DEFAULT_YOLO_WEIGHTS}")
    return YOLO(DEFAULT_YOLO_WEIGHTS)


def check_models(model_path: Optional[str] = None) -> dict:
    """
    Check which models are available.

    Returns:
        Dict with model status
    """
    status = {
        "face_detector": False,
        "object_detector": False,
        "object_weights": False
    }

    try:
        import dlib  # noqa: F401
        status["face_detector"] = True
    except ImportError:
        pass

    try:
        import ultralytics  # noqa: F401
        status["object_detector"] = True
    except ImportError:
        pass

    for path in [model_path, os.path.join(MODELS_DIR, DEFAULT_YOLO_WEIGHTS), DEFAULT_YOLO_WEIGHTS]:
        if path and os.path.exists(path):
            status["object_weights"] = True
            break

    return status
