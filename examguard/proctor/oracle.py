"""
Perception Oracle Adapter - One async call over both perception models

Runs the face oracle and the object oracle against a frame and fuses their
output into a DetectionFrame. A failing oracle never fails the tick: its
part of the frame is zeroed and the error logged.
"""

import asyncio
import inspect
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Set

import numpy as np

from .events import DetectionFrame, ProhibitedObjectFlags
from .exceptions import OracleLoadError

logger = logging.getLogger(__name__)


# Object classes grouped by what they mean for the exam (COCO names)
PERSON_CLASSES: Set[str] = {"person"}

PHONE_CLASSES: Set[str] = {
    "cell phone",
    "remote",
    "mouse"
}

# COCO has no earbud class; small round objects are often earbuds
AUDIO_DEVICE_CLASSES: Set[str] = {
    "headphones",
    "earbuds",
    "sports ball"
}

READING_MATERIAL_CLASSES: Set[str] = {
    "book",
    "laptop",
    "keyboard",
    "tv",
    "monitor",
    "paper",
    "notebook",
    "tablet",
    "scissors",
    "clock",
    "watch",
    "handbag",
    "backpack",
    "suitcase"
}


class PerceptionOracleAdapter:
    """
    Uniform async front for the face and object oracles.

    Oracles are duck-typed: the face oracle needs detect_faces(frame), the
    object oracle needs detect_objects(frame). Either may be sync or async.
    Sync oracles run on one worker thread owned by the adapter, so an adapter
    shared by several sessions still runs a single inference at a time.
    An optional load() is called by load().
    """

    def __init__(self, face_oracle: Any, object_oracle: Any, min_score: float = 0.5):
        """
        Args:
            face_oracle: Face-presence oracle
            object_oracle: Object/person oracle
            min_score: Ignore object detections below this confidence
        """
        self.face_oracle = face_oracle
        self.object_oracle = object_oracle
        self.min_score = min_score
        self._ready = False
        # Model instances are not safe to call from several threads at once
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="oracle")

    @property
    def is_ready(self) -> bool:
        return self._ready

    async def load(self):
        """
        Load both oracles.

        Raises:
            OracleLoadError: If either model fails to load
        """
        for name, oracle in (("face", self.face_oracle), ("object", self.object_oracle)):
            loader = getattr(oracle, "load", None)
            if loader is None:
                continue
            try:
                if inspect.iscoroutinefunction(loader):
                    await loader()
                else:
                    await asyncio.to_thread(loader)
            except Exception as e:
                self._ready = False
                logger.error(f"Failed to load {name} oracle: {e}")
                raise OracleLoadError(
                    "Failed to load AI detection models. Please try again."
                ) from e
        self._ready = True
        logger.info("Perception oracles loaded")

    async def classify_frame(self, frame: np.ndarray) -> DetectionFrame:
        """
        Run both oracles on a frame.

        Args:
            frame: BGR image

        Returns:
            DetectionFrame; never raises for oracle failures
        """
        timestamp = time.time()

        face_count = 0
        try:
            faces = await self._call(self.face_oracle.detect_faces, frame)
            face_count = len(faces)
        except Exception as e:
            logger.warning(f"Face detection error: {e}")

        person_count = 0
        flags = ProhibitedObjectFlags()
        try:
            objects = await self._call(self.object_oracle.detect_objects, frame)
            person_count, flags = self._summarize_objects(objects)
        except Exception as e:
            logger.warning(f"Object detection error: {e}")

        return DetectionFrame(
            timestamp=timestamp,
            face_count=face_count,
            person_count=person_count,
            prohibited=flags
        )

    async def _call(self, fn, frame):
        if inspect.iscoroutinefunction(fn):
            return await fn(frame)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, fn, frame)

    def _summarize_objects(self, objects: List[Dict[str, Any]]):
        """Map raw object classes onto person count and prohibited flags"""
        classes = [
            str(obj.get("class", "")).lower()
            for obj in objects
            if float(obj.get("score", 0.0)) >= self.min_score
        ]
        if classes:
            logger.debug(f"Object detections: {classes}")

        person_count = sum(1 for c in classes if c in PERSON_CLASSES)
        flags = ProhibitedObjectFlags(
            phone=any(c in PHONE_CLASSES for c in classes),
            book_or_reading_material=any(c in READING_MATERIAL_CLASSES for c in classes),
            audio_device=any(c in AUDIO_DEVICE_CLASSES for c in classes)
        )
        return person_count, flags


def create_default_adapter(
    model_path: Optional[str] = None,
    min_score: float = 0.5
) -> PerceptionOracleAdapter:
    """Adapter over the dlib face detector and the YOLO object detector"""
    from .detectors import FaceDetector, ObjectDetector

    return PerceptionOracleAdapter(
        face_oracle=FaceDetector(),
        object_oracle=ObjectDetector(model_path=model_path, confidence=min_score),
        min_score=min_score
    )
