"""
Pytest Configuration for ExamGuard Tests

Fake cameras and scripted perception oracles. Nothing here needs dlib,
ultralytics or a webcam.
"""
import asyncio
import threading
import time
from typing import Any, Dict, List, Optional

import numpy as np
import pytest

from examguard.proctor.capture import CaptureConstraints, CaptureDevice, VideoStream
from examguard.proctor.exceptions import CameraAcquisitionError
from examguard.proctor.oracle import PerceptionOracleAdapter
from examguard.proctor.reporter import ResultReporter
from examguard.proctor.session import ProctorConfig, ProctorSession
from examguard.proctor.state import AssessmentInfo


def blank_frame() -> np.ndarray:
    return np.zeros((48, 64, 3), dtype=np.uint8)


class FakeStream(VideoStream):
    """Always returns the same frame until closed"""

    def __init__(self, frame: Optional[np.ndarray] = None):
        self.frame = frame
        self.closed = False

    def read_frame(self):
        return None if self.closed else self.frame

    @property
    def is_live(self) -> bool:
        return not self.closed

    def close(self):
        self.closed = True


class FakeCamera(CaptureDevice):
    """Capture device that hands out FakeStreams; can be told to fail"""

    def __init__(self, frame: Optional[np.ndarray] = None, fail_times: int = 0):
        self.frame = blank_frame() if frame is None else frame
        self.fail_times = fail_times
        self.acquired: List[FakeStream] = []
        self.released: List[VideoStream] = []

    async def acquire(self, constraints: CaptureConstraints) -> VideoStream:
        if self.fail_times > 0:
            self.fail_times -= 1
            raise CameraAcquisitionError("Camera access denied")
        stream = FakeStream(self.frame)
        self.acquired.append(stream)
        return stream

    def release(self, stream: VideoStream):
        self.released.append(stream)
        stream.close()


class ScriptedFaceOracle:
    """Reports `faces` faces on every frame"""

    def __init__(self, faces: int = 1, fail_load: bool = False):
        self.faces = faces
        self.fail_load = fail_load
        self.loads = 0
        self.calls = 0

    def load(self):
        self.loads += 1
        if self.fail_load:
            raise RuntimeError("weights missing")

    def detect_faces(self, frame) -> List[Dict[str, Any]]:
        self.calls += 1
        return [{"bbox": (0, 0, 10, 10), "area": 100} for _ in range(self.faces)]


class ScriptedObjectOracle:
    """Reports the `objects` list on every frame"""

    def __init__(self, objects: Optional[List[Dict[str, Any]]] = None):
        self.objects = [{"class": "person", "score": 0.9}] if objects is None else objects
        self.calls = 0

    def load(self):
        pass

    def detect_objects(self, frame) -> List[Dict[str, Any]]:
        self.calls += 1
        return list(self.objects)


class GatedFaceOracle:
    """Async face oracle that blocks until the gate opens"""

    def __init__(self):
        self.gate = asyncio.Event()
        self.started = asyncio.Event()
        self.calls = 0

    async def detect_faces(self, frame):
        self.calls += 1
        self.started.set()
        await self.gate.wait()
        return [{"bbox": (0, 0, 10, 10), "area": 100}]


class SlowFaceOracle:
    """Sync face oracle that takes a while and records how many calls overlap"""

    def __init__(self, delay: float = 0.2):
        self.delay = delay
        self.calls = 0
        self.active = 0
        self.max_active = 0
        self.started = threading.Event()
        self._lock = threading.Lock()

    def detect_faces(self, frame):
        with self._lock:
            self.calls += 1
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        self.started.set()
        try:
            time.sleep(self.delay)
        finally:
            with self._lock:
                self.active -= 1
        return [{"bbox": (0, 0, 10, 10), "area": 100}]


FAST_CONFIG = ProctorConfig(
    active_interval=0.01,
    preview_interval=0.01,
    no_face_timeout_ticks=10,
    countdown_tick_seconds=0.01
)


@pytest.fixture
def face_oracle():
    return ScriptedFaceOracle()


@pytest.fixture
def object_oracle():
    return ScriptedObjectOracle()


@pytest.fixture
def adapter(face_oracle, object_oracle):
    return PerceptionOracleAdapter(face_oracle, object_oracle)


@pytest.fixture
def camera():
    return FakeCamera()


@pytest.fixture
def reporter():
    return ResultReporter()


@pytest.fixture
def assessment():
    return AssessmentInfo(title="Python Basics", duration_seconds=600, badge="Python Novice")


@pytest.fixture
def make_session(assessment, camera, adapter, reporter):
    """Build a session with fast timers; keyword args override the defaults"""
    def factory(**kwargs):
        options = dict(
            assessment=assessment,
            camera=camera,
            adapter=adapter,
            reporter=reporter,
            config=FAST_CONFIG
        )
        options.update(kwargs)
        return ProctorSession(**options)

    return factory
