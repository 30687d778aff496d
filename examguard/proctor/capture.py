"""
Video Capture - Camera devices and the streams they hand out

Two devices are provided:
- OpenCVCaptureDevice: a local webcam read through cv2.VideoCapture
- RemoteCaptureDevice: frames pushed by a browser over HTTP, one slot deep
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np

from .exceptions import CameraAcquisitionError

logger = logging.getLogger(__name__)


@dataclass
class CaptureConstraints:
    """Requested capture parameters"""
    width: int = 640
    height: int = 480
    facing_mode: str = "user"
    device_index: int = 0


class VideoStream:
    """A live capture handle. Subclasses provide the frames."""

    def read_frame(self) -> Optional[np.ndarray]:
        """Latest decoded frame, or None if no frame is available yet"""
        raise NotImplementedError

    @property
    def is_live(self) -> bool:
        raise NotImplementedError

    @property
    def is_stalled(self) -> bool:
        """True once a stream that was delivering frames stops doing so"""
        return False

    def close(self):
        raise NotImplementedError


class CaptureDevice:
    """Hands out video streams and takes them back"""

    async def acquire(self, constraints: CaptureConstraints) -> VideoStream:
        raise NotImplementedError

    def release(self, stream: VideoStream):
        stream.close()


class LatestFrameStream(VideoStream):
    """
    Keeps only the newest frame and when it arrived.

    A frame older than max_frame_age is not handed out; the stream reports
    itself stalled instead. None disables the age check.
    """

    def __init__(self, max_frame_age: Optional[float] = None):
        self.max_frame_age = max_frame_age
        self.frames_received = 0
        self._frame: Optional[np.ndarray] = None
        self._frame_at: Optional[float] = None
        self._closed = False
        self._lock = threading.Lock()

    def _store(self, frame: np.ndarray) -> bool:
        with self._lock:
            if self._closed:
                return False
            self._frame = frame
            self._frame_at = time.monotonic()
            self.frames_received += 1
            return True

    @property
    def frame_age(self) -> Optional[float]:
        """Seconds since the newest frame arrived, None before the first one"""
        with self._lock:
            if self._frame_at is None:
                return None
            return time.monotonic() - self._frame_at

    @property
    def is_stalled(self) -> bool:
        if self.max_frame_age is None or self._closed:
            return False
        age = self.frame_age
        return age is not None and age > self.max_frame_age

    def read_frame(self) -> Optional[np.ndarray]:
        if self.is_stalled:
            return None
        with self._lock:
            return self._frame

    @property
    def is_live(self) -> bool:
        return not self._closed

    def close(self):
        with self._lock:
            self._closed = True
            self._frame = None


# ============== Local webcam ==============

class OpenCVStream(LatestFrameStream):
    """
    Stream over an opened cv2.VideoCapture.

    A daemon thread drains the capture as fast as the camera delivers, so
    read_frame() never blocks the event loop and never returns a frame that
    sat in the driver's buffer.
    """

    # Back-off after a failed read
    READ_RETRY_SECONDS = 0.05

    def __init__(self, capture: "cv2.VideoCapture", max_frame_age: Optional[float] = None):
        super().__init__(max_frame_age)
        self._capture = capture
        self._stopped = threading.Event()
        self._reader = threading.Thread(target=self._read_loop, name="camera-reader", daemon=True)
        self._reader.start()

    def _read_loop(self):
        while not self._stopped.is_set():
            ok, frame = self._capture.read()
            if not ok or frame is None:
                self._stopped.wait(self.READ_RETRY_SECONDS)
                continue
            self._store(frame)

    @property
    def is_live(self) -> bool:
        return not self._closed and self._capture.isOpened()

    def close(self):
        if self._closed:
            return
        super().close()
        self._stopped.set()
        if self._reader is not threading.current_thread():
            self._reader.join(timeout=1.0)
        self._capture.release()


class OpenCVCaptureDevice(CaptureDevice):
    """Local webcam"""

    def __init__(self, max_frame_age: Optional[float] = None):
        self.max_frame_age = max_frame_age

    async def acquire(self, constraints: CaptureConstraints) -> VideoStream:
        capture = await asyncio.to_thread(cv2.VideoCapture, constraints.device_index)
        if not capture.isOpened():
            capture.release()
            raise CameraAcquisitionError(
                f"Camera {constraints.device_index} could not be opened. "
                f"Check that it is connected and not in use."
            )

        capture.set(cv2.CAP_PROP_FRAME_WIDTH, constraints.width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, constraints.height)
        logger.info(f"Camera {constraints.device_index} opened at {constraints.width}x{constraints.height}")
        return OpenCVStream(capture, self.max_frame_age)


# ============== Browser-pushed frames ==============

class RemoteStream(LatestFrameStream):
    """Holds only the most recent frame pushed by the client"""

    def push(self, frame: np.ndarray) -> bool:
        return self._store(frame)


class RemoteCaptureDevice(CaptureDevice):
    """
    Camera that lives in the candidate's browser.

    Frames arrive through push_frame(); the current stream keeps the latest one.
    A client that stops pushing for longer than max_frame_age leaves the
    stream stalled until the next push.
    """

    def __init__(self, max_frame_age: Optional[float] = None):
        self.max_frame_age = max_frame_age
        self._stream: Optional[RemoteStream] = None

    @property
    def stream(self) -> Optional[RemoteStream]:
        return self._stream

    async def acquire(self, constraints: CaptureConstraints) -> VideoStream:
        if self._stream is not None and self._stream.is_live:
            self._stream.close()
        self._stream = RemoteStream(self.max_frame_age)
        return self._stream

    def release(self, stream: VideoStream):
        stream.close()
        if stream is self._stream:
            self._stream = None

    def push_frame(self, frame: np.ndarray) -> bool:
        """Store a frame on the live stream. Returns False if none is live."""
        stream = self._stream
        if stream is None or not stream.is_live:
            return False
        return stream.push(frame)
