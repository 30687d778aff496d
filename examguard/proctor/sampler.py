"""
Frame Sampler - Periodically offers the latest camera frame to the oracles

At most one inference is outstanding at a time: a tick that fires while the
previous inference is still running is skipped, not queued. That holds
across stop() and start(): an inference abandoned by stop() still blocks
new ones until it finishes, it just never delivers.

A stream that stalls is sampled as an empty frame (no faces, no persons).
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Callable, Optional

from .capture import VideoStream
from .events import DetectionFrame
from .oracle import PerceptionOracleAdapter
from .utils.tasks import cancel_task

logger = logging.getLogger(__name__)


class SamplingMode(str, Enum):
    PREVIEW = "preview"  # Setup screen, detection only
    ACTIVE = "active"    # Exam running, detections are classified


DetectionCallback = Callable[[DetectionFrame, SamplingMode], None]


class FrameSampler:
    """
    Owns the sampling timer for one session.

    The stream is borrowed read-only; the sampler never closes it.
    """

    def __init__(
        self,
        adapter: PerceptionOracleAdapter,
        on_detection: DetectionCallback,
        active_interval: float = 0.5,
        preview_interval: float = 0.8
    ):
        """
        Args:
            adapter: Perception adapter run on every tick
            on_detection: Receives each DetectionFrame with the mode it was sampled in
            active_interval: Seconds between ticks during the exam
            preview_interval: Seconds between ticks during setup preview
        """
        self.adapter = adapter
        self.on_detection = on_detection
        self.active_interval = active_interval
        self.preview_interval = preview_interval

        self._stream: Optional[VideoStream] = None
        self._mode: Optional[SamplingMode] = None
        self._task: Optional[asyncio.Task] = None
        self._inflight: Optional[asyncio.Task] = None
        self._generation = 0

        self.ticks = 0
        self.skipped_ticks = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None

    @property
    def mode(self) -> Optional[SamplingMode]:
        return self._mode

    def interval_for(self, mode: SamplingMode) -> float:
        return self.preview_interval if mode is SamplingMode.PREVIEW else self.active_interval

    def start(self, stream: VideoStream, mode: SamplingMode = SamplingMode.ACTIVE):
        """Start sampling. A running sampler is stopped first."""
        self.stop()
        self._stream = stream
        self._mode = mode
        self._generation += 1
        self._task = asyncio.get_running_loop().create_task(
            self._run(self._generation, self.interval_for(mode)),
            name=f"frame-sampler-{mode.value}"
        )
        logger.debug(f"Sampler started in {mode.value} mode")

    def stop(self):
        """
        Stop sampling. Idempotent.

        No tick fires and no detection is delivered after this returns.
        """
        self._generation += 1
        if self._task is not None:
            cancel_task(self._task)
            self._task = None
        # An inference already handed to the oracle keeps running; only its
        # delivery is dropped. _tick waits for it before starting another.
        self._stream = None
        self._mode = None

    async def _run(self, generation: int, interval: float):
        while True:
            await asyncio.sleep(interval)
            if generation != self._generation:
                return
            self._tick(generation)

    def _tick(self, generation: int):
        if self._inflight is not None and not self._inflight.done():
            self.skipped_ticks += 1
            return

        stream = self._stream
        if stream is None:
            return

        frame = stream.read_frame()
        if frame is None:
            # A stalled camera is reported as an empty frame so the
            # no-face timer keeps counting
            if stream.is_stalled:
                self.ticks += 1
                self._deliver(DetectionFrame(timestamp=time.time()), self._mode)
            # Camera not delivering yet: nothing to do this tick
            return

        self.ticks += 1
        self._inflight = asyncio.get_running_loop().create_task(
            self._classify(frame, generation, self._mode)
        )

    async def _classify(self, frame, generation: int, mode: SamplingMode):
        detection = await self.adapter.classify_frame(frame)
        if generation != self._generation:
            logger.debug("Discarding detection that arrived after sampler stop")
            return
        self._deliver(detection, mode)

    def _deliver(self, detection: DetectionFrame, mode: SamplingMode):
        try:
            self.on_detection(detection, mode)
        except Exception:
            logger.exception("Detection handler failed")
