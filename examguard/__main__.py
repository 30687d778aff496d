"""
Run a proctored session against the local webcam.

    python -m examguard --title "Python Basics" --duration 600

The exam starts after the setup preview warm-up. Ctrl+C submits it.
"""
import argparse
import asyncio
import logging
import signal

from .config import settings
from .proctor.capture import OpenCVCaptureDevice
from .proctor.exceptions import ProctorError
from .proctor.oracle import create_default_adapter
from .proctor.reporter import create_default_reporter
from .proctor.session import ProctorConfig, ProctorSession
from .proctor.state import AssessmentInfo, GradingPayload, SessionPhase, SessionSnapshot
from .utils.logging_config import setup_logging

logger = logging.getLogger("examguard")


def parse_arguments():
    parser = argparse.ArgumentParser(description='Run a proctored exam session on the local webcam')
    parser.add_argument('--title', type=str, default='Practice Assessment', help='Assessment title')
    parser.add_argument('--duration', type=int, default=300, help='Exam duration in seconds')
    parser.add_argument('--badge', type=str, default=None, help='Badge awarded on passing')
    parser.add_argument('--score', type=int, default=0, help='Score reported on submission (0-100)')
    parser.add_argument('--camera', type=int, default=settings.CAMERA_INDEX, help='Webcam device index')
    parser.add_argument('--yolo-model', type=str, default=settings.OBJECT_MODEL_PATH, help='Path to YOLO weights (defaults to yolov8n)')
    parser.add_argument('--warmup', type=float, default=3.0, help='Seconds of setup preview before the exam starts')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')
    return parser.parse_args()


def print_snapshot(snapshot: SessionSnapshot):
    if snapshot.phase is SessionPhase.SETUP:
        p = snapshot.preview
        print(f"[setup] faces={p.faces} persons={p.persons} phone={p.phone} books={p.books}")
    elif snapshot.phase is SessionPhase.ACTIVE:
        line = f"[active] {snapshot.remaining_seconds}s left, faces={snapshot.detection.faces}"
        if snapshot.seconds_until_no_face_timeout is not None:
            line += f" (no face, terminating in {snapshot.seconds_until_no_face_timeout:.1f}s)"
        print(line)
    elif snapshot.termination_reason is not None:
        reason = snapshot.termination_reason
        print(f"[terminated] {reason.label}: {reason.message}")


async def run(args) -> int:
    config = ProctorConfig.from_settings(settings)
    config.constraints.device_index = args.camera

    session = ProctorSession(
        assessment=AssessmentInfo(title=args.title, duration_seconds=args.duration, badge=args.badge),
        camera=OpenCVCaptureDevice(max_frame_age=settings.STREAM_STALE_SECONDS),
        adapter=create_default_adapter(args.yolo_model, settings.OBJECT_MIN_SCORE),
        reporter=create_default_reporter(settings),
        config=config,
        grader=lambda: GradingPayload(score=args.score)
    )
    session.subscribe(print_snapshot)

    session.begin_setup()
    try:
        await session.prepare()
        await asyncio.sleep(args.warmup)
        await session.start()
    except ProctorError as e:
        logger.error(f"Could not start exam: {e}")
        if session.phase is SessionPhase.SETUP:
            session.cancel()
        return 1

    def submit():
        if session.phase is SessionPhase.ACTIVE:
            session.submit()

    asyncio.get_running_loop().add_signal_handler(signal.SIGINT, submit)

    result = await session.wait_finished()
    await session.reporter.drain()

    if result is not None:
        print(f"Result: {result.to_payload()}")
    return 0 if session.phase is SessionPhase.COMPLETED else 2


def main():
    args = parse_arguments()
    setup_logging(
        service_name="examguard",
        level="DEBUG" if args.debug else settings.LOG_LEVEL,
        log_to_file=settings.LOG_TO_FILE,
        log_dir=settings.LOG_DIR
    )
    raise SystemExit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
