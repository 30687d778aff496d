"""
Violation Classifier - Turns one tick of detections into at most one verdict

Evaluation order matters: extra persons and devices pre-empt the softer
no-face grace period.

    1. person_count > 1          -> multiperson
    2. phone / audio device      -> phone / headphones
    3. reading material          -> books
    4. face_count > 1            -> faces
    5. face_count == 0           -> grace counter, noface at the threshold
    6. otherwise                 -> grace counter reset
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .events import DetectionFrame, ReasonCode, ViolationEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClassifierPolicy:
    """Grace settings for the no-face check"""
    no_face_timeout_ticks: int = 10
    tick_interval_seconds: float = 0.5

    def __post_init__(self):
        if self.no_face_timeout_ticks < 1:
            raise ValueError("no_face_timeout_ticks must be at least 1")


DEFAULT_POLICY = ClassifierPolicy()


@dataclass(frozen=True)
class Classification:
    """
    Result of classifying one tick.

    Attributes:
        violation: Verdict for this tick, or None
        consecutive_no_face_ticks: Grace counter to carry into the next tick
        seconds_until_timeout: Time left before a no-face termination while
            the face is missing, None when a face is visible
    """
    violation: Optional[ViolationEvent]
    consecutive_no_face_ticks: int
    seconds_until_timeout: Optional[float] = None


def classify(
    detection: DetectionFrame,
    consecutive_no_face_ticks: int,
    policy: ClassifierPolicy = DEFAULT_POLICY
) -> Classification:
    """
    Classify a single detection frame.

    Args:
        detection: Fused detections for this tick
        consecutive_no_face_ticks: Grace counter carried from the previous tick
        policy: No-face grace settings

    Returns:
        Classification with the verdict and the updated grace counter
    """
    ticks = consecutive_no_face_ticks
    flags = detection.prohibited

    reason = None
    if detection.person_count > 1:
        reason = ReasonCode.MULTIPLE_PERSONS
    elif flags.phone:
        reason = ReasonCode.PHONE_DETECTED
    elif flags.audio_device:
        reason = ReasonCode.AUDIO_DEVICE_DETECTED
    elif flags.book_or_reading_material:
        reason = ReasonCode.PROHIBITED_OBJECT_DETECTED
    elif detection.face_count > 1:
        reason = ReasonCode.MULTIPLE_FACES

    if reason is not None:
        return Classification(
            violation=ViolationEvent(reason=reason, detected_at=detection.timestamp),
            consecutive_no_face_ticks=ticks
        )

    if detection.face_count == 0:
        ticks += 1
        if ticks >= policy.no_face_timeout_ticks:
            logger.info(f"No face detected for {ticks} consecutive ticks")
            return Classification(
                violation=ViolationEvent(
                    reason=ReasonCode.NO_FACE_TIMEOUT,
                    detected_at=detection.timestamp
                ),
                consecutive_no_face_ticks=ticks,
                seconds_until_timeout=0.0
            )
        remaining = (policy.no_face_timeout_ticks - ticks) * policy.tick_interval_seconds
        return Classification(
            violation=None,
            consecutive_no_face_ticks=ticks,
            seconds_until_timeout=remaining
        )

    return Classification(violation=None, consecutive_no_face_ticks=0)
