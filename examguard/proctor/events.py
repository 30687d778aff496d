"""
Proctoring Events - Detection frames and violation verdicts
"""

import time
from enum import Enum
from dataclasses import dataclass, field


class ReasonCode(str, Enum):
    """
    Reasons a proctored session can be terminated.

    The value is the wire code shared with the result service.
    """
    TAB_SWITCH = "tab"
    MULTIPLE_FACES = "faces"
    NO_FACE_TIMEOUT = "noface"
    PHONE_DETECTED = "phone"
    AUDIO_DEVICE_DETECTED = "headphones"
    PROHIBITED_OBJECT_DETECTED = "books"
    MULTIPLE_PERSONS = "multiperson"

    @property
    def label(self) -> str:
        return _REASON_TEXT[self][0]

    @property
    def message(self) -> str:
        return _REASON_TEXT[self][1]


_REASON_TEXT = {
    ReasonCode.TAB_SWITCH: (
        "Tab Switch / Window Change Detected",
        "You switched tabs or changed windows during the assessment. This is considered cheating."
    ),
    ReasonCode.MULTIPLE_FACES: (
        "Multiple Faces Detected",
        "More than one face was detected by AI. Only the test-taker should be visible."
    ),
    ReasonCode.NO_FACE_TIMEOUT: (
        "Face Not Visible For Too Long",
        "Your face was not visible to the camera for more than 5 seconds."
    ),
    ReasonCode.PHONE_DETECTED: (
        "Mobile Phone Detected",
        "A mobile phone was detected by our AI system. Electronic devices are strictly prohibited."
    ),
    ReasonCode.AUDIO_DEVICE_DETECTED: (
        "Headphones/Earbuds Detected",
        "An audio device was detected. Headphones and earbuds are not allowed during the assessment."
    ),
    ReasonCode.PROHIBITED_OBJECT_DETECTED: (
        "Books/Paper/Laptop Detected",
        "Reading material or another device was detected. Only the exam screen may be used."
    ),
    ReasonCode.MULTIPLE_PERSONS: (
        "Multiple Persons Detected",
        "Multiple persons were detected in the camera frame. Only the test-taker should be present."
    ),
}


@dataclass(frozen=True)
class ProhibitedObjectFlags:
    """Prohibited object classes seen in a single frame"""
    phone: bool = False
    book_or_reading_material: bool = False
    audio_device: bool = False


@dataclass(frozen=True)
class DetectionFrame:
    """
    Fused output of both perception oracles for one sampling tick.

    Lives for a single classification cycle only.
    """
    timestamp: float
    face_count: int = 0
    person_count: int = 0
    prohibited: ProhibitedObjectFlags = field(default_factory=ProhibitedObjectFlags)

    def __post_init__(self):
        if self.face_count < 0 or self.person_count < 0:
            raise ValueError("Detection counts must be non-negative")


@dataclass(frozen=True)
class ViolationEvent:
    """A detected policy breach. Any violation ends the session."""
    reason: ReasonCode
    detected_at: float = field(default_factory=time.time)
    source: str = "vision"  # "vision" or "focus"
