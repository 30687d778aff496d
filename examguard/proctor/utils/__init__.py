"""Utility modules"""

from .frames import decode_frame_base64
from .logging import log_proctor_event
from .tasks import cancel_task

__all__ = ["decode_frame_base64", "log_proctor_event", "cancel_task"]
