"""
ExamGuard Proctoring Module

Ends an exam on the first integrity violation:
- Tab switch or window blur
- Multiple faces or multiple persons in frame
- No face for the grace period
- Phone, audio device or reading material in view

Otherwise the exam completes on submission or when the timer runs out.
"""

from .api import router
from .session import ProctorConfig, ProctorSession

__all__ = ["router", "ProctorConfig", "ProctorSession"]
