"""
Proctoring Logger - Logs proctoring events and results
"""

import logging
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)


def log_proctor_event(
    session_id: str,
    event_type: str,
    details: Optional[Dict[str, Any]] = None,
    level: str = "info"
):
    """
    Log a proctoring event.

    Args:
        session_id: Proctoring session ID
        event_type: Type of event (session_start, phase, violation, etc.)
        details: Optional event details
        level: Log level (debug, info, warning, error)
    """
    message = f"[PROCTOR] session={session_id} event={event_type}"

    if details:
        detail_str = " ".join(f"{k}={v}" for k, v in details.items())
        message += f" {detail_str}"

    if level == "debug":
        logger.debug(message)
    elif level == "warning":
        logger.warning(message)
    elif level == "error":
        logger.error(message)
    else:
        logger.info(message)


def log_session_start(session_id: str, title: str, duration_seconds: int):
    """Log session creation"""
    log_proctor_event(
        session_id=session_id,
        event_type="session_start",
        details={
            "title": title,
            "duration_seconds": duration_seconds
        }
    )


def log_phase_change(session_id: str, old_phase: str, new_phase: str):
    """Log a state machine transition"""
    log_proctor_event(
        session_id=session_id,
        event_type="phase",
        details={"from": old_phase, "to": new_phase}
    )


def log_violation(session_id: str, reason: str, source: str):
    """Log the violation that ended a session"""
    log_proctor_event(
        session_id=session_id,
        event_type="violation",
        details={"reason": reason, "source": source},
        level="warning"
    )


def log_session_end(session_id: str, status: str, score: int, elapsed_seconds: int, reason: Optional[str] = None):
    """Log session end event"""
    log_proctor_event(
        session_id=session_id,
        event_type="session_end",
        details={
            "status": status,
            "score": score,
            "elapsed_seconds": elapsed_seconds,
            "reason": reason or "none"
        }
    )


def log_submission_failed(session_id: str, error: str):
    """Log a result that could not be delivered"""
    log_proctor_event(
        session_id=session_id,
        event_type="submission_failed",
        details={"error": error},
        level="error"
    )
