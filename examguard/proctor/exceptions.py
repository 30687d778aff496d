"""Proctoring errors"""


class ProctorError(Exception):
    """Base class for proctoring errors"""


class SetupError(ProctorError):
    """Recoverable error while preparing a session. Setup may be retried."""


class CameraAcquisitionError(SetupError):
    """Camera could not be opened (permission denied, no device, busy)"""


class OracleLoadError(SetupError):
    """A perception model failed to load"""


class SetupNotReadyError(SetupError):
    """Exam start requested before camera and models were ready"""


class SessionStateError(ProctorError):
    """Requested transition is not allowed from the current phase"""


class SubmissionError(ProctorError):
    """Result service rejected or never received the result"""
