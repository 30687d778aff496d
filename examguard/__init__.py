"""
ExamGuard - Integrity engine for proctored online assessments
"""

__version__ = "1.0.0"
