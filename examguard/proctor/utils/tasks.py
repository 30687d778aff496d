"""Task helpers"""

import asyncio
from typing import Optional


def cancel_task(task: Optional[asyncio.Task]):
    """Cancel a task unless it is the one currently running"""
    if task is None or task.done():
        return
    try:
        current = asyncio.current_task()
    except RuntimeError:
        current = None
    if task is not current:
        task.cancel()
