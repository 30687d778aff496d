"""
Frame helpers - Decoding frames sent by the browser
"""

import base64
import binascii
import logging
from typing import Optional

import cv2
import numpy as np

logger = logging.getLogger(__name__)


def decode_frame_base64(frame_base64: str) -> Optional[np.ndarray]:
    """
    Decode a base64 JPEG/PNG frame into a BGR image.

    Accepts data URLs ("data:image/jpeg;base64,...") as sent by canvas.toDataURL().

    Returns:
        BGR image, or None if the payload is not a decodable image
    """
    if "," in frame_base64 and frame_base64.startswith("data:"):
        frame_base64 = frame_base64.split(",", 1)[1]

    try:
        frame_bytes = base64.b64decode(frame_base64, validate=True)
    except (binascii.Error, ValueError):
        return None

    frame_array = np.frombuffer(frame_bytes, dtype=np.uint8)
    if frame_array.size == 0:
        return None

    frame = cv2.imdecode(frame_array, cv2.IMREAD_COLOR)
    if frame is None:
        logger.debug("Could not decode frame payload")
    return frame
