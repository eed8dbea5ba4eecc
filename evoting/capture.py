# Filename: evoting/capture.py
# Capture subsystem: camera frames arrive from the browser as base64 data URIs.

import base64
import binascii
import logging
import threading
import uuid

import cv2
import numpy as np

from .errors import DeviceUnavailable

logger = logging.getLogger(__name__)


def decode_image(data_uri):
    """Decode a `data:image/...;base64,` URI (or bare base64) into a BGR image."""
    if not data_uri:
        raise ValueError("Empty image data")
    encoded = data_uri.split(",", 1)[1] if "," in data_uri else data_uri
    try:
        img = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError("Image data is not valid base64") from e
    npimg = np.frombuffer(img, np.uint8)
    image = cv2.imdecode(npimg, cv2.IMREAD_COLOR) if npimg.size else None
    if image is None:
        raise ValueError("Image data could not be decoded")
    return image


def encode_png(image):
    ok, buf = cv2.imencode(".png", image)
    if not ok:
        raise ValueError("Image could not be encoded")
    return buf.tobytes()


def decode_png(payload):
    image = cv2.imdecode(np.frombuffer(payload, np.uint8), cv2.IMREAD_COLOR)
    if image is None:
        raise ValueError("Stored image could not be decoded")
    return image


class CaptureHandle:
    def __init__(self):
        self.id = uuid.uuid4().hex
        self.frames = []
        self.released = False

    def push(self, frame):
        if self.released:
            raise DeviceUnavailable("The camera has been released.")
        self.frames.append(frame)


class FrameCapture:
    """Hands out capture handles and turns the latest pushed frame into a proof."""

    def __init__(self):
        self._active = set()
        self._lock = threading.Lock()

    def acquire(self):
        handle = CaptureHandle()
        with self._lock:
            self._active.add(handle.id)
        logger.debug("Capture %s acquired", handle.id)
        return handle

    def produce_proof(self, handle):
        if handle.released:
            raise DeviceUnavailable("The camera has been released.")
        if not handle.frames:
            raise DeviceUnavailable("No camera frame received. Check camera access.")
        frame = handle.frames[-1]
        handle.frames.clear()
        try:
            return encode_png(decode_image(frame))
        except ValueError as e:
            raise DeviceUnavailable(f"Camera frame unusable: {e}") from e

    def release(self, handle):
        if handle is None or handle.released:
            return
        handle.released = True
        handle.frames.clear()
        with self._lock:
            self._active.discard(handle.id)
        logger.debug("Capture %s released", handle.id)

    @property
    def active_count(self):
        with self._lock:
            return len(self._active)
