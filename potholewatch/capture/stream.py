"""Threaded camera/video frame grabber and image encoding helpers."""

from __future__ import annotations

import base64
import binascii
import logging
import re
import threading
import time
from pathlib import Path

import cv2
import numpy as np

logger = logging.getLogger(__name__)

DATA_URI_RE = re.compile(r"^data:image/[\w.+-]+;base64,")


class MediaError(ValueError):
    """Raised when an image or frame cannot be read or encoded."""


def strip_data_uri(image_data: str) -> str:
    """Remove a leading ``data:image/...;base64,`` prefix if present."""
    return DATA_URI_RE.sub("", image_data.strip())


def to_base64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def encode_frame(frame: np.ndarray, quality: int = 80) -> bytes:
    """Encode a BGR frame as JPEG bytes."""
    ok, buffer = cv2.imencode(".jpg", frame, [cv2.IMWRITE_JPEG_QUALITY, quality])
    if not ok:
        raise MediaError("Could not encode frame as JPEG")
    return buffer.tobytes()


def decode_image(data: bytes) -> np.ndarray:
    """Decode encoded image bytes into a BGR frame."""
    if not data:
        raise MediaError("Empty image data")
    frame = cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_COLOR)
    if frame is None:
        raise MediaError("Unreadable or unsupported image")
    return frame


def decode_base64_image(image_data: str) -> np.ndarray:
    """Decode a base64 string (with or without data-URI prefix) into a frame."""
    try:
        raw = base64.b64decode(strip_data_uri(image_data), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise MediaError("Image data is not valid base64") from exc
    return decode_image(raw)


def _parse_source(source: str | int) -> str | int:
    """Numeric sources are camera indices, anything else is a URL or path."""
    if isinstance(source, int):
        return source
    return int(source) if source.strip().isdigit() else source


def _is_video_file(source: str | int) -> bool:
    return isinstance(source, str) and "://" not in source and Path(source).is_file()


class FrameGrabber:
    """Keeps the most recent frame of a camera, stream or video file.

    A background thread grabs continuously so readers always see the
    newest frame instead of a buffered one. Cameras and streams are
    reopened after failures; video files rewind when they run out, so a
    recorded drive can stand in for a dashcam.
    """

    def __init__(self, source: str | int, reconnect_delay: float = 5.0,
                 grab_timeout: float = 10.0):
        self._source = _parse_source(source)
        self._rewind = _is_video_file(self._source)
        self._reconnect_delay = reconnect_delay
        self._grab_timeout = grab_timeout

        self._cap: cv2.VideoCapture | None = None
        self._frame: np.ndarray | None = None
        self._frame_number = 0
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def source(self) -> str | int:
        return self._source

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._grab_loop,
                                        name="frame-grabber", daemon=True)
        self._thread.start()
        logger.info("Capturing from %s", self._source)

    def stop(self) -> None:
        """Stop grabbing, close the source and forget the last frame."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=5.0)
            self._thread = None
        self._close()
        with self._lock:
            self._frame = None
            self._frame_number = 0
        logger.info("Capture from %s stopped", self._source)

    def get_frame(self) -> tuple[np.ndarray | None, int]:
        """Return a copy of the newest frame and its number, or (None, 0)."""
        with self._lock:
            if self._frame is None:
                return None, 0
            return self._frame.copy(), self._frame_number

    def _open(self) -> bool:
        self._close()
        try:
            cap = cv2.VideoCapture(self._source)
        except cv2.error:
            logger.exception("Could not open capture source %s", self._source)
            return False
        if not cap.isOpened():
            logger.warning("Capture source %s is unavailable", self._source)
            cap.release()
            return False
        self._cap = cap
        self._connected = True
        logger.info("Capture source %s opened", self._source)
        return True

    def _close(self) -> None:
        if self._cap is not None:
            try:
                self._cap.release()
            except cv2.error:
                logger.debug("Ignoring error while releasing %s", self._source)
            self._cap = None
        self._connected = False

    def _read_once(self) -> bool:
        """Grab and decode one frame; False when the source gave nothing."""
        if not self._cap.grab():
            if not self._rewind:
                return False
            # end of a video file: start the clip again
            self._cap.set(cv2.CAP_PROP_POS_FRAMES, 0)
            if not self._cap.grab():
                return False
        ok, frame = self._cap.retrieve()
        if ok and frame is not None:
            with self._lock:
                self._frame = frame
                self._frame_number += 1
        return True

    def _backoff(self) -> None:
        self._connected = False
        self._stop_event.wait(self._reconnect_delay)

    def _grab_loop(self) -> None:
        last_grab = time.monotonic()
        while not self._stop_event.is_set():
            if not self._connected:
                if not self._open():
                    self._stop_event.wait(self._reconnect_delay)
                    continue
                last_grab = time.monotonic()

            try:
                grabbed = self._read_once()
            except cv2.error:
                logger.exception("Capture from %s failed", self._source)
                self._backoff()
                continue

            now = time.monotonic()
            if grabbed:
                last_grab = now
            elif now - last_grab > self._grab_timeout:
                logger.warning("No frames from %s for %.0fs, reopening",
                               self._source, self._grab_timeout)
                self._backoff()
            else:
                time.sleep(0.05)
