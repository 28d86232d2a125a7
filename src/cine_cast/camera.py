"""Frame sources behind :class:`~cine_cast.capture.CameraVideoTrack`."""
from __future__ import annotations

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from enum import Enum

import numpy as np

from .errors import CaptureError

logger = logging.getLogger(__name__)

CAMERA_ENV_VAR = "CINECAST_CAMERA"


class CameraError(CaptureError):
    """Raised when a frame source cannot be opened or read."""


class CameraChoice(str, Enum):
    """Which frame source a publisher captures from."""

    AUTO = "auto"
    OPENCV = "opencv"
    SYNTHETIC = "synthetic"

    @classmethod
    def parse(cls, value: "str | CameraChoice") -> "CameraChoice":
        """Resolve *value*, accepting the ``webcam``/``cv2``/``test`` aliases."""

        if isinstance(value, CameraChoice):
            return value
        key = str(value).strip().lower()
        try:
            return cls(_ALIASES.get(key, key))
        except ValueError as exc:
            raise CameraError(f"Unknown camera choice: {value!r}") from exc


_ALIASES = {
    "webcam": CameraChoice.OPENCV.value,
    "cv2": CameraChoice.OPENCV.value,
    "test": CameraChoice.SYNTHETIC.value,
}


class BaseCamera(ABC):
    """Produces RGB frames as ``(height, width, 3)`` uint8 arrays."""

    name = "unknown"

    @abstractmethod
    async def get_frame(self) -> np.ndarray:  # pragma: no cover - interface only
        raise NotImplementedError

    async def close(self) -> None:
        return None


class OpenCVCamera(BaseCamera):
    """Webcam read through ``cv2.VideoCapture`` on a worker thread."""

    name = "opencv"

    def __init__(self, device: int = 0) -> None:
        try:
            import cv2
        except ImportError as exc:  # pragma: no cover - optional extra
            raise CameraError("OpenCV is not installed (install the 'opencv' extra)") from exc
        capture = cv2.VideoCapture(device)
        if not capture.isOpened():
            capture.release()
            raise CameraError(f"Camera device {device} could not be opened")
        self._cv2 = cv2
        self._capture = capture
        self._device = device

    async def get_frame(self) -> np.ndarray:
        grabbed, frame = await asyncio.to_thread(self._capture.read)
        if not grabbed:
            raise CameraError(f"Camera device {self._device} stopped delivering frames")
        return self._cv2.cvtColor(frame, self._cv2.COLOR_BGR2RGB)

    async def close(self) -> None:
        await asyncio.to_thread(self._capture.release)


class SyntheticCamera(BaseCamera):
    """Colour bars crossed by a moving marker column, paced at ``fps``."""

    name = "synthetic"

    _BARS = np.array(
        [
            [235, 235, 235],
            [235, 235, 16],
            [16, 235, 235],
            [16, 235, 16],
            [235, 16, 235],
            [235, 16, 16],
            [16, 16, 235],
            [16, 16, 16],
        ],
        dtype=np.uint8,
    )

    def __init__(self, width: int = 640, height: int = 360, *, fps: int = 30) -> None:
        if width <= 0 or height <= 0:
            raise CameraError("Synthetic frames need a positive width and height")
        if fps <= 0:
            raise CameraError("Synthetic camera fps must be positive")
        columns = np.arange(width) * len(self._BARS) // width
        self._background = np.ascontiguousarray(
            np.broadcast_to(self._BARS[columns], (height, width, 3))
        )
        self._interval = 1.0 / fps
        self._marker = 0

    async def get_frame(self) -> np.ndarray:
        await asyncio.sleep(self._interval)
        frame = self._background.copy()
        frame[:, self._marker % frame.shape[1]] = 0
        self._marker += 4
        return frame


def create_camera(choice: "str | CameraChoice | None" = None, *, fps: int = 30) -> BaseCamera:
    """Open the frame source for *choice*, defaulting to ``$CINECAST_CAMERA``.

    ``auto`` uses the first webcam and falls back to the synthetic pattern.
    """

    if choice is None:
        choice = os.getenv(CAMERA_ENV_VAR, CameraChoice.AUTO.value)
    resolved = CameraChoice.parse(choice)
    if resolved is CameraChoice.SYNTHETIC:
        return SyntheticCamera(fps=fps)
    try:
        return OpenCVCamera()
    except CameraError as exc:
        if resolved is CameraChoice.OPENCV:
            raise
        logger.warning("No webcam available, sending the synthetic pattern: %s", exc)
        return SyntheticCamera(fps=fps)


__all__ = [
    "BaseCamera",
    "CAMERA_ENV_VAR",
    "CameraChoice",
    "CameraError",
    "OpenCVCamera",
    "SyntheticCamera",
    "create_camera",
]
