"""Local media acquisition for publishers."""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from functools import partial
from typing import Any, Callable

from aiortc.contrib.media import MediaPlayer
from aiortc.mediastreams import MediaStreamError, VideoStreamTrack
from av import VideoFrame
from av.error import FFmpegError

from .camera import BaseCamera, create_camera
from .errors import CaptureError

logger = logging.getLogger(__name__)

DEFAULT_FPS = 30


class CameraVideoTrack(VideoStreamTrack):
    """Video track that always sends the most recent camera frame."""

    def __init__(self, camera: BaseCamera, fps: int = DEFAULT_FPS) -> None:
        super().__init__()
        if fps <= 0:
            raise ValueError("fps must be positive")
        self._camera = camera
        self._frame_queue: asyncio.Queue = asyncio.Queue(maxsize=1)
        self._frame_task: asyncio.Task[None] | None = None
        self._frame_error: BaseException | None = None
        self._stopped = False

    @property
    def camera(self) -> BaseCamera:
        return self._camera

    async def recv(self) -> VideoFrame:
        await self._ensure_producer()
        pts, time_base = await self.next_timestamp()
        item = await self._frame_queue.get()
        while True:
            try:
                item = self._frame_queue.get_nowait()
            except asyncio.QueueEmpty:
                break
        if isinstance(item, BaseException):
            self._frame_error = None
            raise item
        frame = item
        video_frame = VideoFrame.from_ndarray(frame, format="rgb24")
        video_frame.pts = pts
        video_frame.time_base = time_base
        return video_frame

    async def _ensure_producer(self) -> None:
        if self._stopped:
            raise MediaStreamError("Camera track has been stopped")
        if self._frame_error is not None:
            exc, self._frame_error = self._frame_error, None
            self._drain_queue()
            raise exc
        if self._frame_task is not None:
            return
        loop = asyncio.get_running_loop()
        self._frame_task = loop.create_task(self._frame_producer())
        self._frame_task.add_done_callback(self._on_producer_done)

    async def _frame_producer(self) -> None:
        while not self._stopped:
            frame = await self._camera.get_frame()
            # Copy so cameras that reuse their buffer cannot alter queued frames.
            self._push_latest_frame(frame.copy())

    def _push_latest_frame(self, frame: Any) -> None:
        self._drain_queue()
        self._frame_queue.put_nowait(frame)

    def _drain_queue(self) -> None:
        while True:
            try:
                self._frame_queue.get_nowait()
            except asyncio.QueueEmpty:
                return

    def _on_producer_done(self, task: asyncio.Task[None]) -> None:
        self._frame_task = None
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._frame_error = exc
            logger.error("Camera frame producer stopped: %s", exc)
            # Wake a recv() that is already waiting for the next frame.
            self._push_latest_frame(exc)

    def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        task, self._frame_task = self._frame_task, None
        if task is not None:
            task.cancel()
        self._push_latest_frame(MediaStreamError("Camera track has been stopped"))
        super().stop()


class CaptureSource(ABC):
    """Acquires the tracks a publisher sends."""

    @abstractmethod
    async def acquire_camera_tracks(self, camera: str | None = None) -> list[Any]:  # pragma: no cover
        raise NotImplementedError

    @abstractmethod
    async def acquire_file_tracks(self, path: Path) -> list[Any]:  # pragma: no cover
        raise NotImplementedError

    @abstractmethod
    async def release(self) -> None:  # pragma: no cover - interface only
        raise NotImplementedError


class MediaCapture(CaptureSource):
    """Capture camera frames or loop a video file into aiortc tracks."""

    def __init__(
        self,
        *,
        camera: str | None = None,
        fps: int = DEFAULT_FPS,
        camera_factory: Callable[[str | None], BaseCamera] | None = None,
    ) -> None:
        self._camera_choice = camera
        self._fps = fps
        self._camera_factory = camera_factory if camera_factory is not None else partial(create_camera, fps=fps)
        self._cameras: list[BaseCamera] = []
        self._tracks: list[Any] = []
        self._players: list[MediaPlayer] = []

    @property
    def tracks(self) -> tuple[Any, ...]:
        return tuple(self._tracks)

    async def acquire_camera_tracks(self, camera: str | None = None) -> list[Any]:
        """Open *camera*, or the configured choice, and wrap it in a video track."""

        try:
            device = self._camera_factory(camera or self._camera_choice)
        except CaptureError:
            raise
        except Exception as exc:
            raise CaptureError(f"Unable to open camera: {exc}") from exc
        self._cameras.append(device)
        track = CameraVideoTrack(device, fps=self._fps)
        self._tracks.append(track)
        logger.info("Acquired %s camera video track", device.name)
        return [track]

    async def acquire_file_tracks(self, path: Path) -> list[Any]:
        file_path = Path(path)
        if not file_path.is_file():
            raise CaptureError(f"Video file not found: {file_path}")
        try:
            player = MediaPlayer(str(file_path), loop=True)
        except (OSError, ValueError, FFmpegError) as exc:
            raise CaptureError(f"Unable to open video file {file_path}: {exc}") from exc
        self._players.append(player)
        if player.video is None:
            raise CaptureError(f"Video file has no video stream: {file_path}")
        # Audio is muted for file broadcasts; only the video track is sent.
        self._tracks.append(player.video)
        logger.info("Loaded video file %s", file_path.name)
        return [player.video]

    async def release(self) -> None:
        tracks, self._tracks = self._tracks, []
        players, self._players = self._players, []
        cameras, self._cameras = self._cameras, []
        for track in tracks:
            track.stop()
        for player in players:
            if player.audio is not None:
                player.audio.stop()
        for camera in cameras:
            try:
                await camera.close()
            except Exception as exc:
                logger.warning("Error while closing camera: %s", exc)


__all__ = ["CameraVideoTrack", "CaptureSource", "DEFAULT_FPS", "MediaCapture"]
