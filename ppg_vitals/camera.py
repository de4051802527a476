"""
Frame source for the PPG pipeline.

Wraps picamera2 to provide timestamped, OpenCV-compatible BGR frames.
Falls back to OpenCV VideoCapture (any webcam or a recorded video file)
when picamera2 is unavailable, which is handy for development and for
replaying recordings.
"""

from __future__ import annotations

import logging
import time
from typing import Generator, Tuple, Union

import cv2
import numpy as np

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Try importing picamera2 (only available on Raspberry Pi OS)
# ---------------------------------------------------------------------------
try:
    from picamera2 import Picamera2
    _PICAMERA2_AVAILABLE = True
except ImportError:
    _PICAMERA2_AVAILABLE = False

MAX_NULL_STREAK = 10


class FrameSource:
    """
    Timestamped frame iterator over a camera or video file.

    Parameters
    ----------
    source:
        OpenCV camera index, or a path to a video file.  Video files are
        always read through OpenCV and timestamped from their frame position
        so replays are deterministic.
    resolution:
        (width, height) requested from a live camera.
    fps:
        Target frame rate of a live camera.
    use_picamera2:
        Prefer picamera2 for live capture when it is installed.
    """

    def __init__(
        self,
        source: Union[int, str] = 0,
        resolution: Tuple[int, int] = (640, 480),
        fps: int = 30,
        use_picamera2: bool = True,
    ) -> None:
        self.source = source
        self.resolution = resolution
        self.fps = fps
        self.is_file = isinstance(source, str)

        self._cam: "Picamera2 | cv2.VideoCapture | None" = None
        self._use_picamera2 = use_picamera2 and _PICAMERA2_AVAILABLE and not self.is_file
        self._frame_index = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> None:
        """Initialise and start the camera or open the video file."""
        if self._use_picamera2:
            self._open_picamera2()
        else:
            self._open_opencv()
        self._frame_index = 0
        logger.info(
            "Frame source opened – backend=%s source=%s fps=%.1f",
            "picamera2" if self._use_picamera2 else "opencv",
            self.source,
            self.fps,
        )

    def close(self) -> None:
        """Stop and release the device."""
        if self._cam is None:
            return
        if self._use_picamera2:
            self._cam.stop()
            self._cam.close()
        else:
            self._cam.release()
        self._cam = None
        logger.info("Frame source closed.")

    # Context-manager support
    def __enter__(self) -> "FrameSource":
        self.open()
        return self

    def __exit__(self, *_) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Frame acquisition
    # ------------------------------------------------------------------

    def read_frame(self) -> Tuple[np.ndarray, float] | None:
        """
        Capture a single frame.

        Returns
        -------
        tuple
            ``(frame, timestamp_ms)`` where *frame* is a BGR array
            (H × W × 3, uint8) owned by the caller, or *None* on failure.
        """
        if self._cam is None:
            raise RuntimeError("Frame source is not open.  Call open() first.")

        frame = self._read_picamera2() if self._use_picamera2 else self._read_opencv()
        if frame is None:
            return None

        if self.is_file:
            timestamp = self._frame_index * 1000.0 / self.fps
        else:
            timestamp = time.time() * 1000.0
        self._frame_index += 1
        # Hand off by value; capture buffers may be reused by the backend.
        return np.array(frame, copy=True), timestamp

    def frames(self) -> Generator[Tuple[np.ndarray, float], None, None]:
        """
        Yield ``(frame, timestamp_ms)`` until the source is exhausted or closed.

        Usage::

            with FrameSource() as src:
                for frame, ts in src.frames():
                    pipeline.process_frame(frame, ts)
        """
        null_streak = 0
        while self._cam is not None:
            item = self.read_frame()
            if item is None:
                if self.is_file:
                    logger.info("End of video file.")
                    break
                null_streak += 1
                if null_streak >= MAX_NULL_STREAK:
                    logger.error(
                        "Camera returned %d consecutive empty frames – aborting.",
                        MAX_NULL_STREAK,
                    )
                    break
                continue
            null_streak = 0
            yield item

    # ------------------------------------------------------------------
    # Private helpers – picamera2
    # ------------------------------------------------------------------

    def _open_picamera2(self) -> None:
        cam = Picamera2()
        w, h = self.resolution
        config = cam.create_video_configuration(
            main={"size": (w, h), "format": "RGB888"},
            buffer_count=4,
        )
        cam.configure(config)
        frame_duration = int(1_000_000 / self.fps)   # microseconds
        try:
            cam.set_controls({
                "FrameDurationLimits": (frame_duration, frame_duration),
            })
        except Exception as exc:                         # noqa: BLE001
            logger.warning("Could not set FrameDurationLimits: %s", exc)
        cam.start()
        # Let auto-exposure settle before the first real frame.
        for _ in range(8):
            cam.capture_array("main")
        self._cam = cam

    def _read_picamera2(self) -> np.ndarray | None:
        frame = self._cam.capture_array("main")
        if frame is None:
            logger.warning("capture_array returned None.")
            return None
        if frame.ndim == 3 and frame.shape[2] == 4:
            frame = frame[:, :, :3]
        # picamera2 RGB888 → OpenCV BGR
        return cv2.cvtColor(frame, cv2.COLOR_RGB2BGR)

    # ------------------------------------------------------------------
    # Private helpers – OpenCV
    # ------------------------------------------------------------------

    def _open_opencv(self) -> None:
        cap = cv2.VideoCapture(self.source)
        if not cap.isOpened():
            raise RuntimeError(f"Cannot open video source {self.source!r}")
        if self.is_file:
            file_fps = cap.get(cv2.CAP_PROP_FPS)
            if file_fps and file_fps > 0:
                self.fps = file_fps
        else:
            w, h = self.resolution
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, w)
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, h)
            cap.set(cv2.CAP_PROP_FPS, self.fps)
        self._cam = cap

    def _read_opencv(self) -> np.ndarray | None:
        ok, frame = self._cam.read()
        if not ok:
            if not self.is_file:
                logger.warning("VideoCapture.read() returned False.")
            return None
        return frame
