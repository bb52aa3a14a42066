"""OpenCV frame source for the detection loop.

The loop only needs a zero-argument callable returning the current frame; this
wrapper owns the `cv2.VideoCapture` lifecycle so the loop does not have to.
"""

from __future__ import annotations

from typing import Optional, Union

import cv2
import numpy as np

from pose_behavior.behavior.providers import ProviderError, SourceExhausted
from pose_behavior.utils.log import get_logger

logger = get_logger(__name__)


class FrameReadError(ProviderError):
    """The capture device returned no frame for this cycle."""


class EndOfStream(FrameReadError, SourceExhausted):
    """A video file ran out of frames and is not set to loop."""


def parse_source(source: Union[str, int]) -> Union[str, int]:
    """Camera indices come in as digit strings from the CLI; anything else is a path/URL."""
    if isinstance(source, int):
        return source
    s = str(source).strip()
    return int(s) if s.isdigit() else s


class CameraFrameSource:
    """Read the latest frame from a camera index, video file, or stream URL.

    Example:
        >>> with CameraFrameSource(0) as source:
        ...     frame = source()
    """

    def __init__(
        self,
        source: Union[str, int] = 0,
        width: Optional[int] = 640,
        height: Optional[int] = 480,
        loop_video: bool = False,
    ) -> None:
        self.source = parse_source(source)
        self.width = width
        self.height = height
        self.loop_video = bool(loop_video)
        self._cap: Optional[cv2.VideoCapture] = None

    @property
    def is_file(self) -> bool:
        return isinstance(self.source, str) and "://" not in self.source

    def open(self) -> "CameraFrameSource":
        if self._cap is not None:
            return self
        cap = cv2.VideoCapture(self.source)
        if not cap.isOpened():
            raise RuntimeError(f"cannot open frame source: {self.source}")
        if not self.is_file:
            if self.width:
                cap.set(cv2.CAP_PROP_FRAME_WIDTH, int(self.width))
            if self.height:
                cap.set(cv2.CAP_PROP_FRAME_HEIGHT, int(self.height))
        self._cap = cap
        logger.info(
            f"frame source opened: {self.source} "
            f"({int(cap.get(cv2.CAP_PROP_FRAME_WIDTH))}x{int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT))})"
        )
        return self

    def __call__(self) -> np.ndarray:
        if self._cap is None:
            raise FrameReadError("frame source not opened")
        ok, frame = self._cap.read()
        if (not ok or frame is None) and self.is_file:
            if not self.loop_video:
                raise EndOfStream(f"end of video: {self.source}")
            self._cap.set(cv2.CAP_PROP_POS_FRAMES, 0)
            ok, frame = self._cap.read()
        if not ok or frame is None:
            raise FrameReadError(f"no frame from {self.source}")
        return frame

    def close(self) -> None:
        if self._cap is not None:
            self._cap.release()
            self._cap = None

    def __enter__(self) -> "CameraFrameSource":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
