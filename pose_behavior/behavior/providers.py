"""Perception provider interfaces and the Ultralytics pose provider.

The detection loop only depends on the abstract interfaces below. Concrete
providers wrap a model library and translate its output into `Pose` /
`FaceBox` snapshots. Provider calls may fail; the loop treats any exception as
a failed cycle, never as fatal.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import numpy as np

from pose_behavior.config import MIN_KEYPOINT_CONFIDENCE, POSE_MODEL_WEIGHTS
from pose_behavior.utils.log import get_logger, suppress_fds

from .types import FaceBox, Pose

logger = get_logger(__name__)

# 进程内模型缓存：同一权重只加载一次（测试/多次构造 provider 时显著省时）。
_POSE_MODEL_CACHE: Dict[str, Any] = {}


class ProviderError(RuntimeError):
    """Perception provider call failed for this cycle."""


class SourceExhausted(ProviderError):
    """The frame source has no more frames; polling it again is pointless."""


class PoseProvider(ABC):
    """Single-person pose estimator.

    Implementations may define `estimate_single_pose` as a plain method (the
    loop runs it in a worker thread) or as a coroutine (awaited directly).
    """

    @property
    def ready(self) -> bool:
        return True

    def load(self) -> None:
        """Load model weights. Called by the loop before polling starts."""

    @abstractmethod
    def estimate_single_pose(self, frame: Any) -> Pose:
        """Estimate the pose of the single most prominent person in `frame`.

        Returns an empty Pose when nobody is detected.
        """


class FaceProvider(ABC):
    """Optional face detector; an empty list means no detections this cycle."""

    @property
    def ready(self) -> bool:
        return True

    def load(self) -> None:
        """Load model weights. Called by the loop before polling starts."""

    @abstractmethod
    def estimate_faces(self, frame: Any) -> List[FaceBox]:
        pass


def resolve_device(dev: str) -> str:
    """Map CLI device names (auto/cpu/gpu) to torch device strings."""
    s = str(dev).strip().lower()
    if s in {"gpu", "cuda"}:
        return "cuda"
    if s in {"cpu"}:
        return "cpu"
    if s in {"auto", ""}:
        try:
            import torch

            return "cuda" if torch.cuda.is_available() else "cpu"
        except Exception:
            return "cpu"
    # Allow advanced torch device strings like "cuda:0".
    return str(dev)


def _to_numpy(x: Any) -> Optional[np.ndarray]:
    if x is None:
        return None
    if hasattr(x, "cpu"):
        x = x.cpu()
    if hasattr(x, "numpy"):
        x = x.numpy()
    return np.asarray(x, dtype=np.float32)


def pose_from_ultralytics_result(result: Any, min_confidence: float = MIN_KEYPOINT_CONFIDENCE) -> Pose:
    """Pick the most confident person from one Ultralytics pose result.

    Single subject only: other people in the frame are ignored.
    """

    kpts = getattr(result, "keypoints", None)
    boxes = getattr(result, "boxes", None)
    if kpts is None:
        return Pose(min_confidence=float(min_confidence))

    xy = _to_numpy(getattr(kpts, "xy", None))
    if xy is None or xy.ndim != 3 or xy.shape[0] == 0:
        return Pose(min_confidence=float(min_confidence))
    conf = _to_numpy(getattr(kpts, "conf", None))
    box_conf = _to_numpy(getattr(boxes, "conf", None)) if boxes is not None else None

    if box_conf is not None and box_conf.shape[0] == xy.shape[0]:
        best = int(np.argmax(box_conf))
        score = float(box_conf[best])
    elif conf is not None:
        best = int(np.argmax(conf.mean(axis=1)))
        score = float(conf[best].mean())
    else:
        best = 0
        score = 0.0

    return Pose.from_coco17(
        xy[best],
        conf[best] if conf is not None else None,
        min_confidence=float(min_confidence),
        score=score,
    )


class UltralyticsPoseProvider(PoseProvider):
    """Pose provider using an ultralytics YOLO pose model (COCO-17 keypoints)."""

    def __init__(
        self,
        weights_path: str = POSE_MODEL_WEIGHTS,
        device: str = "auto",
        min_confidence: float = MIN_KEYPOINT_CONFIDENCE,
        person_conf: float = 0.25,
    ) -> None:
        self.weights_path = str(weights_path)
        self.device = resolve_device(device)
        self.min_confidence = float(min_confidence)
        self.person_conf = float(person_conf)
        self.model = None

    @property
    def ready(self) -> bool:
        return self.model is not None

    def load(self) -> None:
        if self.model is not None:
            return
        cached = _POSE_MODEL_CACHE.get(self.weights_path)
        if cached is None:
            from ultralytics import YOLO

            with suppress_fds():
                cached = YOLO(self.weights_path)
            _POSE_MODEL_CACHE[self.weights_path] = cached
        self.model = cached
        logger.info(f"Pose model loaded: {self.weights_path} (device={self.device})")

    def estimate_single_pose(self, frame: np.ndarray) -> Pose:
        if self.model is None:
            raise ProviderError("pose model not loaded")
        try:
            results = self.model.predict(frame, conf=self.person_conf, device=self.device, verbose=False)
        except Exception as e:
            raise ProviderError(f"pose inference failed: {e}") from e
        if not results:
            return Pose(min_confidence=self.min_confidence)
        return pose_from_ultralytics_result(results[0], min_confidence=self.min_confidence)
