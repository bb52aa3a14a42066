from __future__ import annotations

import io

from contextlib import redirect_stderr, redirect_stdout
from typing import Any, Dict, Iterable, List, Tuple

import numpy as np

from pose_behavior.behavior.providers import FaceProvider, ProviderError, resolve_device
from pose_behavior.behavior.types import FaceBox
from pose_behavior.utils.log import get_logger, suppress_fds

logger = get_logger(__name__)

# 进程内模型缓存：key 包含 providers/ctx_id/det_size/model name。
_FACEAPP_CACHE: Dict[Tuple, Any] = {}


def face_boxes_from_detections(faces: Iterable[Any], min_score: float = 0.0) -> List[FaceBox]:
    """Convert InsightFace `Face` objects (bbox xyxy + det_score) into FaceBox snapshots."""
    out: List[FaceBox] = []
    for face in faces or []:
        bbox = getattr(face, "bbox", None)
        if bbox is None:
            continue
        score = float(getattr(face, "det_score", 1.0) or 0.0)
        if score < float(min_score):
            continue
        x1, y1, x2, y2 = [float(v) for v in bbox]
        out.append(FaceBox(top_left=(x1, y1), bottom_right=(x2, y2), score=score))
    return out


class InsightFaceProvider(FaceProvider):
    """Face detector using InsightFace (detection module only, no recognition)."""

    def __init__(
        self,
        model_name: str = "buffalo_l",
        det_size: int = 640,
        device: str = "auto",
        min_score: float = 0.5,
    ) -> None:
        self.model_name = str(model_name)
        self.det_size: Tuple[int, int] = (int(det_size), int(det_size))
        self.device = resolve_device(device)
        self.min_score = float(min_score)
        self._app = None

    @property
    def ready(self) -> bool:
        return self._app is not None

    def load(self) -> None:
        if self._app is not None:
            return

        if self.device.startswith("cuda"):
            providers = ["CUDAExecutionProvider"]
            ctx_id = 0
        else:
            providers = ["CPUExecutionProvider"]
            ctx_id = -1

        key = (self.model_name, tuple(providers), ctx_id, self.det_size)
        app = _FACEAPP_CACHE.get(key)
        if app is None:
            from insightface.app import FaceAnalysis

            with suppress_fds():
                app = FaceAnalysis(name=self.model_name, providers=providers, allowed_modules=["detection"])
            buf = io.StringIO()
            with redirect_stdout(buf), redirect_stderr(buf):
                app.prepare(ctx_id=ctx_id, det_size=self.det_size)
            _FACEAPP_CACHE[key] = app
        self._app = app
        logger.info(f"Face detector loaded: {self.model_name} (det_size={self.det_size[0]})")

    def estimate_faces(self, frame: np.ndarray) -> List[FaceBox]:
        if self._app is None:
            raise ProviderError("face detector not loaded")
        try:
            faces = self._app.get(frame)
        except Exception as e:
            raise ProviderError(f"face detection failed: {e}") from e
        return face_boxes_from_detections(faces, min_score=self.min_score)
