from __future__ import annotations

from functools import lru_cache
from typing import List, Optional, Sequence, Tuple, Union

import cv2
import numpy as np
from PIL import Image, ImageDraw, ImageFont

from pose_behavior.behavior.aggregator import BehaviorHistory, SummaryState
from pose_behavior.behavior.types import BodyPart, FaceBox, Pose
from pose_behavior.config import FONT_LIST, MIN_KEYPOINT_CONFIDENCE

AQUA = (255, 255, 0)  # BGR
FACE_COLOR = (0, 200, 255)
PANEL_BG = (30, 30, 30)
PANEL_FG = (255, 255, 255)

# Adjacent keypoint pairs drawn as skeleton segments.
SKELETON_EDGES: Tuple[Tuple[BodyPart, BodyPart], ...] = (
    (BodyPart.LEFT_HIP, BodyPart.LEFT_SHOULDER),
    (BodyPart.LEFT_ELBOW, BodyPart.LEFT_SHOULDER),
    (BodyPart.LEFT_ELBOW, BodyPart.LEFT_WRIST),
    (BodyPart.LEFT_HIP, BodyPart.LEFT_KNEE),
    (BodyPart.LEFT_KNEE, BodyPart.LEFT_ANKLE),
    (BodyPart.RIGHT_HIP, BodyPart.RIGHT_SHOULDER),
    (BodyPart.RIGHT_ELBOW, BodyPart.RIGHT_SHOULDER),
    (BodyPart.RIGHT_ELBOW, BodyPart.RIGHT_WRIST),
    (BodyPart.RIGHT_HIP, BodyPart.RIGHT_KNEE),
    (BodyPart.RIGHT_KNEE, BodyPart.RIGHT_ANKLE),
    (BodyPart.LEFT_SHOULDER, BodyPart.RIGHT_SHOULDER),
    (BodyPart.LEFT_HIP, BodyPart.RIGHT_HIP),
)


@lru_cache(maxsize=128)
def _load_font(font_path: str, font_size: int) -> ImageFont.FreeTypeFont:
    return ImageFont.truetype(font_path, font_size)


@lru_cache(maxsize=64)
def _get_best_font(font_size: int) -> ImageFont.ImageFont:
    for p in FONT_LIST:
        try:
            return _load_font(p, int(font_size))
        except Exception:
            continue
    return ImageFont.load_default()


def draw_texts(
    img: np.ndarray,
    items: Sequence[Tuple[str, Tuple[int, int], int, Tuple[int, int, int]]],
) -> None:
    """Draw several texts onto one frame with a single PIL conversion.

    Args:
        img: OpenCV BGR image, modified in-place.
        items: sequence of (text, (x, y), font_size_px, bgr_color)
    """
    if img is None or len(items) == 0:
        return

    try:
        pil_img = Image.fromarray(cv2.cvtColor(img, cv2.COLOR_BGR2RGB))
        draw = ImageDraw.Draw(pil_img)
        for text, org, font_size, bgr in items:
            font = _get_best_font(int(font_size))
            # PIL uses RGB
            draw.text(tuple(org), str(text), font=font, fill=(int(bgr[2]), int(bgr[1]), int(bgr[0])))
        img[:] = cv2.cvtColor(np.array(pil_img), cv2.COLOR_RGB2BGR)
    except Exception:
        for text, org, font_size, bgr in items:
            font_scale = max(0.3, int(font_size) / 24.0)
            cv2.putText(
                img,
                str(text),
                tuple(org),
                cv2.FONT_HERSHEY_SIMPLEX,
                font_scale,
                (int(bgr[0]), int(bgr[1]), int(bgr[2])),
                1,
                cv2.LINE_AA,
            )


@lru_cache(maxsize=4096)
def measure_text(text: str, font_size: int = 14) -> Tuple[int, int]:
    """Pixel (width, height) of `text`; falls back to OpenCV metrics."""
    try:
        font = _get_best_font(int(font_size))
        dummy = Image.new("RGB", (10, 10))
        bbox = ImageDraw.Draw(dummy).textbbox((0, 0), text, font=font)
        return int(bbox[2] - bbox[0]), int(bbox[3] - bbox[1])
    except Exception:
        font_scale = max(0.3, float(font_size) / 24.0)
        (w, h), _ = cv2.getTextSize(text, cv2.FONT_HERSHEY_SIMPLEX, font_scale, 1)
        return int(w), int(h)


def draw_keypoints(
    img: np.ndarray,
    pose: Pose,
    min_confidence: float = MIN_KEYPOINT_CONFIDENCE,
    radius: int = 5,
    color: Tuple[int, int, int] = AQUA,
) -> int:
    """Draw confident keypoints as filled dots. Returns how many were drawn."""
    n = 0
    for kp in pose:
        if kp.score < min_confidence:
            continue
        cv2.circle(img, (int(round(kp.x)), int(round(kp.y))), int(radius), color, -1, cv2.LINE_AA)
        n += 1
    return n


def draw_skeleton(
    img: np.ndarray,
    pose: Pose,
    min_confidence: float = MIN_KEYPOINT_CONFIDENCE,
    color: Tuple[int, int, int] = AQUA,
    thickness: int = 2,
) -> int:
    """Draw segments between adjacent keypoints where both ends are confident."""
    by_part = {kp.part: kp for kp in pose if kp.score >= min_confidence}
    n = 0
    for a, b in SKELETON_EDGES:
        ka = by_part.get(a)
        kb = by_part.get(b)
        if ka is None or kb is None:
            continue
        cv2.line(
            img,
            (int(round(ka.x)), int(round(ka.y))),
            (int(round(kb.x)), int(round(kb.y))),
            color,
            int(thickness),
            cv2.LINE_AA,
        )
        n += 1
    return n


def draw_face_boxes(img: np.ndarray, faces: Sequence[FaceBox], color: Tuple[int, int, int] = FACE_COLOR) -> None:
    for face in faces:
        x1, y1, x2, y2 = face.xyxy
        cv2.rectangle(img, (x1, y1), (x2, y2), color, 2)


def panel_lines(snapshot: Union[BehaviorHistory, SummaryState, None]) -> List[str]:
    """Text lines for the behavior panel: one per history entry, or the summary sentence."""
    if snapshot is None:
        return []
    if isinstance(snapshot, BehaviorHistory):
        return [f"{e.timestamp}: {e.behavior.display}" for e in snapshot.entries]
    return [snapshot.summary_text]


def draw_behavior_panel(
    img: np.ndarray,
    lines: Sequence[str],
    title: Optional[str] = None,
    origin: Tuple[int, int] = (10, 10),
    font_size: int = 16,
    alpha: float = 0.6,
) -> None:
    """Draw a translucent text panel (title + lines) in the top-left corner."""
    rows = ([title] if title else []) + list(lines)
    if not rows:
        return

    pad = 6
    line_h = max(measure_text(r, font_size)[1] for r in rows) + 6
    width = max(measure_text(r, font_size)[0] for r in rows) + 2 * pad
    height = line_h * len(rows) + 2 * pad

    h, w = img.shape[:2]
    x0, y0 = origin
    x1 = min(w, x0 + width)
    y1 = min(h, y0 + height)
    if x1 <= x0 or y1 <= y0:
        return

    roi = img[y0:y1, x0:x1]
    bg = np.empty_like(roi)
    bg[:] = PANEL_BG
    img[y0:y1, x0:x1] = cv2.addWeighted(bg, float(alpha), roi, 1.0 - float(alpha), 0)

    items = []
    for i, row in enumerate(rows):
        items.append((row, (x0 + pad, y0 + pad + i * line_h), int(font_size), PANEL_FG))
    draw_texts(img, items)


def render_overlay(
    frame: np.ndarray,
    pose: Optional[Pose],
    faces: Sequence[FaceBox] = (),
    snapshot: Union[BehaviorHistory, SummaryState, None] = None,
    min_confidence: float = MIN_KEYPOINT_CONFIDENCE,
) -> np.ndarray:
    """Return a copy of `frame` with keypoints, skeleton, face boxes and the behavior panel."""
    vis = frame.copy()
    if pose is not None:
        draw_keypoints(vis, pose, min_confidence=min_confidence)
        draw_skeleton(vis, pose, min_confidence=min_confidence)
    if faces:
        draw_face_boxes(vis, faces)
    title = "Recent Behaviors:" if isinstance(snapshot, BehaviorHistory) else None
    draw_behavior_panel(vis, panel_lines(snapshot), title=title)
    return vis
