from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple

import numpy as np


class BodyPart(str, Enum):
    """COCO-17 body parts, in model output order. Values are PoseNet part names."""

    NOSE = "nose"
    LEFT_EYE = "leftEye"
    RIGHT_EYE = "rightEye"
    LEFT_EAR = "leftEar"
    RIGHT_EAR = "rightEar"
    LEFT_SHOULDER = "leftShoulder"
    RIGHT_SHOULDER = "rightShoulder"
    LEFT_ELBOW = "leftElbow"
    RIGHT_ELBOW = "rightElbow"
    LEFT_WRIST = "leftWrist"
    RIGHT_WRIST = "rightWrist"
    LEFT_HIP = "leftHip"
    RIGHT_HIP = "rightHip"
    LEFT_KNEE = "leftKnee"
    RIGHT_KNEE = "rightKnee"
    LEFT_ANKLE = "leftAnkle"
    RIGHT_ANKLE = "rightAnkle"


COCO17_ORDER: Tuple[BodyPart, ...] = tuple(BodyPart)


class BehaviorLabel(str, Enum):
    STANDING = "Standing"
    SITTING = "Sitting"
    RAISING_ARMS = "RaisingArms"
    TILTING_HEAD = "TiltingHead"
    LEANING_FORWARD = "LeaningForward"
    BLINKING = "Blinking"

    @property
    def display(self) -> str:
        """Human-readable form shown in the history panel."""
        return _DISPLAY_NAMES[self]


_DISPLAY_NAMES: Dict[BehaviorLabel, str] = {
    BehaviorLabel.STANDING: "Standing",
    BehaviorLabel.SITTING: "Sitting",
    BehaviorLabel.RAISING_ARMS: "Raising arms",
    BehaviorLabel.TILTING_HEAD: "Tilting head",
    BehaviorLabel.LEANING_FORWARD: "Leaning forward",
    BehaviorLabel.BLINKING: "Blinking",
}

# Labels of one cycle, in rule evaluation order.
ClassificationResult = Tuple[BehaviorLabel, ...]


@dataclass(frozen=True)
class Keypoint:
    part: BodyPart
    x: float
    y: float
    score: float = 1.0

    @property
    def position(self) -> Tuple[float, float]:
        return (self.x, self.y)


@dataclass(frozen=True)
class FaceBox:
    top_left: Tuple[float, float]
    bottom_right: Tuple[float, float]
    score: float = 1.0

    @property
    def xyxy(self) -> List[int]:
        return [int(self.top_left[0]), int(self.top_left[1]), int(self.bottom_right[0]), int(self.bottom_right[1])]


@dataclass(frozen=True)
class Pose:
    """Keypoints of one subject for one inference cycle.

    Lookups are keyed by `BodyPart`. Keypoints scoring below `min_confidence`
    stay in the snapshot (the overlay may still want them) but `get()` reports
    them as missing, which is how rules learn that an input is unavailable.
    """

    keypoints: Tuple[Keypoint, ...] = ()
    min_confidence: float = 0.0
    score: float = 0.0
    _by_part: Dict[BodyPart, Keypoint] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        by_part: Dict[BodyPart, Keypoint] = {}
        for kp in self.keypoints:
            if kp.part in by_part:
                raise ValueError(f"duplicate keypoint for part {kp.part.value}")
            by_part[kp.part] = kp
        ordered = tuple(by_part[p] for p in COCO17_ORDER if p in by_part)
        object.__setattr__(self, "keypoints", ordered)
        object.__setattr__(self, "_by_part", by_part)

    def get(self, part: BodyPart) -> Optional[Keypoint]:
        kp = self._by_part.get(part)
        if kp is None or kp.score < self.min_confidence:
            return None
        return kp

    def __iter__(self) -> Iterator[Keypoint]:
        return iter(self.keypoints)

    def __len__(self) -> int:
        return len(self.keypoints)

    @classmethod
    def from_parts(
        cls,
        points: Dict[BodyPart, Tuple[float, float]],
        score: float = 1.0,
        min_confidence: float = 0.0,
    ) -> "Pose":
        """Build a pose from `part -> (x, y)`, every keypoint sharing `score`."""
        kps = [Keypoint(part=p, x=float(xy[0]), y=float(xy[1]), score=float(score)) for p, xy in points.items()]
        return cls(keypoints=tuple(kps), min_confidence=float(min_confidence), score=float(score))

    @classmethod
    def from_coco17(
        cls,
        xy: np.ndarray,
        conf: Optional[np.ndarray] = None,
        min_confidence: float = 0.0,
        score: float = 0.0,
    ) -> "Pose":
        """Build a pose from COCO-17 model output.

        Args:
            xy: (17, 2) pixel coordinates.
            conf: (17,) keypoint confidences. When None, every keypoint scores 1.0
                and points at exactly (0, 0) are dropped as undetected.
            min_confidence: provider threshold below which a keypoint counts as missing.
            score: overall detection confidence.
        """
        pts = np.asarray(xy, dtype=np.float32).reshape(-1, 2)
        if pts.shape[0] != len(COCO17_ORDER):
            raise ValueError(f"expected {len(COCO17_ORDER)} keypoints, got {pts.shape[0]}")
        if conf is None:
            scores = np.ones(len(COCO17_ORDER), dtype=np.float32)
        else:
            scores = np.asarray(conf, dtype=np.float32).reshape(-1)

        kps: List[Keypoint] = []
        for part, (x, y), s in zip(COCO17_ORDER, pts, scores):
            # Without confidences, (0, 0) is the only sign of an undetected keypoint.
            if conf is None and x == 0.0 and y == 0.0:
                continue
            kps.append(Keypoint(part=part, x=float(x), y=float(y), score=float(s)))
        return cls(keypoints=tuple(kps), min_confidence=float(min_confidence), score=float(score))


def default_behavior_labels() -> List[BehaviorLabel]:
    """Closed label set, in the order the classifier rules can emit them."""
    return list(BehaviorLabel)

