from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

from .types import BehaviorLabel, BodyPart, ClassificationResult, FaceBox, Keypoint, Pose, default_behavior_labels

_KNOWN_LABELS = frozenset(default_behavior_labels())


class InvalidLabelError(RuntimeError):
    """A rule produced something outside the closed BehaviorLabel set."""


@dataclass(frozen=True)
class ClassifierConfig:
    # Four-point posture: both hip and knee vertical spreads must stay below this to count as standing.
    posture_spread_threshold: float = 50.0

    # Single-leg posture (secondary policy): only used when the four-point inputs are incomplete.
    single_leg_fallback: bool = False
    single_leg_gap_threshold: float = 100.0

    head_tilt_threshold: float = 10.0
    blink_threshold: float = 5.0


def _posture_four_point(pose: Pose, cfg: ClassifierConfig) -> Optional[BehaviorLabel]:
    l_hip = pose.get(BodyPart.LEFT_HIP)
    r_hip = pose.get(BodyPart.RIGHT_HIP)
    l_knee = pose.get(BodyPart.LEFT_KNEE)
    r_knee = pose.get(BodyPart.RIGHT_KNEE)
    if l_hip is None or r_hip is None or l_knee is None or r_knee is None:
        return None

    hip_spread = abs(l_hip.y - r_hip.y)
    knee_spread = abs(l_knee.y - r_knee.y)
    th = float(cfg.posture_spread_threshold)
    if hip_spread < th and knee_spread < th:
        return BehaviorLabel.STANDING
    return BehaviorLabel.SITTING


def _posture_single_leg(pose: Pose, cfg: ClassifierConfig) -> Optional[BehaviorLabel]:
    # Left side first; the right side only when the left pair is incomplete.
    for hip_part, knee_part in (
        (BodyPart.LEFT_HIP, BodyPart.LEFT_KNEE),
        (BodyPart.RIGHT_HIP, BodyPart.RIGHT_KNEE),
    ):
        hip = pose.get(hip_part)
        knee = pose.get(knee_part)
        if hip is None or knee is None:
            continue
        if abs(hip.y - knee.y) > float(cfg.single_leg_gap_threshold):
            return BehaviorLabel.STANDING
        return BehaviorLabel.SITTING
    return None


def _posture(pose: Pose, cfg: ClassifierConfig) -> Optional[BehaviorLabel]:
    label = _posture_four_point(pose, cfg)
    if label is None and cfg.single_leg_fallback:
        label = _posture_single_leg(pose, cfg)
    return label


def _wrist_above_shoulder(shoulder: Optional[Keypoint], wrist: Optional[Keypoint]) -> bool:
    # Image y grows downward.
    return shoulder is not None and wrist is not None and wrist.y < shoulder.y


def _raised_arms(pose: Pose, cfg: ClassifierConfig) -> Optional[BehaviorLabel]:
    left = _wrist_above_shoulder(pose.get(BodyPart.LEFT_SHOULDER), pose.get(BodyPart.LEFT_WRIST))
    right = _wrist_above_shoulder(pose.get(BodyPart.RIGHT_SHOULDER), pose.get(BodyPart.RIGHT_WRIST))
    if left or right:
        return BehaviorLabel.RAISING_ARMS
    return None


def _eye_level_diff(pose: Pose) -> Optional[float]:
    l_eye = pose.get(BodyPart.LEFT_EYE)
    r_eye = pose.get(BodyPart.RIGHT_EYE)
    if l_eye is None or r_eye is None:
        return None
    return abs(l_eye.y - r_eye.y)


def _head_tilt(pose: Pose, cfg: ClassifierConfig) -> Optional[BehaviorLabel]:
    diff = _eye_level_diff(pose)
    if diff is not None and diff > float(cfg.head_tilt_threshold):
        return BehaviorLabel.TILTING_HEAD
    return None


def _leaning_forward(pose: Pose, cfg: ClassifierConfig) -> Optional[BehaviorLabel]:
    nose = pose.get(BodyPart.NOSE)
    l_shoulder = pose.get(BodyPart.LEFT_SHOULDER)
    if nose is not None and l_shoulder is not None and nose.x < l_shoulder.x:
        return BehaviorLabel.LEANING_FORWARD
    return None


def _blinking(pose: Pose, cfg: ClassifierConfig) -> Optional[BehaviorLabel]:
    # Between blink_threshold and head_tilt_threshold neither label fires.
    diff = _eye_level_diff(pose)
    if diff is not None and diff < float(cfg.blink_threshold):
        return BehaviorLabel.BLINKING
    return None


# Evaluation order is part of the result: summaries compare label sequences.
_RULES = (
    _posture,
    _raised_arms,
    _head_tilt,
    _leaning_forward,
    _blinking,
)


def classify(
    pose: Pose,
    faces: Optional[Sequence[FaceBox]] = None,
    cfg: Optional[ClassifierConfig] = None,
) -> ClassificationResult:
    """Classify one pose into behavior labels.

    Each rule appends at most one label; rules whose keypoints are missing are
    skipped. Face boxes are accepted for interface symmetry with the loop but do
    not influence any rule.

    Raises:
        InvalidLabelError: a rule returned a value outside BehaviorLabel.
    """

    if cfg is None:
        cfg = ClassifierConfig()

    out: List[BehaviorLabel] = []
    for rule in _RULES:
        label = rule(pose, cfg)
        if label is None:
            continue
        if not isinstance(label, BehaviorLabel) or label not in _KNOWN_LABELS:
            raise InvalidLabelError(f"{rule.__name__} emitted {label!r}")
        out.append(label)
    return tuple(out)
