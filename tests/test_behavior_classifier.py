from __future__ import annotations

import itertools
import sys

from pathlib import Path
from typing import Dict, Tuple

import pytest

repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

import pose_behavior.behavior.classifier as classifier_mod

from pose_behavior.behavior.classifier import ClassifierConfig, InvalidLabelError, classify
from pose_behavior.behavior.types import BehaviorLabel, BodyPart, FaceBox, Keypoint, Pose

B = BodyPart
L = BehaviorLabel


def _pose(points: Dict[BodyPart, Tuple[float, float]], min_confidence: float = 0.0) -> Pose:
    return Pose.from_parts(points, score=0.9, min_confidence=min_confidence)


def _standing_still() -> Dict[BodyPart, Tuple[float, float]]:
    # Upright, arms down, eyes in the 5..10 dead zone, nose right of the left shoulder.
    return {
        B.NOSE: (400.0, 60.0),
        B.LEFT_EYE: (380.0, 50.0),
        B.RIGHT_EYE: (420.0, 57.0),
        B.LEFT_SHOULDER: (350.0, 150.0),
        B.RIGHT_SHOULDER: (450.0, 150.0),
        B.LEFT_WRIST: (340.0, 260.0),
        B.RIGHT_WRIST: (460.0, 260.0),
        B.LEFT_HIP: (360.0, 100.0),
        B.RIGHT_HIP: (440.0, 102.0),
        B.LEFT_KNEE: (360.0, 200.0),
        B.RIGHT_KNEE: (440.0, 198.0),
    }


def test_standing_when_hip_and_knee_spreads_are_small():
    assert classify(_pose(_standing_still())) == (L.STANDING,)


def test_sitting_when_hip_spread_is_large():
    pts = _standing_still()
    pts[B.LEFT_HIP] = (360.0, 100.0)
    pts[B.RIGHT_HIP] = (440.0, 180.0)
    assert classify(_pose(pts)) == (L.SITTING,)


@pytest.mark.parametrize("right_knee_y, expected", [(249.0, L.STANDING), (250.0, L.SITTING), (300.0, L.SITTING)])
def test_knee_spread_boundary(right_knee_y: float, expected: BehaviorLabel):
    pts = _standing_still()
    pts[B.LEFT_KNEE] = (360.0, 200.0)
    pts[B.RIGHT_KNEE] = (440.0, right_knee_y)
    assert classify(_pose(pts))[0] == expected


def test_head_tilt_and_blink_thresholds():
    pts = _standing_still()
    pts[B.LEFT_EYE] = (380.0, 50.0)
    pts[B.RIGHT_EYE] = (420.0, 63.0)
    labels = classify(_pose(pts))
    assert L.TILTING_HEAD in labels
    assert L.BLINKING not in labels

    pts[B.RIGHT_EYE] = (420.0, 53.0)
    labels = classify(_pose(pts))
    assert L.BLINKING in labels
    assert L.TILTING_HEAD not in labels


@pytest.mark.parametrize("right_eye_y", [55.0, 57.0, 60.0])
def test_eye_difference_dead_zone_emits_neither(right_eye_y: float):
    pts = _standing_still()
    pts[B.RIGHT_EYE] = (420.0, right_eye_y)
    labels = classify(_pose(pts))
    assert L.TILTING_HEAD not in labels
    assert L.BLINKING not in labels


def test_leaning_forward_compares_nose_to_left_shoulder_x():
    pts = _standing_still()
    pts[B.NOSE] = (300.0, 60.0)
    assert L.LEANING_FORWARD in classify(_pose(pts))

    pts[B.NOSE] = (400.0, 60.0)
    assert L.LEANING_FORWARD not in classify(_pose(pts))


@pytest.mark.parametrize("side", ["left", "right"])
def test_raising_arms_from_either_side(side: str):
    pts = _standing_still()
    if side == "left":
        pts[B.LEFT_WRIST] = (340.0, 100.0)
    else:
        pts[B.RIGHT_WRIST] = (460.0, 100.0)
    assert L.RAISING_ARMS in classify(_pose(pts))


def test_wrist_level_with_shoulder_is_not_raised():
    pts = _standing_still()
    pts[B.LEFT_WRIST] = (340.0, 150.0)
    assert L.RAISING_ARMS not in classify(_pose(pts))


def test_labels_follow_rule_order():
    pts = _standing_still()
    pts[B.RIGHT_HIP] = (440.0, 180.0)
    pts[B.LEFT_WRIST] = (340.0, 100.0)
    pts[B.RIGHT_EYE] = (420.0, 70.0)
    pts[B.NOSE] = (300.0, 60.0)
    assert classify(_pose(pts)) == (L.SITTING, L.RAISING_ARMS, L.TILTING_HEAD, L.LEANING_FORWARD)

    pts[B.RIGHT_HIP] = (440.0, 102.0)
    pts[B.RIGHT_EYE] = (420.0, 52.0)
    assert classify(_pose(pts)) == (L.STANDING, L.RAISING_ARMS, L.LEANING_FORWARD, L.BLINKING)


def test_classification_is_deterministic():
    pose = _pose(_standing_still())
    first = classify(pose)
    for _ in range(5):
        assert classify(pose) == first
    assert isinstance(first, tuple)


# Base pose where four rules fire; each label lists the keypoints its rule needs.
_ALL_FIRING = {
    B.NOSE: (300.0, 60.0),
    B.LEFT_EYE: (280.0, 50.0),
    B.RIGHT_EYE: (320.0, 70.0),
    B.LEFT_SHOULDER: (350.0, 150.0),
    B.RIGHT_SHOULDER: (450.0, 150.0),
    B.LEFT_WRIST: (340.0, 100.0),
    B.RIGHT_WRIST: (460.0, 260.0),
    B.LEFT_HIP: (360.0, 100.0),
    B.RIGHT_HIP: (440.0, 180.0),
    B.LEFT_KNEE: (360.0, 200.0),
    B.RIGHT_KNEE: (440.0, 198.0),
}
_REQUIRES = {
    L.SITTING: {B.LEFT_HIP, B.RIGHT_HIP, B.LEFT_KNEE, B.RIGHT_KNEE},
    L.RAISING_ARMS: {B.LEFT_SHOULDER, B.LEFT_WRIST},
    L.TILTING_HEAD: {B.LEFT_EYE, B.RIGHT_EYE},
    L.LEANING_FORWARD: {B.NOSE, B.LEFT_SHOULDER},
}
_SUBSETS = [set(c) for n in (1, 2) for c in itertools.combinations(sorted(_ALL_FIRING, key=lambda p: p.value), n)]


@pytest.mark.parametrize("missing", _SUBSETS, ids=lambda s: "+".join(sorted(p.value for p in s)))
def test_missing_keypoints_only_disable_their_own_rules(missing):
    full = classify(_pose(_ALL_FIRING))
    assert full == (L.SITTING, L.RAISING_ARMS, L.TILTING_HEAD, L.LEANING_FORWARD)

    expected = tuple(label for label in full if not (_REQUIRES[label] & missing))

    absent = {p: xy for p, xy in _ALL_FIRING.items() if p not in missing}
    assert classify(_pose(absent)) == expected

    # Low-confidence keypoints behave exactly like absent ones.
    kps = [
        Keypoint(part=p, x=xy[0], y=xy[1], score=0.1 if p in missing else 0.9) for p, xy in _ALL_FIRING.items()
    ]
    assert classify(Pose(keypoints=tuple(kps), min_confidence=0.5)) == expected


def test_empty_pose_yields_no_labels():
    assert classify(Pose()) == ()


def test_face_boxes_do_not_change_labels():
    pose = _pose(_standing_still())
    faces = [FaceBox(top_left=(10.0, 10.0), bottom_right=(60.0, 70.0), score=0.99)]
    assert classify(pose, faces) == classify(pose)


_FALLBACK_CFG = ClassifierConfig(single_leg_fallback=True)


def test_single_leg_fallback_disabled_by_default():
    pts = {B.LEFT_HIP: (360.0, 100.0), B.LEFT_KNEE: (360.0, 250.0)}
    assert classify(_pose(pts)) == ()


def test_single_leg_gap_above_threshold_is_standing():
    pts = {B.LEFT_HIP: (360.0, 100.0), B.LEFT_KNEE: (360.0, 250.0)}
    assert classify(_pose(pts), cfg=_FALLBACK_CFG) == (L.STANDING,)


def test_single_leg_gap_below_threshold_is_sitting():
    pts = {B.LEFT_HIP: (360.0, 100.0), B.LEFT_KNEE: (380.0, 160.0)}
    assert classify(_pose(pts), cfg=_FALLBACK_CFG) == (L.SITTING,)


def test_single_leg_uses_right_side_when_left_pair_incomplete():
    pts = {B.LEFT_HIP: (360.0, 100.0), B.RIGHT_HIP: (440.0, 100.0), B.RIGHT_KNEE: (440.0, 230.0)}
    assert classify(_pose(pts), cfg=_FALLBACK_CFG) == (L.STANDING,)


def test_four_point_posture_wins_over_single_leg_when_complete():
    # Left hip-knee gap is 100+, but the hip spread says sitting.
    pts = _standing_still()
    pts[B.RIGHT_HIP] = (440.0, 180.0)
    assert classify(_pose(pts), cfg=_FALLBACK_CFG)[0] == L.SITTING


def test_single_leg_gap_threshold_is_configurable():
    pts = {B.LEFT_HIP: (360.0, 100.0), B.LEFT_KNEE: (360.0, 180.0)}
    cfg = ClassifierConfig(single_leg_fallback=True, single_leg_gap_threshold=60.0)
    assert classify(_pose(pts), cfg=cfg) == (L.STANDING,)


def test_thresholds_are_configurable():
    pts = _standing_still()
    pts[B.RIGHT_EYE] = (420.0, 53.0)
    cfg = ClassifierConfig(head_tilt_threshold=2.0, blink_threshold=1.0)
    labels = classify(_pose(pts), cfg=cfg)
    assert L.TILTING_HEAD in labels
    assert L.BLINKING not in labels


def test_rule_emitting_unknown_value_fails_fast(monkeypatch: pytest.MonkeyPatch):
    def _bogus(pose, cfg):
        return "Jumping"

    monkeypatch.setattr(classifier_mod, "_RULES", (_bogus,))
    with pytest.raises(InvalidLabelError):
        classify(_pose(_standing_still()))
