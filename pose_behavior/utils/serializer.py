from typing import Dict, List, Optional, Sequence, Union

from pose_behavior.behavior.aggregator import BehaviorHistory, SummaryState
from pose_behavior.behavior.loop import CycleResult, LoopStats
from pose_behavior.behavior.types import ClassificationResult, FaceBox, Pose


def serialize_labels(labels: ClassificationResult) -> List[str]:
    return [label.value for label in labels]


def serialize_pose(pose: Optional[Pose], ndigits: int = 2) -> Optional[Dict]:
    """Serialize a Pose into JSON-safe form (PoseNet-style keypoint list).

    Keypoints below the provider threshold are kept and flagged with `valid: false`.
    """
    if pose is None:
        return None
    keypoints = []
    for kp in pose:
        keypoints.append(
            {
                "part": kp.part.value,
                "position": {"x": round(float(kp.x), ndigits), "y": round(float(kp.y), ndigits)},
                "score": round(float(kp.score), 4),
                "valid": pose.get(kp.part) is not None,
            }
        )
    return {
        "score": round(float(pose.score), 4),
        "min_confidence": float(pose.min_confidence),
        "keypoints": keypoints,
    }


def serialize_faces(faces: Sequence[FaceBox]) -> List[Dict]:
    out: List[Dict] = []
    for f in faces:
        out.append(
            {
                "topLeft": [round(float(f.top_left[0]), 2), round(float(f.top_left[1]), 2)],
                "bottomRight": [round(float(f.bottom_right[0]), 2), round(float(f.bottom_right[1]), 2)],
                "score": round(float(f.score), 4),
            }
        )
    return out


def serialize_snapshot(snapshot: Union[BehaviorHistory, SummaryState]) -> Dict:
    """Serialize the aggregator state handed to the presentation layer."""
    if isinstance(snapshot, BehaviorHistory):
        return {
            "mode": "history",
            "capacity": int(snapshot.capacity),
            "entries": [{"time": e.timestamp, "behavior": e.behavior.value} for e in snapshot.entries],
        }
    return {
        "mode": "summary",
        "labels": serialize_labels(snapshot.last_labels),
        "summary": snapshot.summary_text,
    }


def serialize_cycle(result: CycleResult, include_pose: bool = False) -> Dict:
    out = {
        "cycle": int(result.cycle),
        "timestamp": result.timestamp.isoformat(timespec="milliseconds"),
        "labels": serialize_labels(result.labels),
        "changed": bool(result.changed),
        "faces": serialize_faces(result.faces),
    }
    if include_pose:
        out["pose"] = serialize_pose(result.pose)
    return out


def serialize_stats(stats: LoopStats) -> Dict:
    return {
        "fired": int(stats.fired),
        "completed": int(stats.completed),
        "skipped": int(stats.skipped),
        "failed": int(stats.failed),
        "discarded": int(stats.discarded),
    }
