"""Live behavior monitor: camera/video -> pose -> behavior labels -> history or summary.

Examples:
    # Webcam 0, rolling history of the last 10 labels
    python behavior_monitor.py --source 0

    # Video file, deduplicated "what is happening now" summary, no window
    python behavior_monitor.py --source data/video/clip.mp4 --mode summary --no-display \\
        --max-seconds 30 --output-json behavior_session.json
"""

from __future__ import annotations

import argparse
import asyncio
import json
import time

from pathlib import Path
from typing import Dict, Optional

import cv2

from pose_behavior.behavior.aggregator import make_aggregator
from pose_behavior.behavior.classifier import ClassifierConfig
from pose_behavior.behavior.loop import CycleResult, DetectionLoop, LoopConfig
from pose_behavior.behavior.providers import UltralyticsPoseProvider
from pose_behavior.config import HISTORY_CAPACITY, MIN_KEYPOINT_CONFIDENCE, POLL_INTERVAL_SECONDS, POSE_MODEL_WEIGHTS
from pose_behavior.utils.draw import render_overlay
from pose_behavior.utils.log import get_logger
from pose_behavior.utils.serializer import serialize_cycle, serialize_snapshot, serialize_stats
from pose_behavior.video.capture import CameraFrameSource

logger = get_logger(__name__)

SCHEMA_VERSION = "v1"
WINDOW_NAME = "Pose Behavior Monitor"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Classify single-person behaviors from pose keypoints at a fixed polling rate",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--source", "-s", default="0", help="camera index, video file or stream URL (default: 0)")
    parser.add_argument("--loop-video", action="store_true", help="restart a video file when it ends")
    parser.add_argument(
        "--mode",
        "-m",
        choices=["history", "summary"],
        default="history",
        help="aggregation policy: bounded history log or deduplicated running summary",
    )
    parser.add_argument("--history-size", type=int, default=HISTORY_CAPACITY, help="history capacity (default 10)")
    parser.add_argument(
        "--interval-ms",
        type=float,
        default=POLL_INTERVAL_SECONDS * 1000.0,
        help="polling period in milliseconds (default 100)",
    )

    # Perception
    parser.add_argument("--pose-model", default=POSE_MODEL_WEIGHTS, help="Ultralytics pose weights")
    parser.add_argument(
        "--min-confidence",
        type=float,
        default=MIN_KEYPOINT_CONFIDENCE,
        help="keypoints below this score count as missing (default 0.5)",
    )
    parser.add_argument("--person-conf", type=float, default=0.25, help="person detection confidence threshold")
    parser.add_argument(
        "--device",
        type=str,
        default="auto",
        choices=["auto", "cpu", "gpu"],
        help="compute device: auto uses CUDA when available",
    )
    parser.add_argument("--faces", action="store_true", help="also run InsightFace face detection (drawn only)")
    parser.add_argument("--face-det-size", type=int, default=640, help="InsightFace det_size")

    # Classifier thresholds
    parser.add_argument("--posture-spread", type=float, default=50.0, help="four-point hip/knee spread threshold")
    parser.add_argument(
        "--single-leg-fallback",
        action="store_true",
        help="classify posture from one hip/knee pair when the four-point inputs are incomplete",
    )
    parser.add_argument("--single-leg-gap", type=float, default=100.0, help="single-leg hip-knee gap threshold")
    parser.add_argument("--head-tilt", type=float, default=10.0, help="eye level difference for TiltingHead")
    parser.add_argument("--blink", type=float, default=5.0, help="eye level difference below which Blinking fires")

    # Session
    parser.add_argument("--max-seconds", type=float, default=None, help="stop after this many seconds")
    parser.add_argument("--no-display", action="store_true", help="do not open a preview window")
    parser.add_argument("--output-json", "-j", default=None, help="write the final session snapshot to this file")
    return parser


def _build_face_provider(args: argparse.Namespace):
    if not args.faces:
        return None
    from pose_behavior.face.detector import InsightFaceProvider

    return InsightFaceProvider(det_size=int(args.face_det_size), device=str(args.device))


async def run_session(args: argparse.Namespace) -> Dict:
    classifier_cfg = ClassifierConfig(
        posture_spread_threshold=float(args.posture_spread),
        single_leg_fallback=bool(args.single_leg_fallback),
        single_leg_gap_threshold=float(args.single_leg_gap),
        head_tilt_threshold=float(args.head_tilt),
        blink_threshold=float(args.blink),
    )
    pose_provider = UltralyticsPoseProvider(
        weights_path=str(args.pose_model),
        device=str(args.device),
        min_confidence=float(args.min_confidence),
        person_conf=float(args.person_conf),
    )
    aggregator = make_aggregator(args.mode, capacity=int(args.history_size))
    display = not bool(args.no_display)
    last: Dict[str, Optional[CycleResult]] = {"cycle": None}

    with CameraFrameSource(args.source, loop_video=bool(args.loop_video)) as source:
        loop: Optional[DetectionLoop] = None

        def on_cycle(result: CycleResult) -> None:
            last["cycle"] = result
            if result.changed and args.mode == "summary":
                logger.info(loop.snapshot().summary_text)
            if not display:
                return
            vis = render_overlay(
                result.frame,
                result.pose,
                faces=result.faces,
                snapshot=loop.snapshot(),
                min_confidence=float(args.min_confidence),
            )
            cv2.imshow(WINDOW_NAME, vis)
            key = cv2.waitKey(1) & 0xFF
            if key in (ord("q"), 27):
                loop.request_stop()

        loop = DetectionLoop(
            pose_provider=pose_provider,
            frame_source=source,
            aggregator=aggregator,
            face_provider=_build_face_provider(args),
            cfg=LoopConfig(interval_seconds=float(args.interval_ms) / 1000.0),
            classifier_cfg=classifier_cfg,
            on_cycle=on_cycle,
        )
        try:
            await loop.run(duration=args.max_seconds)
        finally:
            if display:
                cv2.destroyAllWindows()

    return {
        "schema_version": SCHEMA_VERSION,
        "source": str(args.source),
        "mode": str(args.mode),
        "interval_ms": float(args.interval_ms),
        "stats": serialize_stats(loop.stats),
        "snapshot": serialize_snapshot(loop.snapshot()),
        "last_cycle": serialize_cycle(last["cycle"], include_pose=True) if last["cycle"] is not None else None,
    }


def main() -> None:
    args = build_parser().parse_args()
    session = asyncio.run(run_session(args))

    if args.output_json:
        out = Path(args.output_json)
        out.parent.mkdir(parents=True, exist_ok=True)
        with open(out, "w", encoding="utf-8") as f:
            json.dump(session, f, ensure_ascii=False, indent=2)
        logger.info(f"session snapshot written: {out}")


if __name__ == "__main__":
    st = time.time()
    main()
    ed = time.time()
    logger.info(f"schema={SCHEMA_VERSION}, total time: {ed - st:.2f} s")
