from __future__ import annotations

import asyncio
import inspect

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, List, Optional, Tuple

from pose_behavior.config import POLL_INTERVAL_SECONDS
from pose_behavior.utils.log import get_logger

from .aggregator import Aggregator
from .classifier import ClassifierConfig, classify
from .providers import FaceProvider, PoseProvider, SourceExhausted
from .types import ClassificationResult, FaceBox, Pose

logger = get_logger(__name__)


class LoopState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"
    STOPPED = "stopped"


@dataclass
class LoopConfig:
    interval_seconds: float = POLL_INTERVAL_SECONDS

    def __post_init__(self) -> None:
        if float(self.interval_seconds) <= 0.0:
            raise ValueError(f"interval_seconds must be > 0, got {self.interval_seconds}")


@dataclass
class LoopStats:
    fired: int = 0
    completed: int = 0
    skipped: int = 0
    failed: int = 0
    discarded: int = 0


@dataclass(frozen=True)
class CycleResult:
    cycle: int
    timestamp: datetime
    frame: Any
    pose: Pose
    labels: ClassificationResult
    changed: bool
    faces: Tuple[FaceBox, ...] = field(default=())


async def _call(fn: Callable, *args: Any) -> Any:
    """Await coroutine functions directly; run blocking ones in a worker thread."""
    if inspect.iscoroutinefunction(fn):
        return await fn(*args)
    return await asyncio.to_thread(fn, *args)


class DetectionLoop:
    """Fixed-cadence driver: frame -> pose (+faces) -> classify -> aggregate.

    States: IDLE -> POLLING -> STOPPED. While polling, a timer calls `fire()`
    every `cfg.interval_seconds`. At most one cycle is in flight; a firing that
    finds a cycle still running is dropped, not queued, so the aggregator sees
    cycles in firing order. After `stop()` no further classification or
    aggregation happens and late provider results are discarded.

    Perception failures (frame source or provider raising) abandon the cycle and
    leave the aggregator untouched; `SourceExhausted` stops the loop cleanly.
    Exceptions from `on_cycle` are logged and ignored. Anything else raised past
    perception is a defect: the loop stops and `wait_stopped()` re-raises it.
    """

    def __init__(
        self,
        pose_provider: PoseProvider,
        frame_source: Callable[[], Any],
        aggregator: Aggregator,
        face_provider: Optional[FaceProvider] = None,
        cfg: Optional[LoopConfig] = None,
        classifier_cfg: Optional[ClassifierConfig] = None,
        on_cycle: Optional[Callable[[CycleResult], None]] = None,
    ) -> None:
        self.pose_provider = pose_provider
        self.face_provider = face_provider
        self.frame_source = frame_source
        self.aggregator = aggregator
        self.cfg = cfg if cfg is not None else LoopConfig()
        self.classifier_cfg = classifier_cfg if classifier_cfg is not None else ClassifierConfig()
        self.on_cycle = on_cycle

        self.state = LoopState.IDLE
        self.stats = LoopStats()

        self._timer: Optional[asyncio.Task] = None
        self._inflight: Optional[asyncio.Task] = None
        self._cycle_seq = 0
        self._error: Optional[BaseException] = None
        self._stopped = asyncio.Event()

    @property
    def in_flight(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def snapshot(self):
        """Read-only view of the aggregator state for the presentation layer."""
        return self.aggregator.snapshot()

    async def start(self) -> None:
        if self.state is LoopState.STOPPED:
            raise RuntimeError("detection loop already stopped; create a new one")
        if self.state is LoopState.POLLING:
            return

        await self._load_providers()
        if self.state is not LoopState.IDLE:
            # stop() was called while models were loading.
            return

        self.state = LoopState.POLLING
        self._timer = asyncio.create_task(self._tick_forever())
        logger.info(
            f"detection loop polling every {self.cfg.interval_seconds * 1000:.0f} ms "
            f"(aggregator={getattr(self.aggregator, 'mode', type(self.aggregator).__name__)}, "
            f"faces={'on' if self.face_provider is not None else 'off'})"
        )

    async def _load_providers(self) -> None:
        providers: List[Any] = [self.pose_provider]
        if self.face_provider is not None:
            providers.append(self.face_provider)
        for p in providers:
            if bool(getattr(p, "ready", True)):
                continue
            logger.info(f"loading {type(p).__name__} ...")
            await _call(p.load)

    async def _tick_forever(self) -> None:
        interval = float(self.cfg.interval_seconds)
        while self.state is LoopState.POLLING:
            await asyncio.sleep(interval)
            self.fire()

    def fire(self) -> Optional[asyncio.Task]:
        """One timer firing. Returns the started cycle task, or None if dropped."""
        if self.state is not LoopState.POLLING:
            return None

        self.stats.fired += 1
        if self.in_flight:
            self.stats.skipped += 1
            logger.debug(f"previous cycle {self._cycle_seq} still running; skipping this tick")
            return None

        self._cycle_seq += 1
        task = asyncio.create_task(self._run_cycle(self._cycle_seq))
        task.add_done_callback(self._on_cycle_done)
        self._inflight = task
        return task

    async def _run_cycle(self, seq: int) -> Optional[CycleResult]:
        try:
            frame = await _call(self.frame_source)
            pose = await _call(self.pose_provider.estimate_single_pose, frame)
            faces: List[FaceBox] = []
            if self.face_provider is not None:
                faces = list(await _call(self.face_provider.estimate_faces, frame) or [])
        except SourceExhausted as e:
            if self.state is LoopState.POLLING:
                logger.info(f"cycle {seq}: frame source exhausted, stopping: {e}")
                self.request_stop()
            return None
        except Exception as e:
            if self.state is LoopState.POLLING:
                self.stats.failed += 1
                logger.warning(f"cycle {seq}: perception failed, state unchanged: {e}")
            else:
                self.stats.discarded += 1
            return None

        if self.state is not LoopState.POLLING:
            self.stats.discarded += 1
            logger.debug(f"cycle {seq}: resolved after stop; result discarded")
            return None

        labels = classify(pose, faces, cfg=self.classifier_cfg)
        now = datetime.now()
        changed = bool(self.aggregator.feed(labels, now))
        self.stats.completed += 1

        result = CycleResult(
            cycle=seq,
            timestamp=now,
            frame=frame,
            pose=pose,
            labels=labels,
            changed=changed,
            faces=tuple(faces),
        )
        if self.on_cycle is not None:
            # Presentation failures cost one frame of output, not the session.
            try:
                self.on_cycle(result)
            except Exception as e:
                logger.warning(f"cycle {seq}: on_cycle callback failed: {e!r}")
        return result

    def _on_cycle_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        logger.error(f"detection cycle raised an internal error, stopping: {exc!r}")
        self._error = exc
        self.request_stop()

    def request_stop(self) -> None:
        """Synchronous stop: usable from callbacks. Idempotent."""
        if self.state is LoopState.STOPPED:
            return
        was_polling = self.state is LoopState.POLLING
        self.state = LoopState.STOPPED
        if self._timer is not None:
            self._timer.cancel()
        self._stopped.set()
        if was_polling:
            s = self.stats
            logger.info(
                f"detection loop stopped: fired={s.fired}, completed={s.completed}, "
                f"skipped={s.skipped}, failed={s.failed}, discarded={s.discarded}"
            )

    async def stop(self, wait: bool = False) -> None:
        """Stop polling. With wait=True also let the in-flight cycle finish (its result is discarded)."""
        self.request_stop()
        if self._timer is not None:
            await asyncio.gather(self._timer, return_exceptions=True)
        if wait and self._inflight is not None:
            await asyncio.gather(self._inflight, return_exceptions=True)

    async def wait_stopped(self) -> None:
        await self._stopped.wait()
        if self._error is not None:
            raise self._error

    async def run(self, duration: Optional[float] = None) -> None:
        """Start, poll until `duration` seconds elapse (or until stopped), then stop."""
        await self.start()
        try:
            await asyncio.wait_for(self._stopped.wait(), timeout=duration)
        except asyncio.TimeoutError:
            pass
        finally:
            await self.stop(wait=True)
        if self._error is not None:
            raise self._error
