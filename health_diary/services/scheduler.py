"""Periodic driver that advances every entry through transcription and analysis."""

import logging
import threading
from collections.abc import Callable
from dataclasses import asdict, dataclass
from datetime import datetime

from health_diary.services.analysis_stage import AnalysisStage
from health_diary.services.blob_store import BlobStore
from health_diary.services.transcription_stage import TranscriptionStage

logger = logging.getLogger("health_diary.scheduler")


@dataclass
class TickReport:
    """What one tick did."""

    started_at: datetime
    finished_at: datetime | None = None
    transcriptions_started: int = 0
    transcriptions_finished: int = 0
    analyses_finished: int = 0
    errors: int = 0


class PipelineScheduler:
    """Runs ``tick`` on a background thread every ``interval_seconds``.

    One instance per process; ticks never overlap. A timer firing while a tick is still running
    is skipped, while ``force_run`` waits for the running tick and then runs its own.
    """

    def __init__(
        self,
        transcription: TranscriptionStage,
        analysis: AnalysisStage,
        blobs: BlobStore,
        clock: Callable[[], datetime] = datetime.utcnow,
    ) -> None:
        self.transcription = transcription
        self.analysis = analysis
        self.blobs = blobs
        self.clock = clock
        self.interval_seconds: float | None = None
        self.last_report: TickReport | None = None
        self.ticks_completed = 0
        self.ticks_skipped = 0
        self._tick_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stop_event.is_set()

    def start(self, interval_seconds: float = 60.0) -> None:
        """Begin ticking: once now, then every ``interval_seconds``. No-op if already running."""
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        with self._state_lock:
            if self.is_running:
                logger.warning("Scheduler is already running")
                return
            logger.info("Starting scheduler with %.1fs interval", interval_seconds)
            self.interval_seconds = interval_seconds
            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._run_loop, args=(self._stop_event, interval_seconds), name="pipeline-scheduler", daemon=True
            )
            self._thread.start()

    def stop(self, wait_seconds: float | None = None) -> None:
        """Stop future ticks. A tick in progress finishes; pass ``wait_seconds`` to wait for it."""
        with self._state_lock:
            thread = self._thread
            self._stop_event.set()
            self._thread = None
        if thread is None:
            return
        if wait_seconds is not None and thread is not threading.current_thread():
            thread.join(wait_seconds)
        logger.info("Scheduler stopped")

    def _run_loop(self, stop_event: threading.Event, interval_seconds: float) -> None:
        while not stop_event.is_set():
            self.tick(blocking=False)
            if stop_event.wait(interval_seconds):
                break

    def tick(self, blocking: bool = True) -> TickReport | None:
        """Run one reconciliation pass. Returns None if skipped because another tick holds the lock."""
        if not self._tick_lock.acquire(blocking=blocking):
            self.ticks_skipped += 1
            logger.warning("Previous tick still running, skipping this one")
            return None
        try:
            return self._tick()
        finally:
            self._tick_lock.release()

    def _tick(self) -> TickReport:
        report = TickReport(started_at=self.clock())
        logger.info("Processing background jobs...")

        try:
            self.blobs.ensure_bucket()
        except Exception:
            logger.exception("Storage setup error")
            report.errors += 1

        steps = (
            ("transcriptions_started", self.transcription.start_pending),
            ("transcriptions_finished", self.transcription.reconcile),
            ("analyses_finished", self.analysis.reconcile),
        )
        for name, step in steps:
            try:
                setattr(report, name, step())
            except Exception:
                logger.exception("Background step %s failed", name)
                report.errors += 1

        report.finished_at = self.clock()
        self.last_report = report
        self.ticks_completed += 1
        logger.info(
            "Background job processing completed: %d started, %d transcribed, %d analyzed",
            report.transcriptions_started,
            report.transcriptions_finished,
            report.analyses_finished,
        )
        return report

    def force_run(self) -> TickReport:
        """Run a tick now, outside the timer."""
        logger.info("Force running background jobs...")
        return self.tick(blocking=True)

    def get_status(self) -> dict:
        last = self.last_report
        return {
            "running": self.is_running,
            "interval_seconds": self.interval_seconds,
            "ticks_completed": self.ticks_completed,
            "ticks_skipped": self.ticks_skipped,
            "last_tick": asdict(last) if last else None,
        }
