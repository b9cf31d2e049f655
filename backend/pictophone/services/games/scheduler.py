import threading
from datetime import datetime, timedelta
from typing import Callable, Optional, Set, Tuple

from pictophone import db, socketio
from pictophone.durations import utcnow
from pictophone.models import ScheduledJob
from .jobs import Job, decode_job, encode_payload


class DelayService:
    """Durable delayed callbacks keyed by an idempotent job id.

    - Jobs live in the ``scheduled_job`` table, so they survive restarts
    - ``schedule`` on an existing key moves its deadline
    - Jobs due within the timer horizon get an in-process timer; the poll
      loop fires everything else, including jobs left over from a previous run
    - Delivery is at-least-once: a timer and the poll loop may both see a job,
      and a failing handler is retried with backoff
    """

    def __init__(self, app):
        self.app = app
        self.timers_enabled = False
        self._handler: Optional[Callable[[Job], None]] = None
        self._armed: Set[Tuple[str, datetime]] = set()
        self._armed_lock = threading.Lock()

    def set_handler(self, handler: Callable[[Job], None]) -> None:
        self._handler = handler

    def schedule(self, job: Job, fire_at: datetime) -> None:
        """Persist ``job`` to fire at ``fire_at``. Failures are logged, never raised."""
        try:
            row = ScheduledJob.query.filter_by(key=job.key).first()
            if row is None:
                row = ScheduledJob(key=job.key, kind=job.kind, payload=encode_payload(job), fire_at=fire_at)
                db.session.add(row)
            else:
                row.kind = job.kind
                row.payload = encode_payload(job)
                row.fire_at = fire_at
                row.attempts = 0
            db.session.commit()
        except Exception:
            db.session.rollback()
            self.app.logger.error(f"[timer-error] could not schedule {job.key}", exc_info=True)
            return
        self.app.logger.info(f"[timer-set] key={job.key} fire_at={fire_at.isoformat()}")
        self._arm(job.key, fire_at)

    def cancel(self, key: str) -> None:
        try:
            removed = ScheduledJob.query.filter_by(key=key).delete()
            db.session.commit()
        except Exception:
            db.session.rollback()
            self.app.logger.error(f"[timer-error] could not cancel {key}", exc_info=True)
            return
        if removed:
            self.app.logger.info(f"[timer-cancel] key={key}")

    def pending(self, key: str) -> Optional[ScheduledJob]:
        return ScheduledJob.query.filter_by(key=key).first()

    def run_due(self, now: Optional[datetime] = None) -> int:
        """Fire every job whose deadline has passed. Returns how many were claimed."""
        now = now or utcnow()
        due = [
            (row.key, row.fire_at)
            for row in ScheduledJob.query.filter(ScheduledJob.fire_at <= now).order_by(ScheduledJob.fire_at).all()
        ]
        fired = 0
        for key, fire_at in due:
            if self._fire(key, fire_at):
                fired += 1
        return fired

    def start(self) -> None:
        self.timers_enabled = True
        socketio.start_background_task(self._poll_loop)
        self.app.logger.info("[timer-start] delayed job poll loop started")

    def _fire(self, key: str, fire_at: datetime) -> bool:
        row = ScheduledJob.query.filter_by(key=key, fire_at=fire_at).first()
        if row is None:
            self.app.logger.info(f"[timer-abort] key={key} cancelled or rescheduled")
            return False
        kind, payload, attempts = row.kind, row.payload, row.attempts
        # Claim by deleting; whoever deletes the row runs the job
        claimed = ScheduledJob.query.filter_by(id=row.id, fire_at=fire_at).delete()
        db.session.commit()
        if not claimed:
            return False

        job = decode_job(kind, payload)
        self.app.logger.info(f"[timer-fire] key={key} kind={kind} attempt={attempts + 1}")
        if self._handler is None:
            self.app.logger.error(f"[timer-error] no handler registered, dropping {key}")
            return True
        try:
            self._handler(job)
        except Exception:
            db.session.rollback()
            self.app.logger.error(f"[timer-error] handler failed for {key}", exc_info=True)
            self._retry(job, attempts + 1)
        return True

    def _retry(self, job: Job, attempts: int) -> None:
        max_attempts = int(self.app.config.get('JOB_MAX_ATTEMPTS', 3))
        if attempts >= max_attempts:
            self.app.logger.error(f"[timer-drop] key={job.key} gave up after {attempts} attempts")
            return
        backoff = int(self.app.config.get('JOB_RETRY_BACKOFF_SEC', 2)) * (2 ** (attempts - 1))
        fire_at = utcnow() + timedelta(seconds=backoff)
        try:
            if ScheduledJob.query.filter_by(key=job.key).first() is not None:
                # Rescheduled by the handler before it failed
                return
            db.session.add(ScheduledJob(
                key=job.key, kind=job.kind, payload=encode_payload(job), fire_at=fire_at, attempts=attempts,
            ))
            db.session.commit()
        except Exception:
            db.session.rollback()
            self.app.logger.error(f"[timer-error] could not requeue {job.key}", exc_info=True)
            return
        self.app.logger.info(f"[timer-retry] key={job.key} attempt={attempts + 1} in {backoff}s")
        self._arm(job.key, fire_at)

    def _arm(self, key: str, fire_at: datetime) -> None:
        if not self.timers_enabled:
            return
        delay = (fire_at - utcnow()).total_seconds()
        if delay > int(self.app.config.get('SCHEDULER_TIMER_HORIZON_SEC', 600)):
            return
        with self._armed_lock:
            if (key, fire_at) in self._armed:
                self.app.logger.info(f"[timer-skip] key={key} already armed")
                return
            self._armed.add((key, fire_at))
        socketio.start_background_task(self._timer_worker, key, fire_at, max(0.0, delay))

    def _timer_worker(self, key: str, fire_at: datetime, delay: float) -> None:
        socketio.sleep(delay)
        with self._armed_lock:
            self._armed.discard((key, fire_at))
        with self.app.app_context():
            try:
                self._fire(key, fire_at)
            except Exception:
                db.session.rollback()
                self.app.logger.error(f"[timer-error] timer for {key} failed", exc_info=True)
            finally:
                db.session.remove()

    def _poll_loop(self) -> None:
        interval = int(self.app.config.get('SCHEDULER_POLL_SEC', 5))
        while True:
            socketio.sleep(interval)
            with self.app.app_context():
                try:
                    self.run_due()
                except Exception:
                    db.session.rollback()
                    self.app.logger.error("[timer-error] poll loop iteration failed", exc_info=True)
                finally:
                    db.session.remove()
