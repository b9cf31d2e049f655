from datetime import datetime
from typing import Callable, List, Optional, Tuple

from flask import current_app

from pictophone import db, socketio
from pictophone.durations import utcnow
from pictophone.errors import GameError, NotFound
from pictophone.models import Game, Turn
from .jobs import GameExpiry, Job, PartyDeadline, TurnExpiry


class ExpirationScheduler:
    """Deadline-driven transitions for turns and games.

    Every callback re-reads the row it was scheduled for and does nothing
    if the state moved on, so duplicate or late deliveries are harmless.
    The periodic sweep catches anything whose job went missing.
    """

    def __init__(self, app, delay, lifecycle):
        self.app = app
        self.delay = delay
        self.lifecycle = lifecycle
        self._party_deadline: List[Callable[[int], object]] = []
        delay.set_handler(self.dispatch)

    def on_party_deadline(self, fn: Callable[[int], object]):
        self._party_deadline.append(fn)
        return fn

    def dispatch(self, job: Job) -> None:
        if isinstance(job, TurnExpiry):
            self.delete_turn_if_expired(job.turn_id)
        elif isinstance(job, GameExpiry):
            self.complete_game_if_expired(job.game_id)
        elif isinstance(job, PartyDeadline):
            for fn in self._party_deadline:
                fn(job.party_id)
        else:
            raise TypeError(f'Unhandled job type: {type(job).__name__}')

    def delete_turn_if_expired(self, turn_id: int, now: Optional[datetime] = None) -> bool:
        """Remove a lapsed pending turn. A lapsed first turn takes its game with it."""
        now = now or utcnow()
        turn = db.session.get(Turn, turn_id)
        if turn is None or turn.status != 'pending':
            current_app.logger.info(f"[expire-skip] turn={turn_id} gone or no longer pending")
            return False
        game = turn.game
        if game.deleted_at is not None:
            return False
        if turn.expires_at is not None and turn.expires_at > now:
            current_app.logger.warning(f"[expire-early] turn={turn_id} not due until {turn.expires_at.isoformat()}")
            self.delay.schedule(TurnExpiry(turn_id), turn.expires_at)
            return False

        try:
            if turn.order_index == 0:
                current_app.logger.info(f"[expire-turn] turn={turn_id} was the first turn, deleting game={game.id}")
                self.lifecycle.soft_delete_game(game.id, now)
                return True
            current_app.logger.info(f"[expire-turn] turn={turn_id} game={game.id} index={turn.order_index}")
            return self.lifecycle.discard_turn(turn_id)
        except NotFound:
            current_app.logger.info(f"[expire-skip] turn={turn_id} disappeared mid-expiry")
            return False

    def complete_game_if_expired(self, game_id: int, now: Optional[datetime] = None) -> bool:
        """Close an overdue game that has enough turns. Short games stay open."""
        now = now or utcnow()
        game = db.session.get(Game, game_id)
        if game is None or game.deleted_at is not None or game.completed_at is not None:
            current_app.logger.info(f"[expire-skip] game={game_id} gone or already finished")
            return False
        if game.expires_at is not None and game.expires_at > now:
            current_app.logger.warning(f"[expire-early] game={game_id} not due until {game.expires_at.isoformat()}")
            self.delay.schedule(GameExpiry(game_id), game.expires_at)
            return False

        completed = game.completed_count()
        if completed < game.config.min_turns:
            current_app.logger.info(
                f"[expire-game] game={game_id} has {completed}/{game.config.min_turns} turns, leaving open"
            )
            return False
        try:
            self.lifecycle.complete_game(game_id, now)
        except NotFound:
            return False
        current_app.logger.info(f"[expire-game] game={game_id} completed with {completed} turns")
        return True

    def perform_expirations(self, now: Optional[datetime] = None) -> Tuple[int, int]:
        """One fallback sweep. Returns (turns removed, games completed)."""
        now = now or utcnow()
        turn_ids = [
            row[0] for row in
            db.session.query(Turn.id)
            .join(Game, Turn.game_id == Game.id)
            .filter(
                Turn.completed_at.is_(None),
                Turn.rejected_at.is_(None),
                Turn.expires_at <= now,
                Game.deleted_at.is_(None),
            )
            .order_by(Turn.id)
            .all()
        ]
        turns = 0
        for turn_id in turn_ids:
            try:
                if self.delete_turn_if_expired(turn_id, now):
                    turns += 1
            except GameError as exc:
                current_app.logger.warning(f"[sweep] turn={turn_id} skipped: {exc}")

        game_ids = [
            row[0] for row in
            db.session.query(Game.id)
            .filter(Game.completed_at.is_(None), Game.deleted_at.is_(None), Game.expires_at <= now)
            .order_by(Game.id)
            .all()
        ]
        games = 0
        for game_id in game_ids:
            try:
                if self.complete_game_if_expired(game_id, now):
                    games += 1
            except GameError as exc:
                current_app.logger.warning(f"[sweep] game={game_id} skipped: {exc}")

        if turns or games:
            current_app.logger.info(f"[sweep] removed {turns} turns, completed {games} games")
        return turns, games

    def start(self) -> None:
        socketio.start_background_task(self._sweep_loop)
        self.app.logger.info("[sweep-start] expiration sweep started")

    def _sweep_loop(self) -> None:
        interval = int(self.app.config.get('EXPIRATION_SWEEP_SEC', 60))
        while True:
            socketio.sleep(interval)
            with self.app.app_context():
                try:
                    self.perform_expirations()
                except Exception:
                    db.session.rollback()
                    self.app.logger.error("[sweep] iteration failed", exc_info=True)
                finally:
                    db.session.remove()
