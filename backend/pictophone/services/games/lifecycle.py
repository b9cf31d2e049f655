from datetime import datetime
from typing import Callable, List, Optional

from flask import current_app

from pictophone import db
from pictophone.durations import format_duration, parse_duration, utcnow
from pictophone.errors import AlreadyCompleted, InvalidTransition, NotFound
from pictophone.models import Game, GameConfig, Season, Turn, TurnFlag
from .jobs import GameExpiry, TurnExpiry

TURN_TYPES = ('writing', 'drawing')


def has_open_flag(game_id: int) -> bool:
    return (
        TurnFlag.query.join(Turn, TurnFlag.turn_id == Turn.id)
        .filter(Turn.game_id == game_id, TurnFlag.resolved_at.is_(None))
        .first()
        is not None
    )


class GameLifecycle:
    """Turn and game state transitions.

    Turn: pending -> completed | rejected | deleted (expired)
    Game: active -> completed | deleted (soft)

    Party logic plugs in through the ``on_*`` hooks so this module never
    imports it. Hook failures are logged and never undo the transition that
    triggered them.
    """

    def __init__(self, delay, notifier):
        self.delay = delay
        self.notifier = notifier
        self._turn_completed: List[Callable] = []
        self._game_completed: List[Callable] = []
        self._game_deleted: List[Callable] = []
        self._turn_expired: List[Callable] = []

    # ---- hooks ----

    def on_turn_completed(self, fn: Callable[[Turn, Game], None]):
        """Called when a turn lands and its game is still open."""
        self._turn_completed.append(fn)
        return fn

    def on_game_completed(self, fn: Callable[[Game], None]):
        self._game_completed.append(fn)
        return fn

    def on_game_deleted(self, fn: Callable[[Game], None]):
        self._game_deleted.append(fn)
        return fn

    def on_turn_expired(self, fn: Callable[[Game, int, int], None]):
        """Called with (game, player_id, order_index) after a lapsed or rejected turn left the game."""
        self._turn_expired.append(fn)
        return fn

    def _emit(self, listeners, event: str, *args) -> None:
        for fn in listeners:
            try:
                fn(*args)
            except Exception:
                db.session.rollback()
                current_app.logger.error(f"[hook-error] {event} listener {fn.__qualname__} failed", exc_info=True)

    # ---- reads ----

    def find_turn(self, turn_id: int) -> Optional[Turn]:
        """A turn on a live (not soft-deleted) game."""
        return (
            Turn.query.join(Game, Turn.game_id == Game.id)
            .filter(Turn.id == turn_id, Game.deleted_at.is_(None))
            .first()
        )

    def find_game(self, game_id: int) -> Optional[Game]:
        """Visibility rule for non-admin readers."""
        game = Game.query.filter(Game.id == game_id, Game.deleted_at.is_(None)).first()
        if game is None:
            return None
        if game.season is not None and game.season.status != 'completed':
            return None
        if has_open_flag(game.id):
            return None
        return game

    def find_game_admin(self, game_id: int) -> Optional[Game]:
        return db.session.get(Game, game_id)

    def pending_turns_for_player(self, player_id: int, party_only: bool = False) -> List[Turn]:
        """Oldest first."""
        query = (
            Turn.query.join(Game, Turn.game_id == Game.id)
            .filter(
                Turn.player_id == player_id,
                Turn.completed_at.is_(None),
                Turn.rejected_at.is_(None),
                Game.completed_at.is_(None),
                Game.deleted_at.is_(None),
            )
        )
        if party_only:
            query = query.filter(Game.season_id.isnot(None))
        return query.order_by(Turn.created_at, Turn.id).all()

    # ---- creation ----

    def create_game(self, config: GameConfig, season: Optional[Season] = None,
                    created_at: Optional[datetime] = None, commit: bool = True) -> Game:
        """Create a game with its own snapshot of ``config``.

        With ``commit=False`` the caller owns the transaction and must call
        ``schedule_game`` once it has committed.
        """
        now = created_at or utcnow()
        snapshot = config.copy()
        game = Game(
            config=snapshot,
            season=season,
            created_at=now,
            expires_at=now + parse_duration(snapshot.game_timeout),
        )
        db.session.add(game)
        if commit:
            db.session.commit()
            self.schedule_game(game)
        return game

    def create_turn(self, player_id: int, game: Game, created_at: Optional[datetime] = None,
                    commit: bool = True) -> Turn:
        now = created_at or utcnow()
        if game.id is None:
            db.session.flush()
        order_index = Turn.query.filter(Turn.game_id == game.id, Turn.rejected_at.is_(None)).count()
        is_drawing = order_index % 2 == 1
        turn = Turn(
            game=game,
            player_id=player_id,
            content='',
            is_drawing=is_drawing,
            order_index=order_index,
            created_at=now,
            expires_at=now + game.config.turn_timeout(is_drawing),
        )
        db.session.add(turn)
        if commit:
            db.session.commit()
            self.schedule_turn(turn)
        return turn

    def schedule_game(self, game: Game) -> None:
        current_app.logger.info(
            f"[game-create] game={game.id} party={game.season_id} rating={game.config.content_rating} "
            f"expires_at={game.expires_at.isoformat()} in={format_duration(game.expires_at - game.created_at)}"
        )
        self.delay.schedule(GameExpiry(game.id), game.expires_at)

    def schedule_turn(self, turn: Turn) -> None:
        current_app.logger.info(
            f"[turn-create] turn={turn.id} game={turn.game_id} player={turn.player_id} "
            f"index={turn.order_index} type={turn.turn_type} expires_at={turn.expires_at.isoformat()} "
            f"in={format_duration(turn.expires_at - turn.created_at)}"
        )
        self.delay.schedule(TurnExpiry(turn.id), turn.expires_at)

    # ---- transitions ----

    def complete_turn(self, turn_id: int, turn_type: str, content: str, now: Optional[datetime] = None) -> Turn:
        now = now or utcnow()
        turn = self.find_turn(turn_id)
        if turn is None:
            raise NotFound(f'Turn {turn_id} not found')
        game = turn.game
        if turn.rejected_at is not None:
            raise InvalidTransition(f'Turn {turn_id} was rejected')
        if turn.completed_at is not None:
            raise AlreadyCompleted(f'Turn {turn_id} is already completed')
        if game.completed_at is not None:
            raise InvalidTransition(f'Game {game.id} is already completed')
        if turn_type not in TURN_TYPES:
            raise InvalidTransition(f'Unknown turn type {turn_type!r}')
        if turn.turn_type != turn_type:
            raise InvalidTransition(f'Turn {turn_id} is a {turn.turn_type} turn, not a {turn_type} turn')

        game_id = game.id
        completed_game = False
        try:
            updated = (
                Turn.query.filter(Turn.id == turn_id, Turn.completed_at.is_(None), Turn.rejected_at.is_(None))
                .update({Turn.content: content, Turn.completed_at: now, Turn.expires_at: None},
                        synchronize_session=False)
            )
            if updated:
                # Party games complete by roster size, decided by the party hooks
                max_turns = game.config.max_turns
                if not game.is_party and max_turns and game.completed_count() >= max_turns:
                    completed_game = bool(
                        Game.query.filter(Game.id == game_id, Game.completed_at.is_(None))
                        .update({Game.completed_at: now}, synchronize_session=False)
                    )
                db.session.commit()
            else:
                db.session.rollback()
        except Exception:
            db.session.rollback()
            raise

        if not updated:
            if Turn.query.filter_by(id=turn_id).count() == 0:
                raise NotFound(f'Turn {turn_id} no longer exists')
            raise AlreadyCompleted(f'Turn {turn_id} is already completed')

        self.delay.cancel(TurnExpiry(turn_id).key)
        turn = db.session.get(Turn, turn_id)
        game = db.session.get(Game, game_id)
        current_app.logger.info(f"[turn-complete] turn={turn_id} game={game_id} index={turn.order_index}")

        if completed_game:
            current_app.logger.info(f"[game-complete] game={game_id} reached max turns")
            self.delay.cancel(GameExpiry(game_id).key)
            self._after_game_completed(game)
        else:
            self._emit(self._turn_completed, 'turn_completed', turn, game)
        return turn

    def complete_game(self, game_id: int, now: Optional[datetime] = None) -> Game:
        """Idempotent: completing a completed game is a no-op."""
        now = now or utcnow()
        game = db.session.get(Game, game_id)
        if game is None or game.deleted_at is not None:
            raise NotFound(f'Game {game_id} not found')
        if game.completed_at is not None:
            current_app.logger.info(f"[game-complete-skip] game={game_id} already completed")
            return game
        try:
            updated = (
                Game.query.filter(Game.id == game_id, Game.completed_at.is_(None))
                .update({Game.completed_at: now}, synchronize_session=False)
            )
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        game = db.session.get(Game, game_id)
        if not updated:
            return game
        current_app.logger.info(f"[game-complete] game={game_id}")
        self.delay.cancel(GameExpiry(game_id).key)
        self._after_game_completed(game)
        return game

    def _after_game_completed(self, game: Game) -> None:
        self._notify_completion(game)
        self._emit(self._game_completed, 'game_completed', game)

    def _notify_completion(self, game: Game) -> None:
        dedupe_key = f'game:{game.id}'
        try:
            if self.notifier.already_sent('game_completion', dedupe_key):
                current_app.logger.info(f"[notify-skip] game={game.id} completion already notified")
                return
            player_ids = [
                row[0] for row in
                db.session.query(Turn.player_id)
                .filter(Turn.game_id == game.id, Turn.completed_at.isnot(None), Turn.rejected_at.is_(None))
                .distinct().all()
            ]
        except Exception:
            db.session.rollback()
            current_app.logger.error(f"[notify-error] game={game.id} completion lookup failed", exc_info=True)
            return
        for player_id in player_ids:
            self.notifier.notify(player_id, 'game_completion', {'game_id': game.id}, dedupe_key=dedupe_key)

    def soft_delete_game(self, game_id: int, now: Optional[datetime] = None) -> Game:
        """Hard-delete pending turns and mark the game deleted. Completed and rejected turns stay."""
        now = now or utcnow()
        game = db.session.get(Game, game_id)
        if game is None:
            raise NotFound(f'Game {game_id} not found')
        if game.deleted_at is not None:
            return game
        pending_ids = [
            t.id for t in game.turns.filter(Turn.completed_at.is_(None), Turn.rejected_at.is_(None)).all()
        ]
        self._cancel_jobs(game_id, pending_ids)
        try:
            removed = (
                Turn.query.filter(Turn.game_id == game_id, Turn.completed_at.is_(None), Turn.rejected_at.is_(None))
                .delete(synchronize_session=False)
            )
            Game.query.filter(Game.id == game_id).update({Game.deleted_at: now}, synchronize_session=False)
            db.session.commit()
        except Exception:
            db.session.rollback()
            current_app.logger.error(f"[game-delete-error] game={game_id}", exc_info=True)
            raise
        game = db.session.get(Game, game_id)
        current_app.logger.info(f"[game-delete] game={game_id} removed {removed} pending turns")
        self._emit(self._game_deleted, 'game_deleted', game)
        return game

    def _cancel_jobs(self, game_id: int, turn_ids: List[int]) -> None:
        try:
            self.delay.cancel(GameExpiry(game_id).key)
            for turn_id in turn_ids:
                self.delay.cancel(TurnExpiry(turn_id).key)
        except Exception:
            current_app.logger.error(f"[timer-error] could not cancel jobs for game {game_id}", exc_info=True)

    def discard_turn(self, turn_id: int) -> bool:
        """Hard-delete a still-pending turn. Returns False if it already moved on."""
        turn = db.session.get(Turn, turn_id)
        if turn is None:
            return False
        game_id, player_id, order_index = turn.game_id, turn.player_id, turn.order_index
        try:
            removed = (
                Turn.query.filter(Turn.id == turn_id, Turn.completed_at.is_(None), Turn.rejected_at.is_(None))
                .delete(synchronize_session=False)
            )
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        if not removed:
            return False
        self.delay.cancel(TurnExpiry(turn_id).key)
        current_app.logger.info(f"[turn-delete] turn={turn_id} game={game_id} index={order_index}")
        game = db.session.get(Game, game_id)
        self._emit(self._turn_expired, 'turn_expired', game, player_id, order_index)
        return True

    def reject_turn(self, turn_id: int, now: Optional[datetime] = None) -> Turn:
        """Moderation rejection. Later turns shift down so positions stay contiguous."""
        now = now or utcnow()
        turn = db.session.get(Turn, turn_id)
        if turn is None:
            raise NotFound(f'Turn {turn_id} not found')
        if turn.rejected_at is not None:
            raise InvalidTransition(f'Turn {turn_id} is already rejected')
        game_id, player_id, order_index = turn.game_id, turn.player_id, turn.order_index
        try:
            updated = (
                Turn.query.filter(Turn.id == turn_id, Turn.rejected_at.is_(None))
                .update({Turn.rejected_at: now, Turn.expires_at: None}, synchronize_session=False)
            )
            if updated:
                Turn.query.filter(
                    Turn.game_id == game_id,
                    Turn.rejected_at.is_(None),
                    Turn.order_index > order_index,
                ).update({Turn.order_index: Turn.order_index - 1}, synchronize_session=False)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        if not updated:
            raise InvalidTransition(f'Turn {turn_id} is already rejected')
        self.delay.cancel(TurnExpiry(turn_id).key)
        current_app.logger.info(f"[turn-reject] turn={turn_id} game={game_id}")
        self._emit(self._turn_expired, 'turn_expired', db.session.get(Game, game_id), player_id, order_index)
        return db.session.get(Turn, turn_id)
