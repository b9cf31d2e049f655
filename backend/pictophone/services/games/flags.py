from datetime import datetime
from typing import List, Optional

from flask import current_app

from pictophone import db
from pictophone.durations import utcnow
from pictophone.errors import AlreadyResolved, InvalidTransition, NotFound
from pictophone.models import Player, Turn, TurnFlag
from .jobs import TurnExpiry

FLAG_REASONS = ('spam', 'offensive', 'other')


class FlagService:
    """Player reports on completed turns and their admin resolution.

    An open flag hides the game from matchmaking and normal reads until an
    admin dismisses it or confirms it (which rejects the turn).
    """

    def __init__(self, lifecycle, notifier):
        self.lifecycle = lifecycle
        self.notifier = notifier

    def open_flag_for_player(self, player_id: int) -> Optional[TurnFlag]:
        return TurnFlag.query.filter_by(player_id=player_id, resolved_at=None).first()

    def open_flags(self) -> List[TurnFlag]:
        return TurnFlag.query.filter(TurnFlag.resolved_at.is_(None)).order_by(TurnFlag.created_at).all()

    def flag_turn(self, turn_id: int, player_id: int, reason: str, explanation: Optional[str] = None) -> TurnFlag:
        turn = self.lifecycle.find_turn(turn_id)
        if turn is None:
            raise NotFound(f'Turn {turn_id} not found')
        if turn.status != 'completed':
            raise InvalidTransition(f'Turn {turn_id} is {turn.status}, only completed turns can be flagged')
        if reason not in FLAG_REASONS:
            raise InvalidTransition(f'Unknown flag reason {reason!r}')
        existing = self.open_flag_for_player(player_id)
        if existing is not None:
            raise InvalidTransition(
                f'Player {player_id} already has an open flag', flag_id=existing.id, turn_id=existing.turn_id
            )

        game = turn.game
        # Party turns are dealt to roster members, so they survive a flag
        doomed = []
        if not game.is_party:
            doomed = [
                t.id for t in game.turns.filter(
                    Turn.order_index > turn.order_index,
                    Turn.completed_at.is_(None),
                    Turn.rejected_at.is_(None),
                ).all()
            ]
        flag = TurnFlag(turn_id=turn_id, player_id=player_id, reason=reason, explanation=explanation)
        try:
            db.session.add(flag)
            if doomed:
                Turn.query.filter(
                    Turn.id.in_(doomed), Turn.completed_at.is_(None)
                ).delete(synchronize_session=False)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        for doomed_id in doomed:
            self._cancel_expiry(doomed_id)
        current_app.logger.info(
            f"[flag] turn={turn_id} game={game.id} by={player_id} reason={reason} removed_turns={doomed}"
        )
        for admin in Player.query.filter_by(is_admin=True).all():
            self.notifier.notify(admin.id, 'admin_flag', {
                'flag_id': flag.id, 'turn_id': turn_id, 'game_id': game.id, 'reason': reason,
            })
        return flag

    def _cancel_expiry(self, turn_id: int) -> None:
        try:
            self.lifecycle.delay.cancel(TurnExpiry(turn_id).key)
        except Exception:
            current_app.logger.error(f"[timer-error] could not cancel expiry for turn {turn_id}", exc_info=True)

    def _resolve(self, flag_id: int, now: datetime) -> TurnFlag:
        flag = db.session.get(TurnFlag, flag_id)
        if flag is None:
            raise NotFound(f'Flag {flag_id} not found')
        if flag.resolved_at is not None:
            raise AlreadyResolved(f'Flag {flag_id} is already resolved')
        try:
            updated = (
                TurnFlag.query.filter(TurnFlag.id == flag_id, TurnFlag.resolved_at.is_(None))
                .update({TurnFlag.resolved_at: now}, synchronize_session=False)
            )
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        if not updated:
            raise AlreadyResolved(f'Flag {flag_id} is already resolved')
        return db.session.get(TurnFlag, flag_id)

    def dismiss_flag(self, flag_id: int, now: Optional[datetime] = None) -> TurnFlag:
        flag = self._resolve(flag_id, now or utcnow())
        current_app.logger.info(f"[flag-dismiss] flag={flag_id} turn={flag.turn_id}")
        return flag

    def confirm_flag(self, flag_id: int, now: Optional[datetime] = None) -> TurnFlag:
        """Resolve the flag and reject the turn it points at."""
        now = now or utcnow()
        flag = self._resolve(flag_id, now)
        turn = db.session.get(Turn, flag.turn_id)
        if turn is None:
            raise NotFound(f'Turn {flag.turn_id} not found')
        if turn.rejected_at is None:
            turn = self.lifecycle.reject_turn(turn.id, now)
            self.notifier.notify(turn.player_id, 'turn_rejected', {
                'turn_id': turn.id, 'game_id': turn.game_id, 'reason': flag.reason,
            })
        current_app.logger.info(f"[flag-confirm] flag={flag_id} turn={flag.turn_id}")
        return flag
