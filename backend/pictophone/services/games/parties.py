"""Private parties: a fixed roster where every member starts one game and
turns rotate among the roster until every game has one turn per member.

Status: open -> active -> completed, or open|active -> closed (cancelled).
"""

from datetime import datetime
from typing import Dict, Iterable, List, Optional

from flask import current_app

from pictophone import db
from pictophone.durations import utcnow
from pictophone.errors import InvalidTransition, NotFound, PermissionDenied
from pictophone.models import Game, GameConfig, Player, PlayerInSeason, Season, Turn
from .jobs import PartyDeadline
from .turn_assignment import ALGORITHMIC, ALGORITHMS, ROUND_ROBIN, assign_algorithmic, assign_round_robin


class PartyOrchestrator:

    def __init__(self, lifecycle, delay, notifier):
        self.lifecycle = lifecycle
        self.delay = delay
        self.notifier = notifier
        lifecycle.on_turn_completed(self.process_turn_completion)
        lifecycle.on_game_completed(self.handle_game_completed)
        lifecycle.on_game_deleted(self.handle_game_deleted)
        lifecycle.on_turn_expired(self.handle_turn_expired)

    # ---- helpers ----

    def get_party(self, party_id: int) -> Season:
        party = db.session.get(Season, party_id)
        if party is None:
            raise NotFound(f'Party {party_id} not found')
        return party

    def _is_admin(self, player_id: int) -> bool:
        player = db.session.get(Player, player_id)
        return bool(player and player.is_admin)

    def _require_creator_or_admin(self, party: Season, user_id: int, action: str) -> None:
        if party.created_by != user_id and not self._is_admin(user_id):
            raise PermissionDenied(f'Only the party creator or an admin can {action} the party')

    def _joined_count(self, party_id: int) -> int:
        return PlayerInSeason.query.filter(
            PlayerInSeason.season_id == party_id, PlayerInSeason.joined_at.isnot(None)
        ).count()

    def _notify_all(self, player_ids: Iterable[int], type: str, data: dict) -> None:
        for player_id in player_ids:
            self.notifier.notify(player_id, type, data)

    # ---- setup ----

    def can_create_party(self, player_id: int) -> bool:
        """One open party per creator."""
        return Season.query.filter_by(created_by=player_id, status='open').first() is None

    def open_party(self, creator_id: int, title: str, min_players: int = 2, max_players: int = 8,
                   start_deadline: Optional[datetime] = None, turn_passing_algorithm: str = ROUND_ROBIN,
                   allow_player_invites: bool = False, invited_player_ids: Iterable[int] = ()) -> Season:
        cfg = current_app.config
        title = (title or '').strip()
        if not title:
            raise InvalidTransition('Party title is required')
        if min_players < 2 or max_players < min_players or max_players > int(cfg.get('PARTY_MAX_PLAYERS_LIMIT', 50)):
            raise InvalidTransition(f'Invalid player limits: min={min_players} max={max_players}')
        if turn_passing_algorithm not in ALGORITHMS:
            raise InvalidTransition(f'Unknown turn passing algorithm {turn_passing_algorithm!r}')
        if start_deadline is not None and start_deadline <= utcnow():
            raise InvalidTransition('Start deadline must be in the future')
        if not self.can_create_party(creator_id):
            raise InvalidTransition(f'Player {creator_id} already has an open party')

        turn_timeout = cfg.get('PARTY_TURN_TIMEOUT', '7d')
        template = GameConfig(
            min_turns=min_players,
            max_turns=None,
            writing_timeout=turn_timeout,
            drawing_timeout=turn_timeout,
            game_timeout=cfg.get('PARTY_GAME_TIMEOUT', '365d'),
            content_rating='safe',
        )
        now = utcnow()
        party = Season(
            created_by=creator_id,
            title=title,
            min_players=min_players,
            max_players=max_players,
            start_deadline=start_deadline,
            turn_passing_algorithm=turn_passing_algorithm,
            allow_player_invites=allow_player_invites,
            game_config=template,
        )
        party.roster.append(PlayerInSeason(player_id=creator_id, invited_at=now, joined_at=now))
        invited = []
        for player_id in invited_player_ids:
            if player_id == creator_id or player_id in invited:
                continue
            invited.append(player_id)
            party.roster.append(PlayerInSeason(player_id=player_id, invited_at=now))
        db.session.add(party)
        try:
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        current_app.logger.info(f"[party-open] party={party.id} creator={creator_id} invited={invited}")
        self._notify_all(invited, 'party_invitation', {'party_id': party.id, 'title': party.title})
        if start_deadline is not None:
            self.delay.schedule(PartyDeadline(party.id), start_deadline)
        return party

    def invite_players(self, party_id: int, player_ids: Iterable[int], inviting_player_id: int) -> List[int]:
        """Returns the ids that were newly invited. Invites after activation never join running games."""
        party = self.get_party(party_id)
        if party.status not in ('open', 'active'):
            raise InvalidTransition(f'Party {party_id} is {party.status}')
        inviter = next((p for p in party.roster if p.player_id == inviting_player_id), None)
        is_privileged = party.created_by == inviting_player_id or self._is_admin(inviting_player_id)
        if not is_privileged and (inviter is None or inviter.joined_at is None):
            raise PermissionDenied('Only joined players can invite others')
        if not is_privileged and not party.allow_player_invites:
            raise PermissionDenied('Only the party creator or an admin can invite players to this party')

        existing = {p.player_id for p in party.roster}
        now = utcnow()
        added = []
        for player_id in player_ids:
            if player_id in existing:
                continue
            existing.add(player_id)
            added.append(player_id)
            party.roster.append(PlayerInSeason(player_id=player_id, invited_at=now))
        try:
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        current_app.logger.info(f"[party-invite] party={party_id} by={inviting_player_id} added={added}")
        self._notify_all(added, 'party_invitation', {'party_id': party.id, 'title': party.title})
        return added

    def accept_invitation(self, party_id: int, player_id: int) -> Season:
        """Join an open party. Reaching max players starts it immediately."""
        party = self.get_party(party_id)
        row = PlayerInSeason.query.filter_by(season_id=party_id, player_id=player_id).first()
        if row is None:
            raise NotFound(f'Player {player_id} is not invited to party {party_id}')
        if party.status != 'open':
            raise InvalidTransition(f'Party {party_id} is {party.status}, not open')
        if row.joined_at is not None:
            return party
        if self._joined_count(party_id) >= party.max_players:
            raise InvalidTransition(f'Party {party_id} is full')
        try:
            PlayerInSeason.query.filter(
                PlayerInSeason.id == row.id, PlayerInSeason.joined_at.is_(None)
            ).update({PlayerInSeason.joined_at: utcnow()}, synchronize_session=False)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        current_app.logger.info(f"[party-join] party={party_id} player={player_id}")

        if self._joined_count(party_id) >= party.max_players:
            current_app.logger.info(f"[party-full] party={party_id} max players reached, activating")
            self.activate(party_id)
        return self.get_party(party_id)

    # ---- activation ----

    def start_party(self, party_id: int, user_id: int) -> Season:
        """Manual start by the creator or an admin."""
        party = self.get_party(party_id)
        self._require_creator_or_admin(party, user_id, 'start')
        if party.status != 'open':
            raise InvalidTransition(f'Party {party_id} is {party.status}, not open')
        joined = self._joined_count(party_id)
        if joined < party.min_players:
            raise InvalidTransition(f'Party {party_id} needs {party.min_players} players, has {joined}')
        if not self.activate(party_id):
            raise InvalidTransition(f'Party {party_id} was already started')
        return self.get_party(party_id)

    def activate_if_ready(self, party_id: int, now: Optional[datetime] = None) -> bool:
        """Automatic start: max players joined, or deadline passed with min players joined."""
        now = now or utcnow()
        party = db.session.get(Season, party_id)
        if party is None or party.status != 'open':
            current_app.logger.info(f"[party-check] party={party_id} not open, skipping")
            return False
        joined = self._joined_count(party_id)
        if joined >= party.max_players:
            return self.activate(party_id, now)
        deadline_passed = party.start_deadline is not None and party.start_deadline <= now
        if deadline_passed and joined >= party.min_players:
            current_app.logger.info(f"[party-deadline] party={party_id} deadline passed with {joined} players")
            return self.activate(party_id, now)
        if deadline_passed:
            current_app.logger.info(
                f"[party-deadline] party={party_id} deadline passed with {joined}/{party.min_players} players"
            )
        return False

    def activate(self, party_id: int, now: Optional[datetime] = None) -> bool:
        """Freeze the roster and deal one game per member.

        Guarded on status == open so concurrent or repeated calls create
        games at most once. Returns False when another caller got there first.
        """
        now = now or utcnow()
        party = self.get_party(party_id)
        roster = party.joined_player_ids()
        if not roster:
            raise InvalidTransition(f'Party {party_id} has no joined players')

        dealt = []
        try:
            updated = (
                Season.query.filter(Season.id == party_id, Season.status == 'open')
                .update({Season.status: 'active', Season.updated_at: now}, synchronize_session=False)
            )
            if not updated:
                db.session.rollback()
                current_app.logger.info(f"[party-activate-skip] party={party_id} not open")
                return False

            members = Player.query.filter(Player.id.in_(roster)).all()
            all_mature = len(members) == len(roster) and all(not p.hide_mature_content for p in members)
            if all_mature:
                party.game_config.content_rating = 'mature'

            size = len(roster)
            template = party.game_config.copy(
                min_turns=size,
                max_turns=size,
                game_timeout=current_app.config.get('PARTY_GAME_TIMEOUT', '365d'),
            )
            for player_id in roster:
                game = self.lifecycle.create_game(template, season=party, created_at=now, commit=False)
                turn = self.lifecycle.create_turn(player_id, game, created_at=now, commit=False)
                dealt.append((player_id, game, turn))
            db.session.commit()
        except Exception:
            db.session.rollback()
            current_app.logger.error(f"[party-activate-error] party={party_id}", exc_info=True)
            raise

        self.delay.cancel(PartyDeadline(party_id).key)
        for player_id, game, turn in dealt:
            self.lifecycle.schedule_game(game)
            self.lifecycle.schedule_turn(turn)
            self.notifier.notify(player_id, 'party_turn_assigned', {
                'party_id': party_id, 'game_id': game.id, 'turn_id': turn.id,
            })
        current_app.logger.info(
            f"[party-activate] party={party_id} players={roster} rating={'mature' if all_mature else 'safe'}"
        )
        return True

    # ---- turn passing ----

    def completed_turn_counts(self, party_id: int) -> Dict[int, int]:
        rows = (
            db.session.query(Turn.player_id, db.func.count(Turn.id))
            .join(Game, Turn.game_id == Game.id)
            .filter(Game.season_id == party_id, Turn.completed_at.isnot(None), Turn.rejected_at.is_(None))
            .group_by(Turn.player_id)
            .all()
        )
        return {player_id: count for player_id, count in rows}

    def join_order(self, party: Season) -> List[int]:
        joined = [p for p in party.roster if p.joined_at is not None]
        joined.sort(key=lambda p: (p.joined_at, p.id))
        return [p.player_id for p in joined]

    def choose_next_player(self, party: Season, game: Game, completed_player_id: int,
                           roster: List[int]) -> Optional[int]:
        played = {t.player_id for t in game.active_turns()}
        fallback = assign_round_robin(completed_player_id, roster, played)
        if party.turn_passing_algorithm == ROUND_ROBIN:
            return fallback
        if party.turn_passing_algorithm == ALGORITHMIC:
            choice = assign_algorithmic(
                completed_player_id, roster, played,
                self.completed_turn_counts(party.id), self.join_order(party),
            )
            if choice is None:
                current_app.logger.warning(f"[assign-fallback] party={party.id} game={game.id} using round-robin")
                return fallback
            return choice
        current_app.logger.error(
            f"[assign-error] party={party.id} unknown algorithm {party.turn_passing_algorithm!r}, using round-robin"
        )
        return fallback

    def process_turn_completion(self, turn: Turn, game: Game) -> Optional[Turn]:
        """Complete the game at roster size, otherwise hand the next turn out."""
        if not game.is_party:
            return None
        party = game.season
        if party is None or party.status != 'active':
            current_app.logger.warning(f"[assign-skip] game={game.id} party not active")
            return None
        if game.completed_at is not None:
            return None

        roster = party.joined_player_ids()
        completed = game.completed_count()
        if completed >= len(roster):
            current_app.logger.info(f"[party-game-complete] game={game.id} turns={completed} players={len(roster)}")
            self.lifecycle.complete_game(game.id)
            return None
        return self._assign_next(party, game, turn.player_id, roster)

    def _assign_next(self, party: Season, game: Game, anchor_player_id: int, roster: List[int]) -> Optional[Turn]:
        next_player_id = self.choose_next_player(party, game, anchor_player_id, roster)
        if next_player_id is None:
            current_app.logger.error(f"[assign-error] party={party.id} game={game.id} no eligible player")
            return None
        next_turn = self.lifecycle.create_turn(next_player_id, game)
        current_app.logger.info(
            f"[assign] party={party.id} game={game.id} {anchor_player_id} -> {next_player_id} turn={next_turn.id}"
        )
        self.notifier.notify(next_player_id, 'party_turn_assigned', {
            'party_id': party.id, 'game_id': game.id, 'turn_id': next_turn.id,
        })
        return next_turn

    def handle_turn_expired(self, game: Optional[Game], player_id: int, order_index: int) -> Optional[Turn]:
        """Re-deal a lapsed party turn so the game cannot stall."""
        if game is None or not game.is_party or game.deleted_at is not None or game.completed_at is not None:
            return None
        party = game.season
        if party is None or party.status != 'active':
            return None
        if game.turns.filter(Turn.completed_at.is_(None), Turn.rejected_at.is_(None)).count():
            return None
        last = (
            game.turns.filter(Turn.completed_at.isnot(None), Turn.rejected_at.is_(None))
            .order_by(None).order_by(Turn.order_index.desc())
            .first()
        )
        if last is None:
            return None
        current_app.logger.info(f"[assign-lapsed] game={game.id} player={player_id} index={order_index}")
        return self._assign_next(party, game, last.player_id, party.joined_player_ids())

    # ---- completion & cancellation ----

    def handle_game_completed(self, game: Game) -> None:
        if game.season_id is not None:
            self.check_party_completion(game.season_id)

    def handle_game_deleted(self, game: Game) -> None:
        if game is not None and game.season_id is not None:
            self.check_party_completion(game.season_id)

    def check_party_completion(self, party_id: int) -> bool:
        """Active party whose every live game is completed becomes completed."""
        party = db.session.get(Season, party_id)
        if party is None or party.status != 'active':
            return False
        live = [g for g in party.games if g.deleted_at is None]
        if not live or any(g.completed_at is None for g in live):
            return False
        try:
            updated = (
                Season.query.filter(Season.id == party_id, Season.status == 'active')
                .update({Season.status: 'completed', Season.updated_at: utcnow()}, synchronize_session=False)
            )
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        if not updated:
            return False
        party = db.session.get(Season, party_id)
        current_app.logger.info(f"[party-complete] party={party_id} games={len(live)}")
        self._notify_all(party.joined_player_ids(), 'party_completed', {'party_id': party_id, 'title': party.title})
        return True

    def cancel_party(self, party_id: int, user_id: int) -> None:
        """Close the party, soft-delete its games and remove the party itself."""
        party = self.get_party(party_id)
        self._require_creator_or_admin(party, user_id, 'cancel')
        if party.status not in ('open', 'active'):
            raise InvalidTransition(f'Party {party_id} is {party.status} and cannot be cancelled')
        title = party.title
        member_ids = [p.player_id for p in party.roster]
        game_ids = [g.id for g in party.games if g.deleted_at is None]

        try:
            updated = (
                Season.query.filter(Season.id == party_id, Season.status.in_(('open', 'active')))
                .update({Season.status: 'closed', Season.updated_at: utcnow()}, synchronize_session=False)
            )
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        if not updated:
            raise InvalidTransition(f'Party {party_id} was already cancelled or completed')

        self.delay.cancel(PartyDeadline(party_id).key)
        for game_id in game_ids:
            self.lifecycle.soft_delete_game(game_id)

        try:
            Game.query.filter(Game.season_id == party_id).update({Game.season_id: None}, synchronize_session=False)
            PlayerInSeason.query.filter(PlayerInSeason.season_id == party_id).delete(synchronize_session=False)
            config_id = party.game_config_id
            Season.query.filter(Season.id == party_id).delete(synchronize_session=False)
            GameConfig.query.filter(GameConfig.id == config_id).delete(synchronize_session=False)
            db.session.commit()
        except Exception:
            db.session.rollback()
            current_app.logger.error(f"[party-cancel-error] party={party_id}", exc_info=True)
            raise

        current_app.logger.info(f"[party-cancel] party={party_id} by={user_id} games={game_ids}")
        self._notify_all(member_ids, 'party_cancelled', {'party_id': party_id, 'title': title})

    # ---- reads ----

    def party_details(self, party_id: int, user_id: int) -> dict:
        """Party summary for its invitees, its creator and admins.

        Non-admins only see games once the party has completed, and then only
        the games that pass the normal visibility rule.
        """
        party = self.get_party(party_id)
        is_admin = self._is_admin(user_id)
        invited = any(p.player_id == user_id for p in party.roster)
        if not invited and party.created_by != user_id and not is_admin:
            raise PermissionDenied(f'Player {user_id} is not part of party {party_id}')

        payload = party.to_dict()
        if is_admin:
            payload['games'] = [g.to_dict() for g in party.games if g.deleted_at is None]
        elif party.status == 'completed':
            visible = (self.lifecycle.find_game(g.id) for g in party.games)
            payload['games'] = [g.to_dict() for g in visible if g is not None]
        else:
            payload['games'] = []
        return payload

    def active_parties_for_player(self, player_id: int) -> List[dict]:
        rows = (
            PlayerInSeason.query.join(Season, PlayerInSeason.season_id == Season.id)
            .filter(
                PlayerInSeason.player_id == player_id,
                PlayerInSeason.joined_at.isnot(None),
                Season.status.in_(('open', 'active')),
            )
            .all()
        )
        parties = []
        for row in rows:
            party = row.season
            pending = (
                Turn.query.join(Game, Turn.game_id == Game.id)
                .filter(
                    Game.season_id == party.id,
                    Turn.player_id == player_id,
                    Turn.completed_at.is_(None),
                    Turn.rejected_at.is_(None),
                )
                .count()
            )
            parties.append({
                'id': party.id,
                'title': party.title,
                'status': party.status,
                'player_count': len(party.joined_player_ids()),
                'has_pending_turn': pending > 0,
            })
        return parties
