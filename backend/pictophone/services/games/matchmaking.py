from typing import Dict, List, Optional

from flask import current_app

from pictophone import db
from pictophone.errors import AlreadyPending, InvalidTransition
from pictophone.models import Game, GameConfig, Turn, TurnFlag

CONTENT_RATINGS = ('safe', 'mature')
DESIRED_TYPES = ('first', 'writing', 'drawing')


def fetch_default_game_config() -> GameConfig:
    """The shared ``default`` config row, created from app config on first use."""
    config = GameConfig.query.filter_by(name='default').first()
    if config is None:
        cfg = current_app.config
        max_turns = int(cfg.get('DEFAULT_MAX_TURNS') or 0)
        config = GameConfig(
            name='default',
            min_turns=int(cfg.get('DEFAULT_MIN_TURNS', 6)),
            max_turns=max_turns or None,
            writing_timeout=cfg.get('WRITING_TIMEOUT', '10m'),
            drawing_timeout=cfg.get('DRAWING_TIMEOUT', '30m'),
            game_timeout=cfg.get('GAME_TIMEOUT', '3d'),
            content_rating='safe',
        )
        db.session.add(config)
        db.session.commit()
    return config


def next_turn_is_drawing(completed_count: int) -> bool:
    return completed_count % 2 == 1


class Matchmaker:
    """Finds an open game for a player or starts a new one.

    A game is joinable only when every turn in it has landed, so two players
    are never routed to the same empty slot. Among several joinable games the
    pick is arbitrary.
    """

    def __init__(self, lifecycle):
        self.lifecycle = lifecycle

    def candidate_games(self, player_id: int, content_rating: Optional[str] = None) -> List[Game]:
        query = Game.query.filter(
            Game.completed_at.is_(None),
            Game.deleted_at.is_(None),
            Game.season_id.is_(None),
            # never played here
            ~Game.turns.any(Turn.player_id == player_id),
            # every live turn has landed
            ~Game.turns.any(db.and_(Turn.completed_at.is_(None), Turn.rejected_at.is_(None))),
            # nothing under an open flag
            ~Game.turns.any(Turn.flags.any(TurnFlag.resolved_at.is_(None))),
            # nothing this player objected to
            ~Game.turns.any(Turn.flags.any(TurnFlag.player_id == player_id)),
        )
        if content_rating is not None:
            query = query.filter(Game.config.has(GameConfig.content_rating == content_rating))
        return query.order_by(Game.created_at, Game.id).all()

    def find_open_game(self, player_id: int, desired_type: Optional[str] = None,
                       content_rating: Optional[str] = None) -> Optional[Game]:
        for candidate in self.candidate_games(player_id, content_rating):
            completed = candidate.completed_count()
            max_turns = candidate.config.max_turns
            if max_turns and completed >= max_turns:
                continue
            drawing_next = next_turn_is_drawing(completed)
            if desired_type is None:
                return candidate
            if desired_type == 'writing' and not drawing_next:
                return candidate
            if desired_type == 'drawing' and drawing_next:
                return candidate
        return None

    def find_or_create_turn(self, player_id: int, desired_type: Optional[str] = None,
                            content_rating: Optional[str] = None) -> Turn:
        """Attach a new turn for ``player_id`` to an open game, creating one if needed.

        ``desired_type`` of ``'first'`` always starts a new game.
        """
        if desired_type is not None and desired_type not in DESIRED_TYPES:
            raise InvalidTransition(f'Unknown turn type {desired_type!r}')
        if content_rating is not None and content_rating not in CONTENT_RATINGS:
            raise InvalidTransition(f'Unknown content rating {content_rating!r}')

        pending = self.lifecycle.pending_turns_for_player(player_id)
        if pending:
            raise AlreadyPending(
                f'Player {player_id} already has a pending turn',
                turn_id=pending[0].id,
                game_id=pending[0].game_id,
            )

        game = None
        if desired_type != 'first':
            game = self.find_open_game(player_id, desired_type, content_rating)

        if game is not None:
            current_app.logger.info(f"[match] player={player_id} joins game={game.id}")
        else:
            current_app.logger.info(
                f"[match] player={player_id} no open game (type={desired_type} rating={content_rating}), creating one"
            )
            template = fetch_default_game_config()
            if content_rating is not None and content_rating != template.content_rating:
                template = template.copy(content_rating=content_rating)
            game = self.lifecycle.create_game(template)

        return self.lifecycle.create_turn(player_id, game)

    def available_game_types(self, player_id: int) -> Dict[str, bool]:
        """Which (turn type, rating) combinations a player could join right now."""
        result = {
            'writing_safe': False,
            'writing_mature': False,
            'drawing_safe': False,
            'drawing_mature': False,
        }
        for candidate in self.candidate_games(player_id):
            completed = candidate.completed_count()
            max_turns = candidate.config.max_turns
            if max_turns and completed >= max_turns:
                continue
            turn_type = 'drawing' if next_turn_is_drawing(completed) else 'writing'
            result[f'{turn_type}_{candidate.config.content_rating}'] = True
        return result
