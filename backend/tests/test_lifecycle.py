import pytest

from pictophone import db
from pictophone.errors import AlreadyCompleted, InvalidTransition, NotFound
from pictophone.models import Game, Notification, Turn


def _fill_game(services, make_player, play, completed):
    """A fresh open game with ``completed`` landed turns by distinct players."""
    turns = []
    for _ in range(completed):
        turn = services.matchmaker.find_or_create_turn(make_player().id)
        play(turn)
        turns.append(turn)
    return turns


def test_complete_turn_stores_content_and_cancels_timer(services, make_player):
    turn = services.matchmaker.find_or_create_turn(make_player().id)
    done = services.lifecycle.complete_turn(turn.id, 'writing', 'a cat on a skateboard')

    assert done.content == 'a cat on a skateboard'
    assert done.completed_at is not None
    assert done.expires_at is None
    assert done.status == 'completed'
    assert services.delay.pending(f'turn-{turn.id}') is None


def test_complete_turn_type_must_match(services, make_player):
    turn = services.matchmaker.find_or_create_turn(make_player().id)
    with pytest.raises(InvalidTransition):
        services.lifecycle.complete_turn(turn.id, 'drawing', 'data:image/png;base64,xyz')
    assert db.session.get(Turn, turn.id).completed_at is None


def test_complete_turn_twice_fails_and_keeps_content(services, make_player):
    turn = services.matchmaker.find_or_create_turn(make_player().id)
    services.lifecycle.complete_turn(turn.id, 'writing', 'first answer')
    with pytest.raises(AlreadyCompleted):
        services.lifecycle.complete_turn(turn.id, 'writing', 'second answer')
    assert db.session.get(Turn, turn.id).content == 'first answer'


def test_complete_missing_turn(services):
    with pytest.raises(NotFound):
        services.lifecycle.complete_turn(12345, 'writing', 'hello')


def test_complete_turn_on_deleted_game(services, make_player):
    turn = services.matchmaker.find_or_create_turn(make_player().id)
    turn_id = turn.id
    services.lifecycle.soft_delete_game(turn.game_id)
    with pytest.raises(NotFound):
        services.lifecycle.complete_turn(turn_id, 'writing', 'too late')


def test_game_completes_at_max_turns(services, make_player, play):
    turns = _fill_game(services, make_player, play, 3)
    game_id = turns[0].game_id
    assert db.session.get(Game, game_id).completed_at is None

    last_player = make_player()
    last = services.matchmaker.find_or_create_turn(last_player.id)
    assert last.game_id == game_id
    play(last)

    game = db.session.get(Game, game_id)
    assert game.completed_at is not None
    assert services.delay.pending(f'game-{game_id}') is None
    notified = {n.user_id for n in Notification.query.filter_by(type='game_completion').all()}
    assert notified == {t.player_id for t in turns} | {last_player.id}


def test_completion_notifications_fire_once(services, make_player, play):
    turns = _fill_game(services, make_player, play, 2)
    game_id = turns[0].game_id
    services.lifecycle.complete_game(game_id)
    services.lifecycle.complete_game(game_id)
    assert Notification.query.filter_by(type='game_completion').count() == 2


def test_complete_game_is_idempotent(services, make_player, play):
    turns = _fill_game(services, make_player, play, 2)
    first = services.lifecycle.complete_game(turns[0].game_id).completed_at
    second = services.lifecycle.complete_game(turns[0].game_id).completed_at
    assert first == second


def test_complete_deleted_game_is_not_found(services, make_player):
    turn = services.matchmaker.find_or_create_turn(make_player().id)
    game_id = turn.game_id
    services.lifecycle.soft_delete_game(game_id)
    with pytest.raises(NotFound):
        services.lifecycle.complete_game(game_id)


def test_soft_delete_keeps_completed_turns(services, make_player, play):
    turns = _fill_game(services, make_player, play, 2)
    game_id = turns[0].game_id
    pending = services.matchmaker.find_or_create_turn(make_player().id)
    pending_id = pending.id
    assert pending.game_id == game_id

    game = services.lifecycle.soft_delete_game(game_id)
    assert game.deleted_at is not None
    assert Turn.query.filter_by(id=pending_id).count() == 0
    assert Turn.query.filter_by(game_id=game_id).count() == 2
    assert services.delay.pending(f'turn-{pending_id}') is None
    assert services.delay.pending(f'game-{game_id}') is None
    assert services.lifecycle.find_game(game_id) is None
    assert services.lifecycle.find_game_admin(game_id) is not None


def test_soft_delete_twice_is_a_no_op(services, make_player):
    turn = services.matchmaker.find_or_create_turn(make_player().id)
    game_id = turn.game_id
    first = services.lifecycle.soft_delete_game(game_id).deleted_at
    assert services.lifecycle.soft_delete_game(game_id).deleted_at == first


def test_find_game_hides_open_flags(services, make_player, play):
    turns = _fill_game(services, make_player, play, 2)
    game_id = turns[0].game_id
    assert services.lifecycle.find_game(game_id) is not None

    flag = services.flags.flag_turn(turns[1].id, make_player().id, 'spam')
    assert services.lifecycle.find_game(game_id) is None
    services.flags.dismiss_flag(flag.id)
    assert services.lifecycle.find_game(game_id) is not None


def test_find_game_hides_unfinished_party_games(services, make_player):
    alice, bob = make_player(), make_player()
    party = services.parties.open_party(alice.id, 'Friends', max_players=2, invited_player_ids=[bob.id])
    services.parties.accept_invitation(party.id, bob.id)
    game = Game.query.filter_by(season_id=party.id).first()
    assert services.lifecycle.find_game(game.id) is None
    assert services.lifecycle.find_game_admin(game.id) is not None


def test_reject_turn_keeps_positions_contiguous(services, make_player, play):
    turns = _fill_game(services, make_player, play, 3)
    game_id = turns[0].game_id

    services.lifecycle.reject_turn(turns[1].id)
    game = db.session.get(Game, game_id)
    assert [t.order_index for t in game.active_turns()] == [0, 1]
    assert [t.id for t in game.active_turns()] == [turns[0].id, turns[2].id]

    follow_up = services.matchmaker.find_or_create_turn(make_player().id)
    assert follow_up.game_id == game_id
    assert follow_up.order_index == 2
    assert follow_up.is_drawing is False


def test_reject_turn_twice(services, make_player, play):
    turns = _fill_game(services, make_player, play, 1)
    services.lifecycle.reject_turn(turns[0].id)
    with pytest.raises(InvalidTransition):
        services.lifecycle.reject_turn(turns[0].id)


def test_completing_rejected_turn_fails(services, make_player):
    turn = services.matchmaker.find_or_create_turn(make_player().id)
    services.lifecycle.reject_turn(turn.id)
    with pytest.raises(InvalidTransition):
        services.lifecycle.complete_turn(turn.id, 'writing', 'hello')


def test_pending_turns_for_player(services, make_player):
    alice = make_player()
    assert services.lifecycle.pending_turns_for_player(alice.id) == []
    turn = services.matchmaker.find_or_create_turn(alice.id)
    assert [t.id for t in services.lifecycle.pending_turns_for_player(alice.id)] == [turn.id]
    assert services.lifecycle.pending_turns_for_player(alice.id, party_only=True) == []


def test_hook_failure_does_not_undo_completion(services, make_player):
    calls = []

    @services.lifecycle.on_turn_completed
    def broken(turn, game):
        calls.append(turn.id)
        raise RuntimeError('listener exploded')

    turn = services.matchmaker.find_or_create_turn(make_player().id)
    services.lifecycle.complete_turn(turn.id, 'writing', 'still saved')
    assert calls == [turn.id]
    assert db.session.get(Turn, turn.id).content == 'still saved'
