import pytest

from pictophone.errors import AlreadyPending, InvalidTransition
from pictophone.models import Game, GameConfig, Turn


def test_first_request_creates_game_with_writing_turn(services, make_player):
    alice = make_player()
    turn = services.matchmaker.find_or_create_turn(alice.id)

    assert turn.order_index == 0
    assert turn.is_drawing is False
    assert turn.content == ''
    assert turn.status == 'pending'
    game = turn.game
    assert game.season_id is None
    assert (game.expires_at - game.created_at).total_seconds() == 3600
    assert (turn.expires_at - turn.created_at).total_seconds() == 5
    assert services.delay.pending(f'turn-{turn.id}') is not None
    assert services.delay.pending(f'game-{game.id}') is not None


def test_game_gets_its_own_config_snapshot(services, make_player):
    turn = services.matchmaker.find_or_create_turn(make_player().id)
    default = GameConfig.query.filter_by(name='default').one()
    assert turn.game.config_id != default.id
    assert turn.game.config.min_turns == 2
    assert turn.game.config.max_turns == 4


def test_second_request_while_pending_fails(services, make_player):
    alice = make_player()
    turn = services.matchmaker.find_or_create_turn(alice.id)
    with pytest.raises(AlreadyPending) as excinfo:
        services.matchmaker.find_or_create_turn(alice.id)
    assert excinfo.value.details['turn_id'] == turn.id
    assert Turn.query.filter_by(player_id=alice.id).count() == 1


def test_second_player_joins_game_with_drawing_turn(services, make_player, play):
    alice, bob = make_player(), make_player()
    first = services.matchmaker.find_or_create_turn(alice.id)
    play(first)

    second = services.matchmaker.find_or_create_turn(bob.id)
    assert second.game_id == first.game_id
    assert second.order_index == 1
    assert second.is_drawing is True


def test_game_with_pending_turn_is_not_joinable(services, make_player):
    alice, bob = make_player(), make_player()
    first = services.matchmaker.find_or_create_turn(alice.id)
    second = services.matchmaker.find_or_create_turn(bob.id)
    assert second.game_id != first.game_id
    assert second.order_index == 0


def test_player_never_rejoins_a_game_they_played(services, make_player, play):
    alice, bob = make_player(), make_player()
    first = services.matchmaker.find_or_create_turn(alice.id)
    play(first)
    play(services.matchmaker.find_or_create_turn(bob.id))

    again = services.matchmaker.find_or_create_turn(alice.id)
    assert again.game_id != first.game_id


def test_desired_type_filters_by_next_slot(services, make_player, play):
    alice, bob, cara = make_player(), make_player(), make_player()
    first = services.matchmaker.find_or_create_turn(alice.id)
    play(first)

    # the open game needs a drawing next
    writing = services.matchmaker.find_or_create_turn(bob.id, 'writing')
    assert writing.game_id != first.game_id
    drawing = services.matchmaker.find_or_create_turn(cara.id, 'drawing')
    assert drawing.game_id == first.game_id
    assert drawing.is_drawing is True


def test_first_always_starts_a_new_game(services, make_player, play):
    alice, bob = make_player(), make_player()
    play(services.matchmaker.find_or_create_turn(alice.id))
    turn = services.matchmaker.find_or_create_turn(bob.id, 'first')
    assert turn.order_index == 0
    assert Game.query.count() == 2


def test_content_rating_is_matched(services, make_player, play):
    alice, bob, cara = make_player(), make_player(), make_player()
    mature = services.matchmaker.find_or_create_turn(alice.id, content_rating='mature')
    assert mature.game.config.content_rating == 'mature'
    assert GameConfig.query.filter_by(name='default').one().content_rating == 'safe'
    play(mature)

    safe = services.matchmaker.find_or_create_turn(bob.id, content_rating='safe')
    assert safe.game_id != mature.game_id
    joined = services.matchmaker.find_or_create_turn(cara.id, content_rating='mature')
    assert joined.game_id == mature.game_id


def test_open_flag_hides_game_until_resolved(services, make_player, play):
    alice, bob, cara, dan, erin = (make_player() for _ in range(5))
    first = services.matchmaker.find_or_create_turn(alice.id)
    game_id = first.game_id
    play(first)
    second = services.matchmaker.find_or_create_turn(bob.id)
    play(second)

    flag = services.flags.flag_turn(second.id, cara.id, 'offensive')
    assert services.matchmaker.find_or_create_turn(dan.id).game_id != game_id

    services.flags.dismiss_flag(flag.id)
    assert services.matchmaker.find_or_create_turn(erin.id).game_id == game_id


def test_flagger_is_never_routed_back(services, make_player, play):
    alice, cara = make_player(), make_player()
    first = services.matchmaker.find_or_create_turn(alice.id)
    play(first)
    flag = services.flags.flag_turn(first.id, cara.id, 'spam')
    services.flags.dismiss_flag(flag.id)

    assert services.matchmaker.find_or_create_turn(cara.id).game_id != first.game_id


def test_pick_among_candidates_is_arbitrary(services, make_player, play):
    """Any joinable game may be chosen; only membership is guaranteed."""
    alice, bob, cara = make_player(), make_player(), make_player()
    first = services.matchmaker.find_or_create_turn(alice.id)
    play(first)
    other = services.matchmaker.find_or_create_turn(bob.id, 'first')
    play(other)

    turn = services.matchmaker.find_or_create_turn(cara.id)
    assert turn.game_id in {first.game_id, other.game_id}


def test_party_games_are_never_matched(services, make_player):
    alice, bob, cara = make_player(), make_player(), make_player()
    party = services.parties.open_party(alice.id, 'Friends', min_players=2, max_players=2,
                                        invited_player_ids=[bob.id])
    services.parties.accept_invitation(party.id, bob.id)

    turn = services.matchmaker.find_or_create_turn(cara.id)
    assert turn.game.season_id is None


def test_party_turn_counts_as_pending(services, make_player):
    alice, bob = make_player(), make_player()
    party = services.parties.open_party(alice.id, 'Friends', min_players=2, max_players=2,
                                        invited_player_ids=[bob.id])
    services.parties.accept_invitation(party.id, bob.id)

    with pytest.raises(AlreadyPending):
        services.matchmaker.find_or_create_turn(alice.id)


def test_unknown_type_is_rejected(services, make_player):
    with pytest.raises(InvalidTransition):
        services.matchmaker.find_or_create_turn(make_player().id, 'painting')
    with pytest.raises(InvalidTransition):
        services.matchmaker.find_or_create_turn(make_player().id, content_rating='spicy')


def test_available_game_types(services, make_player, play):
    alice, bob = make_player(), make_player()
    assert not any(services.matchmaker.available_game_types(bob.id).values())

    play(services.matchmaker.find_or_create_turn(alice.id))
    available = services.matchmaker.available_game_types(bob.id)
    assert available == {
        'writing_safe': False,
        'writing_mature': False,
        'drawing_safe': True,
        'drawing_mature': False,
    }
    # alice already played there
    assert not any(services.matchmaker.available_game_types(alice.id).values())
