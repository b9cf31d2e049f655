import pytest

from pictophone import db
from pictophone.errors import AlreadyResolved, InvalidTransition, NotFound
from pictophone.models import Notification, Turn


@pytest.fixture()
def played_game(services, make_player, play):
    """Two landed turns and a third player's pending turn."""
    first = services.matchmaker.find_or_create_turn(make_player().id)
    play(first)
    second = services.matchmaker.find_or_create_turn(make_player().id)
    play(second)
    third = services.matchmaker.find_or_create_turn(make_player().id)
    return first, second, third


def test_only_completed_turns_can_be_flagged(services, make_player, played_game):
    _, _, pending = played_game
    with pytest.raises(InvalidTransition):
        services.flags.flag_turn(pending.id, make_player().id, 'spam')
    with pytest.raises(NotFound):
        services.flags.flag_turn(4242, make_player().id, 'spam')


def test_unknown_reason_is_rejected(services, make_player, played_game):
    first, _, _ = played_game
    with pytest.raises(InvalidTransition):
        services.flags.flag_turn(first.id, make_player().id, 'boring')


def test_flag_removes_later_pending_turns(services, make_player, played_game):
    first, _, pending = played_game
    pending_id = pending.id
    admin = make_player(is_admin=True)

    flag = services.flags.flag_turn(first.id, make_player().id, 'offensive', 'not nice')
    assert flag.resolved_at is None
    assert Turn.query.filter_by(id=pending_id).count() == 0
    assert services.delay.pending(f'turn-{pending_id}') is None
    assert Notification.query.filter_by(user_id=admin.id, type='admin_flag').count() == 1


def test_one_open_flag_per_player(services, make_player, played_game):
    first, second, _ = played_game
    flagger = make_player()
    services.flags.flag_turn(first.id, flagger.id, 'spam')
    with pytest.raises(InvalidTransition):
        services.flags.flag_turn(second.id, flagger.id, 'spam')


def test_dismiss_flag(services, make_player, played_game):
    first, _, _ = played_game
    flag = services.flags.flag_turn(first.id, make_player().id, 'spam')

    dismissed = services.flags.dismiss_flag(flag.id)
    assert dismissed.resolved_at is not None
    assert db.session.get(Turn, first.id).rejected_at is None
    with pytest.raises(AlreadyResolved):
        services.flags.dismiss_flag(flag.id)


def test_confirm_flag_rejects_turn(services, make_player, played_game):
    _, second, _ = played_game
    flag = services.flags.flag_turn(second.id, make_player().id, 'offensive')

    services.flags.confirm_flag(flag.id)
    turn = db.session.get(Turn, second.id)
    assert turn.status == 'rejected'
    assert Notification.query.filter_by(user_id=turn.player_id, type='turn_rejected').count() == 1
    with pytest.raises(AlreadyResolved):
        services.flags.confirm_flag(flag.id)


def test_resolving_missing_flag(services):
    with pytest.raises(NotFound):
        services.flags.dismiss_flag(77)
