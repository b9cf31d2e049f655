from pictophone.services.games.turn_assignment import assign_algorithmic, assign_round_robin

ROSTER = [1, 2, 3, 4]


def test_round_robin_picks_next_in_roster():
    assert assign_round_robin(1, ROSTER, {1}) == 2
    assert assign_round_robin(4, ROSTER, {4}) == 1


def test_round_robin_skips_players_in_the_game():
    assert assign_round_robin(1, ROSTER, {1, 2}) == 3
    assert assign_round_robin(3, ROSTER, {3, 4, 1}) == 2


def test_round_robin_gives_up_when_everyone_played():
    assert assign_round_robin(2, ROSTER, set(ROSTER)) is None


def test_round_robin_requires_completer_on_roster():
    assert assign_round_robin(99, ROSTER, set()) is None


def test_algorithmic_prefers_fewest_completed_turns():
    counts = {1: 3, 2: 2, 3: 0, 4: 1}
    assert assign_algorithmic(1, ROSTER, {1}, counts) == 3


def test_algorithmic_breaks_ties_by_join_order():
    counts = {1: 1, 2: 0, 3: 0, 4: 0}
    assert assign_algorithmic(1, ROSTER, {1}, counts) == 2
    assert assign_algorithmic(1, ROSTER, {1}, counts, join_order=[1, 4, 3, 2]) == 4


def test_algorithmic_never_picks_completer_or_repeat():
    counts = {1: 0, 2: 5, 3: 5, 4: 5}
    # player 1 has the fewest turns but just completed one
    assert assign_algorithmic(1, ROSTER, {2}, counts) in {3, 4}


def test_algorithmic_returns_none_without_candidates():
    assert assign_algorithmic(1, ROSTER, {1, 2, 3, 4}, {}) is None
