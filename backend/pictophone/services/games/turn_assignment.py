from typing import Dict, Iterable, List, Optional

ROUND_ROBIN = 'round-robin'
ALGORITHMIC = 'algorithmic'
ALGORITHMS = (ROUND_ROBIN, ALGORITHMIC)


def assign_round_robin(completed_player_id: int, roster: List[int], played: Iterable[int]) -> Optional[int]:
    """Next player after the completer in fixed cyclic roster order.

    Players already represented in the game are skipped. Returns None when
    the completer is not on the roster or everyone has played.
    """
    if completed_player_id not in roster:
        return None
    played = set(played)
    start = roster.index(completed_player_id)
    for step in range(1, len(roster)):
        candidate = roster[(start + step) % len(roster)]
        if candidate not in played:
            return candidate
    return None


def assign_algorithmic(completed_player_id: int, roster: List[int], played: Iterable[int],
                       completed_counts: Dict[int, int], join_order: Optional[List[int]] = None) -> Optional[int]:
    """Player with the fewest completed turns across the party, among those not yet in this game.

    Ties go to whoever joined first. The completer is never picked.
    """
    played = set(played)
    join_order = join_order or roster
    eligible = [p for p in roster if p not in played and p != completed_player_id]
    if not eligible:
        return None

    def rank(player_id):
        position = join_order.index(player_id) if player_id in join_order else len(join_order)
        return completed_counts.get(player_id, 0), position

    return min(eligible, key=rank)
