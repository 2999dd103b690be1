"""
Seat arithmetic around the table.

Neighbors are looked up in the seat-ordered list of seated players. `next`
skips inactive seats by default while `previous` keeps them; callers that
need the other behavior pass ignore_inactive explicitly.
"""
from typing import List, Optional

from services.game_models import Direction, GameContext


def seated_player_ids(ctx: GameContext, ignore_inactive: bool = True) -> List[int]:
    return [player.player_id for player in ctx.seated_players(ignore_inactive=ignore_inactive)]


def _neighbor(ctx: GameContext, relative_to: Optional[int], step: int, ignore_inactive: bool) -> Optional[int]:
    if relative_to is None:
        relative_to = ctx.state.current_step_player_id

    ids = seated_player_ids(ctx, ignore_inactive)
    if not ids:
        return None

    if ctx.state.direction == Direction.COUNTER_CLOCKWISE:
        step = -step

    index = ids.index(relative_to) if relative_to in ids else -1
    target = index + step
    if 0 <= target < len(ids):
        return ids[target]
    # Wrap around the table
    return ids[0] if step > 0 else ids[-1]


def next_player_id(ctx: GameContext, relative_to: Optional[int] = None,
                   ignore_inactive: bool = True) -> Optional[int]:
    """Seat that plays after relative_to (the current seat by default)"""
    return _neighbor(ctx, relative_to, 1, ignore_inactive)


def previous_player_id(ctx: GameContext, relative_to: Optional[int] = None,
                       ignore_inactive: bool = False) -> Optional[int]:
    """Seat that played before relative_to (the current seat by default)"""
    return _neighbor(ctx, relative_to, -1, ignore_inactive)


def nth_next_player_id(ctx: GameContext, count: int, relative_to: Optional[int] = None) -> Optional[int]:
    player_id = relative_to
    for _ in range(count):
        player_id = next_player_id(ctx, player_id)
    return player_id


def nth_previous_player_id(ctx: GameContext, count: int, relative_to: Optional[int] = None) -> Optional[int]:
    player_id = relative_to
    for _ in range(count):
        player_id = previous_player_id(ctx, player_id)
    return player_id
