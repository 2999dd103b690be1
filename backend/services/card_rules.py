"""
Card-action configuration.

Every per-action rule the engine consults lives here as data: catalog counts,
minimum player gates, who a card can be aimed at, which phase a revealed panic
card opens, and which defence answers which attack.
"""
from enum import Enum
from typing import Dict, FrozenSet, NamedTuple, Optional

from services.game_models import CardAction, StepPhase

EVENT_DRAWS = 87
PANIC_DRAWS = 20


class CardRule(NamedTuple):
    max_quantity: int
    min_players: int


CARD_RULES: Dict[CardAction, CardRule] = {
    CardAction.FLAMETHROWER: CardRule(5, 4),
    CardAction.PERSISTENCE: CardRule(5, 6),
    CardAction.WHISKEY: CardRule(3, 4),
    CardAction.SWAP_PLACES: CardRule(5, 11),
    CardAction.RUN_AWAY: CardRule(5, 11),
    CardAction.SUSPICION: CardRule(8, 4),
    CardAction.ANALYSIS: CardRule(3, 5),
    CardAction.TEMPTATION: CardRule(7, 7),
    CardAction.LOOK_AROUND: CardRule(2, 9),
    CardAction.AXE: CardRule(2, 9),
    CardAction.IT: CardRule(1, 4),
    CardAction.INFECTION_1: CardRule(5, 4),
    CardAction.INFECTION_2: CardRule(5, 4),
    CardAction.INFECTION_3: CardRule(5, 4),
    CardAction.INFECTION_4: CardRule(5, 4),
    CardAction.FEAR: CardRule(4, 8),
    CardAction.GOOD_HERE: CardRule(3, 11),
    CardAction.NO_BARBECUE: CardRule(3, 6),
    CardAction.MISS: CardRule(3, 11),
    CardAction.NO_THANKS: CardRule(4, 4),
    CardAction.QUARANTINE: CardRule(2, 5),
    CardAction.LOCKED_DOOR: CardRule(3, 4),
    CardAction.FRIENDS: CardRule(2, 7),
    CardAction.OLD_ROPES: CardRule(2, 9),
    CardAction.BETWEEN_US: CardRule(2, 7),
    CardAction.IS_IT_PARTY: CardRule(2, 9),
    CardAction.ONE_TWO: CardRule(2, 5),
    CardAction.THREE_FOUR: CardRule(2, 9),
    CardAction.BLIND_DATE: CardRule(2, 9),
    CardAction.CHAIN_REACTION: CardRule(2, 4),
    CardAction.FORGETFULNESS: CardRule(1, 4),
    CardAction.GO_AWAY: CardRule(1, 5),
    CardAction.OOPS: CardRule(1, 10),
    CardAction.CONFESSION_TIME: CardRule(1, 8),
}


class TargetGroup(Enum):
    """Which seats a card may be aimed at, relative to the acting seat"""
    NONE = "none"
    ALL = "all"
    OTHERS = "others"
    NEIGHBORS = "neighbors"
    NEIGHBORS_AND_SELF = "neighbors_and_self"
    THIRD_NEIGHBORS = "third_neighbors"
    OBSTRUCTED = "obstructed"
    BLOCKED = "blocked"


class Targeting(NamedTuple):
    group: TargetGroup
    ignore_locked_doors: bool = False
    ignore_self_quarantine: bool = False
    # Skip the can_exchange filter entirely
    unfiltered: bool = False


DEFAULT_TARGETING = Targeting(TargetGroup.ALL)

HAND_PLAY_TARGETS: Dict[CardAction, Targeting] = {
    CardAction.LOCKED_DOOR: Targeting(TargetGroup.NEIGHBORS),
    CardAction.FLAMETHROWER: Targeting(TargetGroup.NEIGHBORS),
    CardAction.ANALYSIS: Targeting(TargetGroup.NEIGHBORS),
    CardAction.SUSPICION: Targeting(TargetGroup.NEIGHBORS),
    CardAction.QUARANTINE: Targeting(TargetGroup.NEIGHBORS_AND_SELF),
    CardAction.RUN_AWAY: Targeting(TargetGroup.NONE),
    CardAction.SWAP_PLACES: Targeting(TargetGroup.NONE),
    CardAction.WHISKEY: Targeting(TargetGroup.NONE),
    CardAction.LOOK_AROUND: Targeting(TargetGroup.NONE),
    CardAction.PERSISTENCE: Targeting(TargetGroup.NONE),
    CardAction.AXE: Targeting(TargetGroup.NONE),
    CardAction.TEMPTATION: Targeting(TargetGroup.OTHERS),
}

TABLE_PLAY_TARGETS: Dict[CardAction, Targeting] = {
    CardAction.RUN_AWAY: Targeting(TargetGroup.OTHERS, ignore_locked_doors=True, ignore_self_quarantine=True),
    CardAction.GO_AWAY: Targeting(TargetGroup.OTHERS, ignore_locked_doors=True, ignore_self_quarantine=True),
    CardAction.LOOK_AROUND: Targeting(TargetGroup.NONE),
    CardAction.OLD_ROPES: Targeting(TargetGroup.NONE),
    CardAction.IS_IT_PARTY: Targeting(TargetGroup.NONE),
    CardAction.OOPS: Targeting(TargetGroup.NONE),
    CardAction.THREE_FOUR: Targeting(TargetGroup.NONE),
    CardAction.AXE: Targeting(TargetGroup.OBSTRUCTED, unfiltered=True),
    CardAction.SWAP_PLACES: Targeting(TargetGroup.NEIGHBORS, ignore_self_quarantine=True),
    CardAction.BETWEEN_US: Targeting(TargetGroup.NEIGHBORS, unfiltered=True),
    CardAction.ONE_TWO: Targeting(TargetGroup.THIRD_NEIGHBORS, ignore_locked_doors=True, ignore_self_quarantine=True),
}

# Pre-flight targets checked before a card may leave the hand at all
HAND_PLAY_PREFLIGHT: Dict[CardAction, Targeting] = {
    CardAction.RUN_AWAY: Targeting(TargetGroup.OTHERS, ignore_locked_doors=True),
    CardAction.AXE: Targeting(TargetGroup.BLOCKED, unfiltered=True),
}

# Hand cards that need at least one receiver to be playable
TARGETED_HAND_ACTIONS: FrozenSet[CardAction] = frozenset({
    CardAction.TEMPTATION,
    CardAction.ANALYSIS,
    CardAction.SUSPICION,
    CardAction.FLAMETHROWER,
})

# Table cards that need at least one receiver to be playable
TARGETED_TABLE_ACTIONS: FrozenSet[CardAction] = frozenset({
    CardAction.SWAP_PLACES,
    CardAction.GO_AWAY,
    CardAction.ONE_TWO,
})

# Phase opened when a panic card is revealed from the deck. ONE_TWO and GO_AWAY
# depend on the table and are decided by the resolver.
PANIC_REVEAL_PHASES: Dict[CardAction, StepPhase] = {
    CardAction.OLD_ROPES: StepPhase.PLAY_FROM_TABLE,
    CardAction.BETWEEN_US: StepPhase.PLAY_FROM_TABLE,
    CardAction.IS_IT_PARTY: StepPhase.PLAY_FROM_TABLE,
    CardAction.OOPS: StepPhase.PLAY_FROM_TABLE,
    CardAction.THREE_FOUR: StepPhase.PLAY_FROM_TABLE,
    CardAction.FRIENDS: StepPhase.GIVE_TO_PLAYER,
    CardAction.BLIND_DATE: StepPhase.DROP_FROM_HAND,
    CardAction.CHAIN_REACTION: StepPhase.GIVE_TO_NEXT_PLAYER,
    CardAction.CONFESSION_TIME: StepPhase.SHOW_FROM_HAND,
    CardAction.FORGETFULNESS: StepPhase.DROP_FROM_HAND,
}

# Defence card -> the last card it can answer
DEFENCE_TRIGGERS: Dict[CardAction, FrozenSet[CardAction]] = {
    CardAction.GOOD_HERE: frozenset({CardAction.SWAP_PLACES, CardAction.RUN_AWAY}),
    CardAction.NO_BARBECUE: frozenset({CardAction.FLAMETHROWER}),
}

# Defences that only make sense against a card handed over as a request
REQUESTED_CARD_DEFENCES: FrozenSet[CardAction] = frozenset({
    CardAction.NO_THANKS,
    CardAction.FEAR,
    CardAction.MISS,
})

# Defences that answer a table play and therefore go through AcceptRequest
TABLE_PLAY_DEFENCES: Dict[CardAction, CardAction] = {
    CardAction.RUN_AWAY: CardAction.GOOD_HERE,
    CardAction.SWAP_PLACES: CardAction.GOOD_HERE,
    CardAction.FLAMETHROWER: CardAction.NO_BARBECUE,
}

# Panic cards whose completed exchange hands the turn back to a regular swap
PANIC_SWAP_CONTINUATIONS: FrozenSet[CardAction] = frozenset({CardAction.FRIENDS})
EVENT_SWAP_CONTINUATIONS: FrozenSet[CardAction] = frozenset({CardAction.SWAP_PLACES})

PERSISTENCE_EXTRA_DRAWS = 3
PERSISTENCE_EXTRA_KEEP = 1
FORGETFULNESS_DROPS = 3


def get_rule(action: CardAction) -> Optional[CardRule]:
    return CARD_RULES.get(action)


def hand_targeting(action: CardAction) -> Targeting:
    return HAND_PLAY_TARGETS.get(action, DEFAULT_TARGETING)


def table_targeting(action: CardAction) -> Targeting:
    return TABLE_PLAY_TARGETS.get(action, DEFAULT_TARGETING)
