from enum import Enum
from typing import List, Optional, Dict, Tuple
from dataclasses import dataclass, field
from datetime import datetime
import uuid

MAX_HAND_CARDS = 4
MIN_PLAYERS = 4
MAX_PLAYERS = 12
QUARANTINE_STEPS = 3
BOT_PREFIX = "BOT"


class CardType(Enum):
    EVENT = "Event"
    PANIC = "Panic"


class CardSubType(Enum):
    ACTION = "Action"
    DEFENCE = "Defence"
    INFECTION = "Infection"
    OBSTACLE = "Obstacle"


class CardAction(Enum):
    ANALYSIS = "Event_Action_Analysis"
    AXE = "Event_Action_Axe"
    FLAMETHROWER = "Event_Action_Flamethrower"
    LOOK_AROUND = "Event_Action_LookAround"
    PERSISTENCE = "Event_Action_Persistence"
    RUN_AWAY = "Event_Action_RunAway"
    SUSPICION = "Event_Action_Suspicion"
    SWAP_PLACES = "Event_Action_SwapPlaces"
    TEMPTATION = "Event_Action_Temptation"
    WHISKEY = "Event_Action_Whiskey"

    FEAR = "Event_Defence_Fear"
    GOOD_HERE = "Event_Defence_GoodHere"
    MISS = "Event_Defence_Miss"
    NO_BARBECUE = "Event_Defence_NoBarbecue"
    NO_THANKS = "Event_Defence_NoThanks"

    IT = "Event_Infection_It"
    INFECTION_1 = "Event_Infection_Infection1"
    INFECTION_2 = "Event_Infection_Infection2"
    INFECTION_3 = "Event_Infection_Infection3"
    INFECTION_4 = "Event_Infection_Infection4"

    LOCKED_DOOR = "Event_Obstacle_LockedDoor"
    QUARANTINE = "Event_Obstacle_Quarantine"

    BETWEEN_US = "Panic_BetweenUs"
    BLIND_DATE = "Panic_BlindDate"
    CHAIN_REACTION = "Panic_ChainReaction"
    CONFESSION_TIME = "Panic_ConfessionTime"
    FORGETFULNESS = "Panic_Forgetfulness"
    FRIENDS = "Panic_Friends"
    GO_AWAY = "Panic_GoAway"
    IS_IT_PARTY = "Panic_IsItParty"
    OLD_ROPES = "Panic_OldRopes"
    ONE_TWO = "Panic_OneTwo"
    OOPS = "Panic_Oops"
    THREE_FOUR = "Panic_ThreeFour"

    @property
    def card_type(self) -> CardType:
        """Top-level category encoded in the action name"""
        return CardType(self.value.split("_")[0])

    @property
    def sub_type(self) -> Optional[CardSubType]:
        if self.card_type == CardType.PANIC:
            return None
        return CardSubType(self.value.split("_")[1])


class StepPhase(Enum):
    TAKE_FROM_DECK = "TakeFromDeck"
    FULFILL_HAND_FROM_DECK = "FulfillHandFromDeck"
    PICK_FROM_HAND = "PickFromHand"
    PLAY_FROM_HAND = "PlayFromHand"
    PLAY_FROM_TABLE = "PlayFromTable"
    DROP_FROM_HAND = "DropFromHand"
    DROP_FROM_TABLE = "DropFromTable"
    GIVE_TO_NEXT_PLAYER = "GiveToNextPlayer"
    GIVE_TO_PREVIOUS_PLAYER = "GiveToPreviousPlayer"
    GIVE_TO_PLAYER = "GiveToPlayer"
    GIVE_TO_SPECIFIC_PLAYER = "GiveToSpecificPlayer"
    RETURN_TO_PLAYER = "ReturnToPlayer"
    DEFENCE_FROM_HAND = "DefenceFromHand"
    SHOW_FROM_HAND = "ShowFromHand"
    ACCEPT_REQUEST = "AcceptRequest"
    PROCESS_PANIC = "ProcessPanic"
    PROCESS_EVENT = "ProcessEvent"
    REFILL_DECK = "RefillDeck"


class Direction(Enum):
    CLOCKWISE = "Clockwise"
    COUNTER_CLOCKWISE = "CounterClockwise"

    def flipped(self) -> "Direction":
        if self == Direction.CLOCKWISE:
            return Direction.COUNTER_CLOCKWISE
        return Direction.CLOCKWISE


class Role(Enum):
    HUMAN = "Human"
    INFECTED = "Infected"
    IT = "It"
    INACTIVE = "Inactive"


class CardLocation(Enum):
    DECK = "deck"
    HAND = "hand"
    TABLE = "table"
    BORDER = "border"
    TRASH = "trash"


def generate_id(length: Optional[int] = None) -> str:
    """Opaque document/card identifier"""
    value = uuid.uuid4().hex
    return value[:length] if length else value


@dataclass
class Card:
    id: str
    card_type: CardType
    action: CardAction
    sub_type: Optional[CardSubType] = None
    hidden: bool = True
    shared: bool = False
    shared_with_player_id: Optional[int] = None
    requester: Optional[int] = None
    event_requester: Optional[int] = None
    panic_requester: Optional[int] = None
    block_from: Optional[int] = None
    steps_spent: Optional[int] = None

    @classmethod
    def create(cls, action: CardAction, **kwargs) -> "Card":
        """Build a fresh card, deriving type and subtype from the action"""
        return cls(
            id=kwargs.pop("id", None) or generate_id(),
            card_type=action.card_type,
            action=action,
            sub_type=action.sub_type,
            **kwargs
        )

    @property
    def is_panic(self) -> bool:
        return self.card_type == CardType.PANIC

    @property
    def is_event(self) -> bool:
        return self.card_type == CardType.EVENT

    def reset_flags(self):
        """Clear every transient flag, as when a card returns to the deck"""
        self.hidden = True
        self.shared = False
        self.shared_with_player_id = None
        self.requester = None
        self.event_requester = None
        self.panic_requester = None
        self.block_from = None
        self.steps_spent = None

    def __str__(self) -> str:
        return f"{self.action.value}#{self.id[:6]}"


def count_infections(cards: List[Card]) -> int:
    return sum(1 for card in cards if card.sub_type == CardSubType.INFECTION)


@dataclass
class GameState:
    """Shared state of one running game: zones plus the turn/phase ledger"""
    room_id: str
    deck: List[Card] = field(default_factory=list)
    trash: List[Card] = field(default_factory=list)
    hands: Dict[int, List[Card]] = field(default_factory=dict)
    table: Dict[int, List[Card]] = field(default_factory=dict)
    borders: Dict[int, List[Card]] = field(default_factory=dict)
    current_step_player_id: Optional[int] = None
    current_step_phases: List[StepPhase] = field(default_factory=list)
    previous_step_player_id: Optional[int] = None
    previous_step_phases: List[StepPhase] = field(default_factory=list)
    reserved_step_player_id: Optional[int] = None
    reserved_step_phases: List[StepPhase] = field(default_factory=list)
    direction: Direction = Direction.CLOCKWISE
    last_card: Optional[Card] = None
    author_id: Optional[str] = None

    # Ledger queries

    def has_step_phase(self, phase: StepPhase) -> bool:
        return phase in self.current_step_phases

    def has_any_of_step_phases(self, *phases: StepPhase) -> bool:
        return any(phase in self.current_step_phases for phase in phases)

    def had_step_phase(self, phase: StepPhase) -> bool:
        return phase in self.previous_step_phases

    @property
    def has_reserved_data(self) -> bool:
        return bool(self.reserved_step_phases) and self.reserved_step_player_id is not None

    # Zone queries (read-only, never create missing parts)

    def get_hand(self, player_id: Optional[int]) -> List[Card]:
        return self.hands.get(player_id, [])

    def get_table(self, player_id: Optional[int]) -> List[Card]:
        return self.table.get(player_id, [])

    def get_border(self, player_id: Optional[int]) -> List[Card]:
        return self.borders.get(player_id, [])

    @staticmethod
    def _find_part_id(zone: Dict[int, List[Card]], card_id: str) -> Optional[int]:
        for player_id in sorted(zone):
            if any(card.id == card_id for card in zone[player_id]):
                return player_id
        return None

    def get_hand_part_id(self, card_id: str) -> Optional[int]:
        return self._find_part_id(self.hands, card_id)

    def get_table_part_id(self, card_id: str) -> Optional[int]:
        return self._find_part_id(self.table, card_id)

    def get_border_part_id(self, card_id: str) -> Optional[int]:
        return self._find_part_id(self.borders, card_id)

    def locate_card(self, card_id: str) -> Tuple[Optional[CardLocation], Optional[int], Optional[Card]]:
        """Find a card in any zone, returning (location, owning seat, card)"""
        for card in self.deck:
            if card.id == card_id:
                return CardLocation.DECK, None, card
        for location, zone in ((CardLocation.HAND, self.hands),
                               (CardLocation.TABLE, self.table),
                               (CardLocation.BORDER, self.borders)):
            for player_id in sorted(zone):
                for card in zone[player_id]:
                    if card.id == card_id:
                        return location, player_id, card
        for card in self.trash:
            if card.id == card_id:
                return CardLocation.TRASH, None, card
        return None, None, None

    def all_cards(self) -> List[Card]:
        cards = list(self.deck) + list(self.trash)
        for zone in (self.hands, self.table, self.borders):
            for part in zone.values():
                cards.extend(part)
        return cards

    def get_active_card(self, card_type: Optional[CardType] = None) -> Optional[Card]:
        """First table card carrying the requester flag that matches card_type.

        No type means the requested card (plain requester), Event means the card
        with an event requester, Panic the card with a panic requester. Obstacles
        are processed passively and never count as active.
        """
        for player_id in sorted(self.table):
            for card in self.table[player_id]:
                if card.sub_type == CardSubType.OBSTACLE:
                    continue
                if card_type == CardType.EVENT:
                    requester = card.event_requester
                elif card_type == CardType.PANIC:
                    requester = card.panic_requester
                else:
                    requester = card.requester
                if requester is not None:
                    return card
        return None

    def get_active_requester(self, card_type: Optional[CardType] = None) -> Optional[int]:
        card = self.get_active_card(card_type)
        if card is None:
            return None
        if card_type == CardType.EVENT:
            return card.event_requester
        if card_type == CardType.PANIC:
            return card.panic_requester
        return card.requester

    def has_quarantine(self, player_id: Optional[int]) -> bool:
        return any(card.action == CardAction.QUARANTINE for card in self.get_table(player_id))

    def get_quarantine(self, player_id: Optional[int]) -> Optional[Card]:
        return next((card for card in self.get_table(player_id) if card.action == CardAction.QUARANTINE), None)

    def has_locked_door(self, player_id: Optional[int], other_player_id: Optional[int]) -> bool:
        """Whether player_id's border blocks other_player_id (any door when both are the same seat)"""
        if player_id is None or other_player_id is None:
            return False
        border = self.get_border(player_id)
        if player_id == other_player_id:
            return len(border) > 0
        return any(card.block_from == other_player_id for card in border)

    def has_any_locked_door(self, player_id: Optional[int]) -> bool:
        return any(card.action == CardAction.LOCKED_DOOR for card in self.get_border(player_id))

    def get_locked_doors(self, player_id: Optional[int]) -> List[Card]:
        return [card for card in self.get_border(player_id) if card.action == CardAction.LOCKED_DOOR]


@dataclass
class Player:
    """Room member; a seated member occupies the table position player_id"""
    user_id: str
    room_id: str
    player_id: Optional[int] = None
    role: Optional[Role] = None
    previous_role: Optional[Role] = None
    username: Optional[str] = None

    @property
    def doc_id(self) -> str:
        return player_doc_id(self.room_id, self.user_id)

    @property
    def is_bot(self) -> bool:
        return self.user_id.split("_")[0] == BOT_PREFIX

    @property
    def has_seat(self) -> bool:
        return self.player_id is not None

    @property
    def is_inactive(self) -> bool:
        return self.role == Role.INACTIVE

    @property
    def was_human(self) -> bool:
        return self.role == Role.INACTIVE and self.previous_role == Role.HUMAN


def player_doc_id(room_id: str, user_id: str) -> str:
    return f"{room_id}_{user_id}"


@dataclass
class Room:
    room_id: str
    name: str
    author_id: str
    owner_id: Optional[str] = None
    bot_manager_id: Optional[str] = None
    description: Optional[str] = None
    is_game_mode: bool = False
    is_game_finished: bool = False
    has_random_starting_player: bool = False
    has_cards_based_on_quantity: bool = False
    created_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class StepInfo:
    """One resolved step, as recorded in the room's game log"""
    room_id: str
    step_phase: StepPhase
    active_username: Optional[str] = None
    other_username: Optional[str] = None
    card_action: Optional[CardAction] = None
    skip_showing: Optional[bool] = None
    show_all: Optional[bool] = None
    processed_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class GameContext:
    """Snapshot consumed by predicates and the resolver: game state plus room and seats"""
    state: GameState
    room: Room
    players: List[Player] = field(default_factory=list)

    def get_player(self, player_id: Optional[int]) -> Optional[Player]:
        if player_id is None:
            return None
        return next((player for player in self.players if player.player_id == player_id), None)

    def get_player_by_user(self, user_id: str) -> Optional[Player]:
        return next((player for player in self.players if player.user_id == user_id), None)

    def seated_players(self, ignore_inactive: bool = True) -> List[Player]:
        """Seated players ordered by seat, optionally without inactive ones"""
        players = [
            player for player in self.players
            if player.has_seat and (not ignore_inactive or not player.is_inactive)
        ]
        return sorted(players, key=lambda player: player.player_id)

    def get_role(self, player_id: Optional[int]) -> Optional[Role]:
        player = self.get_player(player_id)
        return player.role if player else None

    def is_human(self, player_id: Optional[int]) -> bool:
        return self.get_role(player_id) == Role.HUMAN

    def is_it(self, player_id: Optional[int]) -> bool:
        return self.get_role(player_id) == Role.IT

    def is_infected(self, player_id: Optional[int]) -> bool:
        return self.get_role(player_id) == Role.INFECTED

    def is_inactive(self, player_id: Optional[int]) -> bool:
        return self.get_role(player_id) == Role.INACTIVE

    def get_username(self, player_id: Optional[int]) -> Optional[str]:
        player = self.get_player(player_id)
        if player is None:
            return None
        return player.username or player.user_id

    @property
    def current_player(self) -> Optional[Player]:
        return self.get_player(self.state.current_step_player_id)


def humans_won(players: List[Player]) -> bool:
    return not any(player.role == Role.IT for player in players)


def it_won(players: List[Player]) -> bool:
    return not any(player.role == Role.HUMAN for player in players)


def anybody_won(players: List[Player]) -> bool:
    return humans_won(players) or it_won(players)


def is_winner(player: Player, players: List[Player]) -> bool:
    """Whether the given member is on the winning side of a finished game"""
    if humans_won(players):
        return player.role == Role.HUMAN or player.was_human
    if it_won(players):
        return player.role in (Role.IT, Role.INFECTED) or not player.was_human
    return False
