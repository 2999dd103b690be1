import logging
from datetime import datetime
from typing import Dict, Any, Optional, List

from services.game_models import (
    Card,
    CardAction,
    CardSubType,
    CardType,
    Direction,
    GameState,
    Player,
    Role,
    Room,
    StepInfo,
    StepPhase,
)

logger = logging.getLogger(__name__)


class GamePersistence:
    """Handles serialization of game documents to and from JSON-compatible dicts"""

    @staticmethod
    def serialize_card(card: Optional[Card]) -> Optional[Dict[str, Any]]:
        """Serialize a Card object to JSON-compatible dict"""
        if card is None:
            return None
        return {
            "id": card.id,
            "type": card.card_type.value,
            "action": card.action.value,
            "sub_type": card.sub_type.value if card.sub_type else None,
            "hidden": card.hidden,
            "shared": card.shared,
            "shared_with_player_id": card.shared_with_player_id,
            "requester": card.requester,
            "event_requester": card.event_requester,
            "panic_requester": card.panic_requester,
            "block_from": card.block_from,
            "steps_spent": card.steps_spent,
        }

    @staticmethod
    def deserialize_card(card_data: Optional[Dict[str, Any]]) -> Optional[Card]:
        """Deserialize a dict back to Card object"""
        if not card_data:
            return None
        return Card(
            id=card_data["id"],
            card_type=CardType(card_data["type"]),
            action=CardAction(card_data["action"]),
            sub_type=CardSubType(card_data["sub_type"]) if card_data.get("sub_type") else None,
            hidden=card_data.get("hidden", True),
            shared=card_data.get("shared", False),
            shared_with_player_id=card_data.get("shared_with_player_id"),
            requester=card_data.get("requester"),
            event_requester=card_data.get("event_requester"),
            panic_requester=card_data.get("panic_requester"),
            block_from=card_data.get("block_from"),
            steps_spent=card_data.get("steps_spent"),
        )

    @staticmethod
    def serialize_cards(cards: List[Card]) -> List[Dict[str, Any]]:
        return [GamePersistence.serialize_card(card) for card in cards]

    @staticmethod
    def deserialize_cards(cards_data: Optional[List[Dict[str, Any]]]) -> List[Card]:
        return [GamePersistence.deserialize_card(card_data) for card_data in cards_data or []]

    @staticmethod
    def serialize_zone(zone: Dict[int, List[Card]]) -> Dict[str, List[Dict[str, Any]]]:
        # JSON object keys are strings
        return {str(player_id): GamePersistence.serialize_cards(cards) for player_id, cards in zone.items()}

    @staticmethod
    def deserialize_zone(zone_data: Optional[Dict[str, List[Dict[str, Any]]]]) -> Dict[int, List[Card]]:
        return {
            int(player_id): GamePersistence.deserialize_cards(cards_data)
            for player_id, cards_data in (zone_data or {}).items()
        }

    @staticmethod
    def serialize_game_state(state: GameState) -> Dict[str, Any]:
        """Serialize complete game state to JSON-compatible dict"""
        return {
            "id": state.room_id,
            "room_id": state.room_id,
            "deck": GamePersistence.serialize_cards(state.deck),
            "trash": GamePersistence.serialize_cards(state.trash),
            "hands": GamePersistence.serialize_zone(state.hands),
            "table": GamePersistence.serialize_zone(state.table),
            "borders": GamePersistence.serialize_zone(state.borders),
            "current_step_player_id": state.current_step_player_id,
            "current_step_phases": [phase.value for phase in state.current_step_phases],
            "previous_step_player_id": state.previous_step_player_id,
            "previous_step_phases": [phase.value for phase in state.previous_step_phases],
            "reserved_step_player_id": state.reserved_step_player_id,
            "reserved_step_phases": [phase.value for phase in state.reserved_step_phases],
            "direction": state.direction.value,
            "last_card": GamePersistence.serialize_card(state.last_card),
            "author_id": state.author_id,
            "updated_at": datetime.utcnow().isoformat(),
        }

    @staticmethod
    def deserialize_game_state(game_data: Dict[str, Any]) -> GameState:
        """Deserialize JSON data back to GameState object"""
        return GameState(
            room_id=game_data["room_id"],
            deck=GamePersistence.deserialize_cards(game_data.get("deck")),
            trash=GamePersistence.deserialize_cards(game_data.get("trash")),
            hands=GamePersistence.deserialize_zone(game_data.get("hands")),
            table=GamePersistence.deserialize_zone(game_data.get("table")),
            borders=GamePersistence.deserialize_zone(game_data.get("borders")),
            current_step_player_id=game_data.get("current_step_player_id"),
            current_step_phases=[StepPhase(phase) for phase in game_data.get("current_step_phases") or []],
            previous_step_player_id=game_data.get("previous_step_player_id"),
            previous_step_phases=[StepPhase(phase) for phase in game_data.get("previous_step_phases") or []],
            reserved_step_player_id=game_data.get("reserved_step_player_id"),
            reserved_step_phases=[StepPhase(phase) for phase in game_data.get("reserved_step_phases") or []],
            direction=Direction(game_data.get("direction") or Direction.CLOCKWISE.value),
            last_card=GamePersistence.deserialize_card(game_data.get("last_card")),
            author_id=game_data.get("author_id"),
        )

    @staticmethod
    def serialize_player(player: Player) -> Dict[str, Any]:
        """Serialize a Player object to JSON-compatible dict"""
        return {
            "id": player.doc_id,
            "user_id": player.user_id,
            "room_id": player.room_id,
            "player_id": player.player_id,
            "role": player.role.value if player.role else None,
            "previous_role": player.previous_role.value if player.previous_role else None,
            "username": player.username,
        }

    @staticmethod
    def deserialize_player(player_data: Dict[str, Any]) -> Player:
        """Deserialize a dict back to Player object"""
        return Player(
            user_id=player_data["user_id"],
            room_id=player_data["room_id"],
            player_id=player_data.get("player_id"),
            role=Role(player_data["role"]) if player_data.get("role") else None,
            previous_role=Role(player_data["previous_role"]) if player_data.get("previous_role") else None,
            username=player_data.get("username"),
        )

    @staticmethod
    def serialize_room(room: Room) -> Dict[str, Any]:
        return {
            "id": room.room_id,
            "room_id": room.room_id,
            "name": room.name,
            "author_id": room.author_id,
            "owner_id": room.owner_id,
            "bot_manager_id": room.bot_manager_id,
            "description": room.description,
            "is_game_mode": room.is_game_mode,
            "is_game_finished": room.is_game_finished,
            "has_random_starting_player": room.has_random_starting_player,
            "has_cards_based_on_quantity": room.has_cards_based_on_quantity,
            "created_at": room.created_at.isoformat(),
        }

    @staticmethod
    def deserialize_room(room_data: Dict[str, Any]) -> Room:
        created_at = room_data.get("created_at")
        return Room(
            room_id=room_data["room_id"],
            name=room_data["name"],
            author_id=room_data["author_id"],
            owner_id=room_data.get("owner_id"),
            bot_manager_id=room_data.get("bot_manager_id"),
            description=room_data.get("description"),
            is_game_mode=room_data.get("is_game_mode", False),
            is_game_finished=room_data.get("is_game_finished", False),
            has_random_starting_player=room_data.get("has_random_starting_player", False),
            has_cards_based_on_quantity=room_data.get("has_cards_based_on_quantity", False),
            created_at=datetime.fromisoformat(created_at) if created_at else datetime.utcnow(),
        )

    @staticmethod
    def serialize_step_info(step_info: StepInfo) -> Dict[str, Any]:
        return {
            "room_id": step_info.room_id,
            "step_phase": step_info.step_phase.value,
            "active_username": step_info.active_username,
            "other_username": step_info.other_username,
            "card_action": step_info.card_action.value if step_info.card_action else None,
            "skip_showing": step_info.skip_showing,
            "show_all": step_info.show_all,
            "processed_at": step_info.processed_at.isoformat(),
        }
