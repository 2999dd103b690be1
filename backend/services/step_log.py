import logging
from typing import Callable, List, Optional

from sqlalchemy import select, delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import StepRecord
from services.game_models import CardAction, StepInfo, StepPhase

logger = logging.getLogger(__name__)


class StepLog:
    """Durable per-room log of resolved steps"""

    def __init__(self, session_maker: Callable[[], AsyncSession]):
        self.session_maker = session_maker

    @staticmethod
    def to_record(step_info: StepInfo) -> StepRecord:
        return StepRecord(
            room_id=step_info.room_id,
            step_phase=step_info.step_phase.value,
            active_username=step_info.active_username,
            other_username=step_info.other_username,
            card_action=step_info.card_action.value if step_info.card_action else None,
            skip_showing=step_info.skip_showing,
            show_all=step_info.show_all,
            processed_at=step_info.processed_at,
        )

    @staticmethod
    def from_record(record: StepRecord) -> StepInfo:
        return StepInfo(
            room_id=record.room_id,
            step_phase=StepPhase(record.step_phase),
            active_username=record.active_username,
            other_username=record.other_username,
            card_action=CardAction(record.card_action) if record.card_action else None,
            skip_showing=record.skip_showing,
            show_all=record.show_all,
            processed_at=record.processed_at,
        )

    async def record(self, step_info: StepInfo) -> bool:
        """Store one step; failures are logged and never propagate to the game flow"""
        async with self.session_maker() as db:
            try:
                db.add(self.to_record(step_info))
                await db.commit()
                return True
            except SQLAlchemyError as e:
                await db.rollback()
                logger.error(f"Failed to record {step_info.step_phase.value} step for room {step_info.room_id}: {e}")
                return False

    async def list_for_room(self, room_id: str, limit: Optional[int] = None) -> List[StepInfo]:
        """Steps of a room, newest first"""
        async with self.session_maker() as db:
            query = (
                select(StepRecord)
                .where(StepRecord.room_id == room_id)
                .order_by(StepRecord.processed_at.desc())
            )
            if limit:
                query = query.limit(limit)
            result = await db.execute(query)
            return [self.from_record(record) for record in result.scalars().all()]

    async def delete_for_room(self, room_id: str) -> None:
        async with self.session_maker() as db:
            try:
                await db.execute(delete(StepRecord).where(StepRecord.room_id == room_id))
                await db.commit()
                logger.info(f"Deleted step log for room {room_id}")
            except SQLAlchemyError as e:
                await db.rollback()
                logger.error(f"Failed to delete step log for room {room_id}: {e}")
                raise
