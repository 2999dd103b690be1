"""Tests for the SQL step log with the session mocked out"""

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import SQLAlchemyError

from app.models import StepRecord
from services.game_models import CardAction, StepInfo, StepPhase
from services.step_log import StepLog


def session_maker_with(db):
    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=db)
    context.__aexit__ = AsyncMock(return_value=False)
    return MagicMock(return_value=context)


@pytest.fixture
def db():
    session = MagicMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.execute = AsyncMock()
    return session


def make_step(**kwargs) -> StepInfo:
    defaults = dict(
        room_id="room-1",
        step_phase=StepPhase.PLAY_FROM_HAND,
        active_username="player1",
        other_username="player2",
        card_action=CardAction.ANALYSIS,
        processed_at=datetime(2024, 5, 1, 12, 0, 0),
    )
    defaults.update(kwargs)
    return StepInfo(**defaults)


@pytest.mark.asyncio
async def test_record_step(db):
    """Test a step is added and committed"""
    step_log = StepLog(session_maker_with(db))

    assert await step_log.record(make_step()) is True

    record = db.add.call_args.args[0]
    assert isinstance(record, StepRecord)
    assert record.step_phase == "PlayFromHand"
    assert record.card_action == CardAction.ANALYSIS.value
    db.commit.assert_awaited_once()


@pytest.mark.asyncio
async def test_record_failure_rolls_back(db):
    """Test database errors are logged, not raised"""
    db.commit.side_effect = SQLAlchemyError("gone")
    step_log = StepLog(session_maker_with(db))

    assert await step_log.record(make_step()) is False
    db.rollback.assert_awaited_once()


@pytest.mark.asyncio
async def test_list_for_room_maps_records(db):
    record = StepLog.to_record(make_step(card_action=None, skip_showing=True))
    result = MagicMock()
    result.scalars.return_value.all.return_value = [record]
    db.execute.return_value = result
    step_log = StepLog(session_maker_with(db))

    steps = await step_log.list_for_room("room-1", limit=5)

    assert len(steps) == 1
    assert steps[0].step_phase == StepPhase.PLAY_FROM_HAND
    assert steps[0].card_action is None
    assert steps[0].skip_showing is True
    assert steps[0].other_username == "player2"


@pytest.mark.asyncio
async def test_delete_failure_propagates(db):
    db.execute.side_effect = SQLAlchemyError("gone")
    step_log = StepLog(session_maker_with(db))

    with pytest.raises(SQLAlchemyError):
        await step_log.delete_for_room("room-1")
    db.rollback.assert_awaited_once()
