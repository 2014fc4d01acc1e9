# mailgate/services/sequence_counter_service.py
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from mailgate.db.query import DBQuery
from mailgate.models.sequence_counter import SequenceCounter


class SequenceCounterRepository(DBQuery[SequenceCounter, Dict[str, Any]]):
    def __init__(self):
        super().__init__(SequenceCounter)


sequence_counter_repository = SequenceCounterRepository()


async def get_next_number(name: str, session: Optional[AsyncSession] = None) -> int:
    """
    取得指定計數器的下一個號碼：存在就原子地 +1，不存在就以 1 建立。
    """
    counter = await sequence_counter_repository.update_or_create_new(
        {"name": name}, {"$inc": {"current_count": 1}}, session=session
    )
    return counter.current_count
