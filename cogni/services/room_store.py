"""
cogni.services.room_store
~~~~~~~~~~~~~~~~~~~~~~~~~

房间状态仓库 —— 每个房间的有界消息历史 + 生成锁 + 待处理触发队列。

- 历史是环形缓冲（``deque(maxlen=...)``），超出上限时静默淘汰最旧的消息。
- 每个房间同一时刻最多只有一个 *活跃* 的生成任务；其余触发按 FIFO 排队，
  当前任务结束后由编排器通过 :meth:`RoomStateStore.release` 逐个取出。
"""
from __future__ import annotations

import asyncio
from collections import deque

from cogni.core.logging import get_logger
from cogni.schemas.messages import Message

logger = get_logger(__name__)


class GenerationTrigger:
    """一次 AI 回复的触发：触发消息 + 入队时刻的房间历史快照。

    Attributes:
        room_id: 所属房间。
        message: 触发本次回复的人类消息。
        history: 触发消息之前的历史快照（按到达顺序）。
    """

    def __init__(self, room_id: str, message: Message, history: list[Message]) -> None:
        self.room_id = room_id
        self.message = message
        self.history = tuple(history)

    def __repr__(self) -> str:
        return f"GenerationTrigger(room_id={self.room_id!r}, message_id={self.message.id!r})"


class RoomState:
    """单个房间的可变状态。

    Attributes:
        room_id: 房间唯一标识。
        history: 有界消息历史。
        job_active: 是否有生成任务正在执行。
        pending: 等待执行的触发队列。
        send_lock: 串行化"追加 + 广播"，保证所有成员看到的顺序与历史一致。
    """

    def __init__(self, room_id: str, history_limit: int) -> None:
        self.room_id = room_id
        self.history: deque[Message] = deque(maxlen=history_limit)
        self.job_active: bool = False
        self.pending: deque[GenerationTrigger] = deque()
        self.send_lock = asyncio.Lock()

    @property
    def busy(self) -> bool:
        """是否有活跃或排队中的生成任务引用本房间。"""
        return self.job_active or bool(self.pending)


class RoomStateStore:
    """所有房间状态的容器，由 ``ChatHub`` 显式构造并注入各组件。"""

    def __init__(self, history_limit: int = 200) -> None:
        self.history_limit = history_limit
        self._rooms: dict[str, RoomState] = {}

    def __contains__(self, room_id: object) -> bool:
        return room_id in self._rooms

    def ensure(self, room_id: str) -> RoomState:
        """获取房间状态，不存在则创建。"""
        state = self._rooms.get(room_id)
        if state is None:
            state = RoomState(room_id, self.history_limit)
            self._rooms[room_id] = state
            logger.debug("房间状态已创建 | room=%s", room_id)
        return state

    def get(self, room_id: str) -> RoomState | None:
        return self._rooms.get(room_id)

    def discard(self, room_id: str) -> None:
        """删除房间状态（历史随之丢弃）。"""
        if self._rooms.pop(room_id, None) is not None:
            logger.debug("房间状态已删除 | room=%s", room_id)

    def room_ids(self) -> list[str]:
        return list(self._rooms)

    # ── 历史 ──────────────────────────────────────────────────────────

    def append(self, room_id: str, message: Message) -> None:
        """追加一条消息；超出上限时淘汰最旧的一条。

        Raises:
            KeyError: 房间不存在。调用方（中继）负责先校验房间。
        """
        self._rooms[room_id].history.append(message)

    def recent(self, room_id: str, n: int) -> list[Message]:
        """返回最近 ``n`` 条消息（按到达顺序）。返回的是副本，可重复读取。"""
        state = self._rooms.get(room_id)
        if state is None or n <= 0:
            return []
        history = list(state.history)
        return history[-n:]

    # ── 生成锁 ────────────────────────────────────────────────────────

    def try_acquire_job(self, room_id: str, trigger: GenerationTrigger) -> bool:
        """尝试获取房间的生成锁。

        锁空闲时立即占用并返回 ``True``；否则把 ``trigger`` 放入 FIFO 队列，
        返回 ``False``，等当前任务结束后由 :meth:`release` 交给编排器。

        Raises:
            KeyError: 房间不存在。已删除的房间不会因为迟到的触发而被重新创建。
        """
        state = self._rooms[room_id]
        if not state.job_active:
            state.job_active = True
            return True
        state.pending.append(trigger)
        logger.info(
            "生成任务排队 | room=%s | 队列长度=%d", room_id, len(state.pending),
        )
        return False

    def release(self, room_id: str) -> GenerationTrigger | None:
        """结束当前任务。

        队列非空时锁直接移交给队首触发并返回它（锁保持占用）；
        队列为空时释放锁并返回 ``None``。
        """
        state = self._rooms.get(room_id)
        if state is None:
            return None
        if state.pending:
            return state.pending.popleft()
        state.job_active = False
        return None

    def abandon(self, room_id: str) -> int:
        """丢弃房间的锁和全部排队触发（仅用于进程关闭），返回被丢弃的触发数。"""
        state = self._rooms.get(room_id)
        if state is None:
            return 0
        dropped = len(state.pending)
        state.pending.clear()
        state.job_active = False
        return dropped

    def is_busy(self, room_id: str) -> bool:
        state = self._rooms.get(room_id)
        return state is not None and state.busy

    def pending_count(self, room_id: str) -> int:
        state = self._rooms.get(room_id)
        return len(state.pending) if state is not None else 0
