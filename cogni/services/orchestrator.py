"""
cogni.services.orchestrator
~~~~~~~~~~~~~~~~~~~~~~~~~~~

生成与投递编排器 —— 每个房间一个串行 worker，驱动 ``GenerationJob`` 状态机::

    Deciding ─┬─> Skipped
              └─> Routing ─> [Searching] ─> Generating ─┬─> Completed
                                                        └─> Failed

- 进入 Routing / Searching 时广播临时 ``status`` 消息（thinking / searching）
- Generating 期间逐段广播 ``message_delta``，同一条回复共用一个 ``messageId``
- Completed：答案 + 来源区作为正式消息追加进历史并广播
- Failed：以固定致歉消息取代部分输出

同一房间同一时刻只有一个活跃任务；新触发在 :class:`RoomStateStore` 中 FIFO 排队，
当前任务结束后由同一个 worker 依次取出执行。离开 / 断开不会取消在跑的任务，
任务结束后才删除已经空掉的房间。
"""
from __future__ import annotations

import asyncio
import enum
import uuid
from collections.abc import Awaitable, Callable

from cogni.core.exceptions import GenerationError
from cogni.core.logging import get_logger
from cogni.prompts.assistant import (
    APOLOGY_MESSAGE,
    STATUS_TEXT,
    build_generation_messages,
    compose_final_reply,
)
from cogni.schemas.events import MessageDeltaData, StatusData
from cogni.schemas.messages import Message, now_ms
from cogni.schemas.pipeline import Decision, RouteDecision, SearchContext
from cogni.services.augment import SearchAugmenter
from cogni.services.capabilities import TextGenerator
from cogni.services.decision import DecisionEngine, ReplyPolicy
from cogni.services.registry import ConnectionRegistry
from cogni.services.relay import MessageRelay
from cogni.services.room_store import GenerationTrigger, RoomStateStore
from cogni.services.router import TaskRouter

logger = get_logger(__name__)


class JobState(str, enum.Enum):
    DECIDING = "deciding"
    ROUTING = "routing"
    SEARCHING = "searching"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


TERMINAL_STATES = frozenset({JobState.COMPLETED, JobState.FAILED, JobState.SKIPPED})

_TRANSITIONS: dict[JobState, frozenset[JobState]] = {
    JobState.DECIDING: frozenset({JobState.ROUTING, JobState.SKIPPED, JobState.FAILED}),
    JobState.ROUTING: frozenset({JobState.SEARCHING, JobState.GENERATING, JobState.FAILED}),
    JobState.SEARCHING: frozenset({JobState.GENERATING, JobState.FAILED}),
    JobState.GENERATING: frozenset({JobState.COMPLETED, JobState.FAILED}),
}


class GenerationJob:
    """AI 参与者的一次回复尝试。

    Attributes:
        room_id: 所属房间。
        trigger: 触发消息及其入队时刻的历史快照。
        state: 当前状态。
        message_id: 最终回复（及其流式增量、状态消息）共用的消息 ID。
        partial_text: 已累积的流式输出。
        cancel_requested: 取消标记。只做记录，不会中途打断任务。
        decision: 决策结果。
        route: 路由结果。
        final_message: 最终投递的消息。
    """

    def __init__(self, trigger: GenerationTrigger, message_id: str) -> None:
        self.room_id = trigger.room_id
        self.trigger = trigger
        self.state = JobState.DECIDING
        self.message_id = message_id
        self.partial_text = ""
        self.cancel_requested = False
        self.decision: Decision | None = None
        self.route: RouteDecision | None = None
        self.final_message: Message | None = None

    def advance(self, state: JobState) -> None:
        if state not in _TRANSITIONS.get(self.state, frozenset()):
            raise RuntimeError(f"非法的任务状态迁移: {self.state.value} -> {state.value}")
        logger.debug(
            "任务状态 | room=%s | %s -> %s", self.room_id, self.state.value, state.value,
        )
        self.state = state

    @property
    def done(self) -> bool:
        return self.state in TERMINAL_STATES


class ReplyOrchestrator:
    """按房间串行执行 AI 回复任务。

    Attributes:
        registry: 连接注册表（任务结束后删除空房间）。
        store: 房间状态仓库（生成锁与排队）。
        relay: 消息中继（状态 / 增量 / 最终消息的广播）。
        decision_engine: 是否回复。
        policy: 置信度 → 立即 / 延迟 / 跳过。
        router: 搜索还是直接回答。
        augmenter: 搜索增强。
        generator: 流式生成能力。
        assistant_name: AI 参与者显示名。
        prompt_history_turns: 生成 Prompt 携带的历史条数。
        completed_jobs: 已投递回复（含致歉消息）的任务数，由 ``/health`` 展示。
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        store: RoomStateStore,
        relay: MessageRelay,
        decision_engine: DecisionEngine,
        router: TaskRouter,
        augmenter: SearchAugmenter,
        generator: TextGenerator,
        *,
        policy: ReplyPolicy | None = None,
        assistant_name: str = "Cogni",
        prompt_history_turns: int = 5,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self.registry = registry
        self.store = store
        self.relay = relay
        self.decision_engine = decision_engine
        self.policy = policy or ReplyPolicy()
        self.router = router
        self.augmenter = augmenter
        self.generator = generator
        self.assistant_name = assistant_name
        self.prompt_history_turns = prompt_history_turns
        self._sleep = sleep
        self._workers: dict[str, asyncio.Task[None]] = {}
        self._active: dict[str, GenerationJob] = {}
        self.completed_jobs: int = 0

    # ── 对外接口 ──────────────────────────────────────────────────────

    def submit(self, room_id: str, message: Message, history: list[Message]) -> bool:
        """提交一次触发。

        Args:
            room_id: 房间。
            message: 触发消息（已由中继追加并广播）。
            history: 触发消息之前的历史快照，决策与 Prompt 都基于它。

        Returns:
            ``True`` 表示立即开始执行；``False`` 表示已排队。

        Raises:
            KeyError: 房间已不存在。调用方需在同一事件循环步内先确认房间仍在。
        """
        trigger = GenerationTrigger(room_id, message, history)
        if not self.store.try_acquire_job(room_id, trigger):
            return False
        self._workers[room_id] = asyncio.create_task(
            self._drain(trigger), name=f"reply-worker:{room_id}",
        )
        return True

    def active_job(self, room_id: str) -> GenerationJob | None:
        return self._active.get(room_id)

    def mark_cancel_requested(self, room_id: str) -> bool:
        """标记房间当前任务的取消请求。任务仍会跑完并广播给剩余成员。"""
        job = self._active.get(room_id)
        if job is None:
            return False
        job.cancel_requested = True
        logger.info("房间已空，任务继续执行至结束 | room=%s | state=%s", room_id, job.state.value)
        return True

    async def wait_idle(self, room_id: str | None = None) -> None:
        """等待指定房间（或所有房间）的 worker 执行完毕。"""
        while True:
            if room_id is not None:
                tasks = [t for t in (self._workers.get(room_id),) if t is not None]
            else:
                tasks = list(self._workers.values())
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

    async def shutdown(self) -> None:
        """取消所有 worker（进程关闭时调用）。"""
        tasks = list(self._workers.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    # ── worker ────────────────────────────────────────────────────────

    async def _drain(self, trigger: GenerationTrigger) -> None:
        room_id = trigger.room_id
        current: GenerationTrigger | None = trigger
        try:
            while current is not None:
                try:
                    await self._run_job(current)
                except Exception:
                    logger.exception("回复任务异常终止 | room=%s", room_id)
                current = self.store.release(room_id)
        except asyncio.CancelledError:
            dropped = self.store.abandon(room_id)
            logger.warning("回复 worker 被取消 | room=%s | 丢弃排队 %d 条", room_id, dropped)
            raise
        finally:
            self._active.pop(room_id, None)
            self._workers.pop(room_id, None)
            self.registry.discard_if_idle(room_id)

    async def _run_job(self, trigger: GenerationTrigger) -> GenerationJob:
        room_id = trigger.room_id
        job = GenerationJob(trigger, message_id=uuid.uuid4().hex)
        self._active[room_id] = job
        text = trigger.message.text

        # Deciding
        decision = await self.decision_engine.evaluate(text, trigger.history)
        job.decision = decision
        delay = self.policy.delay_for(decision)
        if delay is None:
            job.advance(JobState.SKIPPED)
            logger.info("AI 不回复 | room=%s | confidence=%d", room_id, decision.confidence)
            return job
        if delay:
            await self._sleep(delay)

        final_text: str
        context: SearchContext | None = None
        try:
            job.advance(JobState.ROUTING)
            await self._emit_status(job, "thinking")
            job.route = await self.router.route(text)

            if job.route.next == "search":
                job.advance(JobState.SEARCHING)
                await self._emit_status(job, "searching")
                context = await self.augmenter.augment(text)

            job.advance(JobState.GENERATING)
            prompt = build_generation_messages(
                self.assistant_name,
                trigger.history,
                trigger.message,
                history_turns=self.prompt_history_turns,
                search_context=context,
            )
            async for delta in self.generator.generate(prompt):
                if not delta:
                    continue
                job.partial_text += delta
                await self.relay.broadcast(
                    room_id,
                    "message_delta",
                    MessageDeltaData(
                        message_id=job.message_id, sender=self.assistant_name, delta=delta,
                    ).dump(),
                )
            if not job.partial_text.strip():
                raise GenerationError("生成结果为空")

            final_text = compose_final_reply(
                job.partial_text, context.sources if context is not None else (),
            )
            job.advance(JobState.COMPLETED)
        except Exception as e:
            logger.error(
                "AI 回复失败，改发致歉消息 | room=%s | state=%s | %s",
                room_id, job.state.value, e, exc_info=True,
            )
            final_text = APOLOGY_MESSAGE
            job.state = JobState.FAILED

        await self._deliver(job, final_text)
        self.completed_jobs += 1
        return job

    async def _emit_status(self, job: GenerationJob, state: str) -> None:
        await self.relay.broadcast(
            job.room_id,
            "status",
            StatusData(
                state=state,
                sender=self.assistant_name,
                message=STATUS_TEXT[state],
                message_id=job.message_id,
                timestamp=now_ms(),
            ).dump(),
        )

    async def _deliver(self, job: GenerationJob, text: str) -> None:
        message = Message(
            id=job.message_id,
            sender=self.assistant_name,
            text=text,
            is_automated=True,
        )
        job.final_message = message
        result = await self.relay.relay(job.room_id, message)
        if not result.delivered:
            logger.warning("AI 回复未能投递 | room=%s | %s", job.room_id, result.error)
        else:
            logger.info(
                "AI 回复已投递 | room=%s | state=%s | 接收连接=%d",
                job.room_id, job.state.value, result.recipient_count,
            )
