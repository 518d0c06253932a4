"""对话调度核心模块。

ChatEngine 负责单次对话调用的完整生命周期：

    IDLE → BUILDING → SENT → (SUCCEEDED | FAILED)

1. 校验智能体配置，取得该智能体的串行锁，追加用户消息并裁剪历史；
2. 构造 ChatRequest，经 ChatTransport 异步发送（唯一的挂起点）；
3. 归一化响应，成功则追加助手消息；
4. 所有失败在这里统一捕获，转换为 ChatOutcome，不会向调用方抛出。
"""

import asyncio
import logging
import time
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol
from uuid import uuid4

from agent_chat.config.settings import settings
from agent_chat.conversation.request_builder import build_request, resolve_max_tokens
from agent_chat.conversation.session_store import SessionStore, check_agent_id
from agent_chat.domain.conversation import HistoryArchive, HistoryEntry, entries_from_messages
from agent_chat.domain.exceptions import (
    BusinessError,
    HttpError,
    MissingConfigError,
    ValidationError,
    describe_error,
)
from agent_chat.domain.models import AgentConfig, AgentId, ChatOutcome, Message, TurnState
from agent_chat.infrastructure.logging.logger import logger
from agent_chat.providers import create_adapter, create_transport
from agent_chat.providers.base import ChatTransport, ProviderAdapter


# 失败轮次的用户消息：retain 保留，rollback 撤回
FAILED_TURN_POLICIES = ("retain", "rollback")


class ChatCallback(Protocol):
    """对话结果回调，每次调用恰好触发其中一个方法一次。"""

    def on_response(self, text: str) -> None:
        ...

    def on_failure(self, error: str) -> None:
        ...


class ChatEngine:
    def __init__(
        self,
        store: Optional[SessionStore] = None,
        transport: Optional[ChatTransport] = None,
        adapters: Optional[Mapping[str, ProviderAdapter]] = None,
        archive: Optional[HistoryArchive] = None,
        failed_turn_policy: Optional[str] = None,
        cfg=None,
    ):
        self._settings = cfg or settings
        self._store = store or SessionStore()
        self._transport = transport or create_transport(self._settings)
        self._adapters = dict(adapters) if adapters is not None else None
        self._archive = archive
        policy = failed_turn_policy or getattr(self._settings, "failed_turn_policy", "retain")
        if policy not in FAILED_TURN_POLICIES:
            raise ValidationError(code="INVALID_POLICY", message=f"不支持的失败处理策略: {policy}")
        self._failed_turn_policy = policy

    @property
    def store(self) -> SessionStore:
        return self._store

    # ---- 对话 ----

    def chat(self, user_message: str, agent_config: Optional[AgentConfig], callback: ChatCallback) -> "asyncio.Task[ChatOutcome]":
        """调度一次对话，立即返回 Task；结果通过 callback 回调一次。

        必须在运行中的事件循环里调用，否则抛出 RuntimeError 且不会触发回调。
        """

        loop = asyncio.get_running_loop()

        async def _run() -> ChatOutcome:
            outcome = await self.run_turn(user_message, agent_config)
            self._fire(callback, outcome)
            return outcome

        return loop.create_task(_run())

    async def chat_async(self, user_message: str, agent_config: Optional[AgentConfig]) -> str:
        """执行一次对话并直接返回回复文本，失败时抛出 BusinessError。"""

        outcome = await self.run_turn(user_message, agent_config)
        if outcome.ok:
            return outcome.text or ""
        if isinstance(outcome.error, BusinessError):
            raise outcome.error
        raise BusinessError(code="REQUEST_ERROR", message=describe_error(outcome.error))

    async def run_turn(self, user_message: str, agent_config: Optional[AgentConfig]) -> ChatOutcome:
        """执行一次对话步骤，返回终态为 SUCCEEDED 或 FAILED 的 ChatOutcome。"""

        start_time = time.time()
        log_ctx: Dict[str, Any] = {"trace_id": f"tr-{uuid4().hex}"}

        try:
            adapter = self._validate(agent_config)
        except BusinessError as e:
            self._log(logging.WARNING, "Rejected chat request", log_ctx, code=e.code, error=e.message)
            return ChatOutcome(state=TurnState.FAILED, error=e, meta=log_ctx)

        agent_id = agent_config.id
        log_ctx.update(agent_id=agent_id, agent_name=agent_config.name, provider=adapter.name)

        try:
            async with self._store.turn_lock(agent_id):
                return await self._locked_turn(user_message, agent_config, adapter, log_ctx, start_time)
        except Exception as e:
            # 取锁或读写历史时的意外错误，同样以 FAILED 结束
            error = self._as_business_error(e)
            self._log(logging.ERROR, "Chat turn aborted", log_ctx, code=error.code, error=describe_error(error))
            return ChatOutcome(state=TurnState.FAILED, error=error, meta=log_ctx)

    async def _locked_turn(
        self,
        user_message: str,
        agent_config: AgentConfig,
        adapter: ProviderAdapter,
        log_ctx: Dict[str, Any],
        start_time: float,
    ) -> ChatOutcome:
        # 调用方已持有该智能体的 turn_lock
        agent_id = agent_config.id
        state = TurnState.BUILDING
        user_rec = self._store.append_user(agent_id, user_message)
        max_tokens = resolve_max_tokens(agent_config)
        evicted = self._store.trim(agent_id, max_tokens)
        if evicted:
            self._log(logging.INFO, "Trimmed history", log_ctx, evicted=evicted, max_tokens=max_tokens)
        try:
            req = build_request(
                agent_config,
                self._store.get_history(agent_id),
                adapter,
                locale=getattr(self._settings, "prompt_locale", "zh"),
            )
            self._log(
                logging.INFO,
                "Calling provider",
                log_ctx,
                model=req.model,
                temperature=req.temperature,
                top_p=req.top_p,
                max_tokens=req.max_tokens,
                stream=req.stream,
                message_count=len(req.messages),
            )
            state = TurnState.SENT
            resp = await self._transport.post_json(
                adapter.endpoint,
                req.to_payload(),
                adapter.build_headers(agent_config.api_key),
            )
            if not resp.is_success:
                raise HttpError(
                    code="API_ERROR",
                    message=f"HTTP {resp.status_code}: {resp.text or '无错误详情'}",
                    http_status=resp.status_code,
                    body=resp.text,
                )
            text = adapter.parse_response(resp.text)
        except Exception as e:
            error = self._as_business_error(e)
            rolled_back = False
            if self._failed_turn_policy == "rollback":
                rolled_back = self._store.discard_last(agent_id, user_rec)
            self._log(
                logging.ERROR,
                "Chat turn failed",
                log_ctx,
                state=state.value,
                code=error.code,
                error=describe_error(error),
                rolled_back=rolled_back,
                elapsed_seconds=round(time.time() - start_time, 2),
            )
            self._persist(agent_id, log_ctx)
            return ChatOutcome(state=TurnState.FAILED, error=error, meta=log_ctx)

        self._store.append_assistant(agent_id, text)
        self._persist(agent_id, log_ctx)
        self._log(
            logging.INFO,
            "Completed chat turn",
            log_ctx,
            reply_chars=len(text),
            elapsed_seconds=round(time.time() - start_time, 2),
        )
        return ChatOutcome(state=TurnState.SUCCEEDED, text=text, meta=log_ctx)

    # ---- 历史管理 ----

    def get_history(self, agent_id: AgentId) -> List[Message]:
        return self._store.get_history(agent_id)

    async def clear_history(self, agent_id: AgentId) -> None:
        async with self._store.turn_lock(agent_id):
            self._store.clear(agent_id)
            self._persist(agent_id, {"agent_id": agent_id})

    async def truncate_from(self, agent_id: AgentId, index: int) -> None:
        async with self._store.turn_lock(agent_id):
            self._store.truncate_from(agent_id, index)
            self._persist(agent_id, {"agent_id": agent_id})

    async def rebuild_history(self, agent_id: AgentId, entries: Iterable[HistoryEntry]) -> None:
        async with self._store.turn_lock(agent_id):
            self._store.rebuild(agent_id, entries)
            self._persist(agent_id, {"agent_id": agent_id})

    async def restore_history(self, agent_id: AgentId) -> List[Message]:
        """从持久化存储恢复历史；未配置存储时返回当前历史。"""

        async with self._store.turn_lock(agent_id):
            if self._archive is not None:
                self._store.rebuild(agent_id, self._archive.load(agent_id))
            return self._store.get_history(agent_id)

    # ---- 辅助方法 ----

    def _validate(self, agent_config: Optional[AgentConfig]) -> ProviderAdapter:
        if agent_config is None:
            raise MissingConfigError(code="MISSING_CONFIG", message="智能体配置不能为空")
        if not agent_config.api_key:
            raise MissingConfigError(code="MISSING_API_KEY", message="智能体未配置 API Key")
        try:
            check_agent_id(agent_config.id)
        except TypeError as e:
            raise ValidationError(code="INVALID_AGENT_ID", message=str(e))
        kind = agent_config.provider_kind or getattr(self._settings, "default_provider", "deepseek")
        try:
            if self._adapters is not None:
                return self._adapters[kind.lower()]
            return create_adapter(kind, self._settings)
        except KeyError:
            raise ValidationError(code="UNKNOWN_PROVIDER", message=f"不支持的 Provider: {kind}")

    @staticmethod
    def _as_business_error(e: Exception) -> BusinessError:
        if isinstance(e, BusinessError):
            return e
        return BusinessError(code="REQUEST_ERROR", message=describe_error(e))

    def _persist(self, agent_id: AgentId, log_ctx: Dict[str, Any]) -> None:
        if self._archive is None:
            return
        try:
            self._archive.save(agent_id, entries_from_messages(self._store.get_history(agent_id)))
        except BusinessError as e:
            # 持久化失败不影响本轮对话结果
            self._log(logging.WARNING, "Failed to persist history", log_ctx, code=e.code, error=e.message)

    def _fire(self, callback: ChatCallback, outcome: ChatOutcome) -> None:
        try:
            if outcome.ok:
                callback.on_response(outcome.text or "")
            else:
                callback.on_failure(describe_error(outcome.error))
        except Exception:
            logger.exception("Chat callback raised", extra={"extra": dict(outcome.meta)})

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
