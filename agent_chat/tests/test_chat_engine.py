import asyncio
import json

import pytest

from agent_chat.agents.chat_engine import ChatEngine
from agent_chat.conversation.session_store import SessionStore
from agent_chat.domain.exceptions import (
    EmptyResponseError,
    HttpError,
    MissingConfigError,
    ParseError,
    TransportError,
    ValidationError,
)
from agent_chat.domain.models import AgentConfig, TurnState
from agent_chat.providers.base import TransportResponse
from agent_chat.providers.registry import PROVIDER_REGISTRY


class SettingsStub:
    default_provider = "deepseek"
    failed_turn_policy = "retain"
    prompt_locale = "zh"
    http_timeout = 1.0


def _reply(content):
    return TransportResponse(
        status_code=200,
        text=json.dumps({"choices": [{"message": {"role": "assistant", "content": content}}]}),
    )


class FakeTransport:
    """按顺序返回预设响应；元素为异常时直接抛出。"""

    def __init__(self, *responses):
        self._responses = list(responses)
        self.calls = []

    async def post_json(self, url, payload, headers):
        self.calls.append({"url": url, "payload": payload, "headers": headers})
        await asyncio.sleep(0)
        item = self._responses.pop(0) if self._responses else _reply(f"reply-{len(self.calls)}")
        if isinstance(item, BaseException):
            raise item
        return item


class RecordingCallback:
    def __init__(self):
        self.responses = []
        self.failures = []

    def on_response(self, text):
        self.responses.append(text)

    def on_failure(self, error):
        self.failures.append(error)


def _engine(transport, **kwargs):
    return ChatEngine(
        store=SessionStore(),
        transport=transport,
        adapters=PROVIDER_REGISTRY,
        cfg=SettingsStub(),
        **kwargs,
    )


def _config(**overrides):
    values = {"id": 1, "api_key": "sk-test", "provider_kind": "deepseek"}
    values.update(overrides)
    return AgentConfig(**values)


@pytest.mark.asyncio
async def test_successful_turn_appends_round_and_sends_request():
    transport = FakeTransport(_reply("你好"))
    engine = _engine(transport)

    outcome = await engine.run_turn("hi", _config(model="deepseek-reasoner"))

    assert outcome.ok
    assert outcome.state is TurnState.SUCCEEDED
    assert outcome.text == "你好"
    assert [(m.role, m.content) for m in engine.get_history(1)] == [("user", "hi"), ("assistant", "你好")]

    call = transport.calls[0]
    assert call["url"] == "https://api.deepseek.com/v1/chat/completions"
    assert call["headers"]["Authorization"] == "Bearer sk-test"
    assert call["payload"]["model"] == "deepseek-reasoner"
    assert call["payload"]["stream"] is False
    assert call["payload"]["messages"] == [
        {"role": "system", "content": "你是一个乐于助人的AI助手"},
        {"role": "user", "content": "hi"},
    ]


@pytest.mark.asyncio
async def test_history_is_reused_on_next_turn():
    transport = FakeTransport(_reply("r1"), _reply("r2"))
    engine = _engine(transport)
    config = _config()

    await engine.run_turn("q1", config)
    await engine.run_turn("q2", config)

    sent = [m["content"] for m in transport.calls[1]["payload"]["messages"]]
    assert sent[1:] == ["q1", "r1", "q2"]


@pytest.mark.asyncio
async def test_streaming_provider_concatenates_chunks():
    body = "\n".join(
        [
            'data: {"choices":[{"delta":{"content":"A"}}]}',
            "",
            'data: {"choices":[{"delta":{"content":"B"}}]}',
            "data: [DONE]",
        ]
    )
    transport = FakeTransport(TransportResponse(status_code=200, text=body))
    engine = _engine(transport)

    outcome = await engine.run_turn("hi", _config(provider_kind="siliconflow"))

    assert outcome.text == "AB"
    assert transport.calls[0]["payload"]["stream"] is True
    assert transport.calls[0]["payload"]["model"] == "deepseek-ai/DeepSeek-R1"
    assert transport.calls[0]["url"] == "https://api.siliconflow.cn/v1/chat/completions"


@pytest.mark.asyncio
async def test_history_stabilizes_under_token_budget():
    engine = _engine(FakeTransport())
    config = _config(max_tokens=100)

    for i in range(4):
        outcome = await engine.run_turn(f"q{i}", config)
        assert outcome.ok

    history = engine.get_history(1)
    assert len(history) == 4
    assert [m.content for m in history] == ["q2", "reply-3", "q3", "reply-4"]


@pytest.mark.asyncio
async def test_missing_config_fails_without_touching_history():
    transport = FakeTransport()
    engine = _engine(transport)
    engine.store.append_user(1, "existing")

    callback = RecordingCallback()
    outcome = await engine.chat("hi", None, callback)

    assert outcome.state is TurnState.FAILED
    assert isinstance(outcome.error, MissingConfigError)
    assert callback.responses == []
    assert callback.failures == ["智能体配置不能为空"]
    assert transport.calls == []
    assert [m.content for m in engine.get_history(1)] == ["existing"]
    assert engine.store.agent_ids() == [1]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "config, code",
    [
        (AgentConfig(id=1, api_key=""), "MISSING_API_KEY"),
        (AgentConfig(id=1, api_key="k", provider_kind="openai"), "UNKNOWN_PROVIDER"),
        (AgentConfig(id=1.5, api_key="k"), "INVALID_AGENT_ID"),
    ],
)
async def test_invalid_config_fails_before_history(config, code):
    engine = _engine(FakeTransport())
    outcome = await engine.run_turn("hi", config)
    assert outcome.state is TurnState.FAILED
    assert outcome.error.code == code
    assert engine.store.agent_ids() == []


@pytest.mark.asyncio
async def test_http_error_reports_status_and_body():
    transport = FakeTransport(TransportResponse(status_code=401, text='{"error":"invalid key"}'))
    engine = _engine(transport)
    callback = RecordingCallback()

    outcome = await engine.chat("hi", _config(), callback)

    assert isinstance(outcome.error, HttpError)
    assert outcome.error.http_status == 401
    assert callback.failures == ['HTTP 401: {"error":"invalid key"}']
    # 默认策略保留用户消息，不追加助手消息
    assert [(m.role, m.content) for m in engine.get_history(1)] == [("user", "hi")]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response, error_type, message",
    [
        (TransportError(code="NETWORK_ERROR", message="connection refused"), TransportError, "网络错误: connection refused"),
        (TransportResponse(status_code=200, text='{"choices":[]}'), EmptyResponseError, "API返回空响应"),
        (TransportResponse(status_code=200, text="<html>"), ParseError, "响应解析失败"),
    ],
)
async def test_failures_are_surfaced_via_callback(response, error_type, message):
    engine = _engine(FakeTransport(response))
    callback = RecordingCallback()

    outcome = await engine.chat("hi", _config(), callback)

    assert isinstance(outcome.error, error_type)
    assert len(callback.failures) == 1
    assert callback.failures[0].startswith(message)
    assert callback.responses == []
    assert [m.role for m in engine.get_history(1)] == ["user"]


@pytest.mark.asyncio
async def test_unexpected_exception_is_wrapped():
    engine = _engine(FakeTransport(RuntimeError("boom")))
    callback = RecordingCallback()

    outcome = await engine.chat("hi", _config(), callback)

    assert outcome.error.code == "REQUEST_ERROR"
    assert callback.failures == ["请求错误: boom"]


@pytest.mark.asyncio
async def test_rollback_policy_removes_failed_user_message():
    transport = FakeTransport(_reply("r1"), TransportResponse(status_code=500, text="oops"))
    engine = _engine(transport, failed_turn_policy="rollback")
    config = _config()

    await engine.run_turn("q1", config)
    outcome = await engine.run_turn("q2", config)

    assert not outcome.ok
    assert [m.content for m in engine.get_history(1)] == ["q1", "r1"]


@pytest.mark.asyncio
async def test_chat_returns_task_and_fires_callback_once():
    engine = _engine(FakeTransport(_reply("ok")))
    callback = RecordingCallback()

    task = engine.chat("hi", _config(), callback)
    assert isinstance(task, asyncio.Task)
    outcome = await task

    assert outcome.ok
    assert callback.responses == ["ok"]
    assert callback.failures == []


@pytest.mark.asyncio
async def test_callback_error_does_not_break_task():
    class BrokenCallback:
        def on_response(self, text):
            raise ValueError("ui gone")

        def on_failure(self, error):
            raise AssertionError("should not be called")

    engine = _engine(FakeTransport(_reply("ok")))
    outcome = await engine.chat("hi", _config(), BrokenCallback())
    assert outcome.ok


@pytest.mark.asyncio
async def test_chat_async_raises_business_error():
    engine = _engine(FakeTransport(TransportResponse(status_code=503, text="busy")))
    with pytest.raises(HttpError):
        await engine.chat_async("hi", _config())
    engine2 = _engine(FakeTransport(_reply("fine")))
    assert await engine2.chat_async("hi", _config()) == "fine"


@pytest.mark.asyncio
async def test_concurrent_turns_on_same_agent_do_not_interleave():
    engine = _engine(FakeTransport())
    config = _config()

    outcomes = await asyncio.gather(*(engine.run_turn(f"q{i}", config) for i in range(5)))

    assert all(o.ok for o in outcomes)
    roles = [m.role for m in engine.get_history(1)]
    assert roles == ["user", "assistant"] * 5


@pytest.mark.asyncio
async def test_concurrent_turns_on_different_agents_are_isolated():
    engine = _engine(FakeTransport())

    await asyncio.gather(
        engine.run_turn("for-a", _config(id="a")),
        engine.run_turn("for-b", _config(id="b")),
    )

    assert engine.get_history("a")[0].content == "for-a"
    assert engine.get_history("b")[0].content == "for-b"
    assert len(engine.get_history("a")) == len(engine.get_history("b")) == 2


@pytest.mark.asyncio
async def test_clear_then_chat_starts_from_empty_history():
    transport = FakeTransport()
    engine = _engine(transport)
    config = _config()

    await engine.run_turn("q1", config)
    await engine.clear_history(1)
    assert engine.get_history(1) == []

    await engine.run_turn("q2", config)
    sent = [m["content"] for m in transport.calls[-1]["payload"]["messages"]]
    assert sent[1:] == ["q2"]


@pytest.mark.asyncio
async def test_truncate_and_rebuild_through_engine():
    engine = _engine(FakeTransport())
    await engine.rebuild_history(1, [(True, "q1"), (False, "r1"), (True, "q2"), (False, "r2")])
    await engine.truncate_from(1, 2)
    assert [m.content for m in engine.get_history(1)] == ["q1", "r1"]

    history = engine.get_history(1)
    await engine.truncate_from(1, len(history))
    assert engine.get_history(1) == history


def test_engine_survives_successive_event_loops():
    engine = _engine(FakeTransport())

    async def contended_turns():
        return await asyncio.gather(
            engine.run_turn("first", _config(id="a")),
            engine.run_turn("second", _config(id="a")),
            engine.run_turn("other", _config(id="b")),
        )

    for _ in range(2):
        outcomes = asyncio.run(contended_turns())
        assert all(o.ok for o in outcomes)

    assert [m.role for m in engine.get_history("a")] == ["user", "assistant"] * 4
    assert len(engine.get_history("b")) == 4


@pytest.mark.asyncio
async def test_store_failure_is_reported_not_raised():
    class BrokenStore(SessionStore):
        def append_user(self, agent_id, text):
            raise RuntimeError("store unavailable")

    engine = ChatEngine(store=BrokenStore(), transport=FakeTransport(), adapters=PROVIDER_REGISTRY, cfg=SettingsStub())
    callback = RecordingCallback()

    outcome = await engine.chat("hi", _config(), callback)

    assert outcome.state is TurnState.FAILED
    assert outcome.error.code == "REQUEST_ERROR"
    assert callback.failures == ["请求错误: store unavailable"]
    assert callback.responses == []


def test_unknown_failed_turn_policy_is_rejected():
    with pytest.raises(ValidationError) as exc:
        _engine(FakeTransport(), failed_turn_policy="rollbak")
    assert exc.value.code == "INVALID_POLICY"


def test_chat_outside_event_loop_raises_without_callback():
    engine = _engine(FakeTransport())
    callback = RecordingCallback()

    with pytest.raises(RuntimeError):
        engine.chat("hi", _config(), callback)

    assert callback.responses == callback.failures == []
    assert engine.get_history(1) == []
