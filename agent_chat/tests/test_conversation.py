import dataclasses

import pytest

from agent_chat.domain.conversation import entries_from_messages, messages_from_entries
from agent_chat.domain.exceptions import HttpError, TransportError, describe_error
from agent_chat.domain.models import AgentConfig, ChatOutcome, Message, TurnState


def test_models_exist():
    m = Message(role="user", content="hi")
    assert m.to_payload() == {"role": "user", "content": "hi"}
    with pytest.raises(dataclasses.FrozenInstanceError):
        m.content = "changed"

    outcome = ChatOutcome(state=TurnState.SUCCEEDED, text="ok")
    assert outcome.ok
    assert not ChatOutcome(state=TurnState.FAILED).ok


def test_agent_config_repr_hides_api_key():
    config = AgentConfig(id=1, api_key="sk-very-secret", name="翻译")
    assert "sk-very-secret" not in repr(config)
    assert "翻译" in repr(config)


def test_entries_round_trip():
    entries = [(True, "q"), (False, "a")]
    messages = messages_from_entries(entries)
    assert [m.role for m in messages] == ["user", "assistant"]
    assert entries_from_messages(messages) == entries


def test_describe_error():
    assert describe_error(HttpError(code="API_ERROR", message="x", http_status=502, body="")) == "HTTP 502: 无错误详情"
    assert describe_error(TransportError(code="NETWORK_ERROR", message="dns")) == "网络错误: dns"
    assert describe_error(KeyError("k")) == "请求错误: 'k'"
