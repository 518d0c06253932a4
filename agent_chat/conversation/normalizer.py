"""响应归一化。

两种响应形态都归一成一段助手回复文本：

1. 非流式：一个 JSON 对象，取 choices[0].message.content。
2. 流式：按行分隔的 SSE 数据，每行可能是空行、`[DONE]` 结束标记，
   或带 `data:` 前缀的增量 JSON；逐块拼接 content。

上游会在数据行之间夹带控制行，因此流式模式下单行解析失败只跳过，
只有最终拼接结果为空时才判定为失败。
"""

import json
from typing import Any, Dict, List, Optional

from agent_chat.domain.exceptions import EmptyResponseError, ParseError


STREAM_PREFIX = "data:"
STREAM_DONE = "[DONE]"


def normalize(raw_body: str, is_streamed: bool) -> str:
    """把原始响应体解析为助手回复文本。

    Raises:
        EmptyResponseError: 响应可解析但没有内容。
        ParseError: 非流式响应体无法解析为 choices 结构。
    """

    if is_streamed:
        return _normalize_stream(raw_body)
    return _normalize_single(raw_body)


def _normalize_single(raw_body: str) -> str:
    try:
        data = json.loads(raw_body)
    except (TypeError, json.JSONDecodeError) as e:
        raise ParseError(code="PARSE_ERROR", message=f"响应解析失败: {e}")
    if not isinstance(data, dict):
        raise ParseError(code="PARSE_ERROR", message="响应解析失败: 响应体不是 JSON 对象")
    choices = _choices_of(data)
    if not choices:
        raise EmptyResponseError(code="EMPTY_RESPONSE", message="API返回空响应")
    content = _content_of(choices[0])
    if not content:
        raise EmptyResponseError(code="EMPTY_RESPONSE", message="API返回空响应")
    return content


def _normalize_stream(raw_body: str) -> str:
    pieces: List[str] = []
    for line in (raw_body or "").splitlines():
        data_str = line.strip()
        if data_str.startswith(STREAM_PREFIX):
            data_str = data_str[len(STREAM_PREFIX):].strip()
        if not data_str or data_str == STREAM_DONE:
            continue
        try:
            chunk = json.loads(data_str)
            choices = _choices_of(chunk)
        except (json.JSONDecodeError, ParseError):
            continue
        if not choices:
            continue
        content = _content_of(choices[0])
        if content:
            pieces.append(content)
    text = "".join(pieces)
    if not text:
        raise EmptyResponseError(code="EMPTY_RESPONSE", message="API返回空响应")
    return text


def _choices_of(data: Any) -> List[Dict[str, Any]]:
    if not isinstance(data, dict):
        raise ParseError(code="PARSE_ERROR", message="响应解析失败: 响应块不是 JSON 对象")
    choices = data.get("choices")
    if choices is None:
        return []
    if not isinstance(choices, list) or not all(isinstance(ch, dict) for ch in choices):
        raise ParseError(code="PARSE_ERROR", message="响应解析失败: choices 字段格式错误")
    return choices


def _content_of(choice: Dict[str, Any]) -> Optional[str]:
    """读取 choice 的内容；流式块通常放在 delta，部分厂商仍使用 message。"""

    for key in ("delta", "message"):
        part = choice.get(key)
        if isinstance(part, dict):
            content = part.get("content")
            if isinstance(content, str) and content:
                return content
    return None
