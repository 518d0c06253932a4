"""基于 httpx 的异步 HTTP 传输。

ChatEngine 唯一的挂起点就是这里的网络往返：请求发出后交还事件循环，
不会阻塞调用方线程。流式响应也一次性读完整个响应体，交给
Normalizer 按行解析。
"""

from typing import Any, Mapping

import httpx

from agent_chat.domain.exceptions import TransportError
from agent_chat.providers.base import TransportResponse


class HttpxTransport:
    """使用 httpx.AsyncClient 的 ChatTransport 实现。"""

    def __init__(self, timeout: float = 90.0):
        self._timeout = timeout

    async def post_json(
        self,
        url: str,
        payload: Mapping[str, Any],
        headers: Mapping[str, str],
    ) -> TransportResponse:
        try:
            async with httpx.AsyncClient(timeout=self._timeout, trust_env=False) as client:
                resp = await client.post(url, json=dict(payload), headers=dict(headers))
        except httpx.RequestError as e:
            # 网络错误：DNS 失败、连接超时等
            raise TransportError(code="NETWORK_ERROR", message=str(e) or type(e).__name__)
        return TransportResponse(status_code=resp.status_code, text=resp.text)
