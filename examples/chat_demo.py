"""Minimal demonstration of a two-turn chat against a configured provider.

Usage: CHAT_API_KEY=... CHAT_PROVIDER=siliconflow python examples/chat_demo.py
"""

import asyncio
import os

from agent_chat.api import service
from agent_chat.domain.models import AgentConfig


async def main() -> None:
    config = AgentConfig(
        id=1,
        name="demo",
        api_key=os.getenv("CHAT_API_KEY", ""),
        provider_kind=os.getenv("CHAT_PROVIDER", "deepseek"),
        max_tokens=500,
    )
    for question in ["你好，请介绍一下自己。", "用一句话总结你刚才说的话。"]:
        print("User:", question)
        try:
            print("Agent:", await service.chat_async(question, config))
        except Exception as e:
            print("Error:", e)
    print("History:", [(m.role, m.content[:20]) for m in service.get_history(config.id)])


if __name__ == "__main__":
    asyncio.run(main())
