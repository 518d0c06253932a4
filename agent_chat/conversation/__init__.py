"""会话核心。

- session_store: 按智能体隔离、可裁剪/截断/重建的会话历史。
- request_builder: 历史 + 智能体配置 → ChatRequest（含配置回退）。
- normalizer: 流式 / 非流式响应体 → 助手回复文本。
"""
