"""领域层模型与协议。

包含：
- models: AgentConfig / Message / ChatRequest / ChatOutcome 等统一模型。
- conversation: 聊天记录条目与 HistoryArchive 持久化协议。
- exceptions: 业务异常类型定义。
"""
