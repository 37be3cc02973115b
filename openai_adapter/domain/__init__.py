"""领域层模型与协议。

包含：
- transcript: 宿主侧对话记录（只读输入）。
- models: Chat Completions 线上协议的请求/响应/流式增量模型。
- exceptions: 业务异常类型定义。
"""
