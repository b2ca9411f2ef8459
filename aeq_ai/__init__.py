# aeq_ai/__init__.py

"""Phần biên I/O: judge LLM (OpenAI), throttler, cấu hình .env."""

from .api_throttler import ApiThrottler, ThrottlerError
from .judge_prompt import TurnContext, build_judge_messages, build_priming_messages
from .judge_client import JudgeClient, JudgeResponse, JudgePrimingTransport, extract_judge_json
from .settings import Settings, get_settings

__all__ = [
    "ApiThrottler",
    "ThrottlerError",
    "TurnContext",
    "build_judge_messages",
    "build_priming_messages",
    "JudgeClient",
    "JudgeResponse",
    "JudgePrimingTransport",
    "extract_judge_json",
    "Settings",
    "get_settings",
]
