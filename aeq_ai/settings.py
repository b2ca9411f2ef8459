# aeq_ai/settings.py

"""
Cấu hình runtime cho phần biên (judge LLM, đường dẫn bank).

Đọc `.env` ở thư mục gốc repo, sau đó lấy từ biến môi trường.
Client OpenAI được tạo lười: thiếu OPENAI_API_KEY chỉ báo lỗi khi thật sự gọi judge.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv
from openai import OpenAI

env_path = os.path.join(os.path.dirname(os.path.dirname(__file__)), ".env")
load_dotenv(dotenv_path=env_path)

GENERATED_PROBE_MODES = ("allowlist", "disabled")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"❌ {name} phải là số, nhận được '{raw}'")


def _env_int(name: str, default: int) -> int:
    return int(_env_float(name, float(default)))


@dataclass(frozen=True)
class Settings:
    openai_api_key: Optional[str]
    openai_api_base: Optional[str]
    judge_model: str = "gpt-4o-mini"
    judge_timeout_s: float = 30.0
    judge_max_retries: int = 3
    judge_min_interval_s: float = 0.0
    bank_dir: str = "data"
    generated_probes: str = "allowlist"

    @classmethod
    def from_env(cls) -> "Settings":
        mode = (os.getenv("AEQ_GENERATED_PROBES") or "allowlist").strip().lower()
        if mode not in GENERATED_PROBE_MODES:
            raise ValueError(f"❌ AEQ_GENERATED_PROBES không hợp lệ: '{mode}' (allowlist | disabled)")
        return cls(
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            openai_api_base=os.getenv("OPENAI_API_BASE") or None,
            judge_model=os.getenv("JUDGE_MODEL", "gpt-4o-mini"),
            judge_timeout_s=_env_float("JUDGE_TIMEOUT_S", 30.0),
            judge_max_retries=_env_int("JUDGE_MAX_RETRIES", 3),
            judge_min_interval_s=_env_float("JUDGE_MIN_INTERVAL_S", 0.0),
            bank_dir=os.getenv("AEQ_BANK_DIR", "data"),
            generated_probes=mode,
        )


def get_settings() -> Settings:
    return Settings.from_env()


def make_openai_client(settings: Optional[Settings] = None) -> OpenAI:
    s = settings or get_settings()
    if not s.openai_api_key:
        raise ValueError("❌ OPENAI_API_KEY chưa được set trong .env!")
    if s.openai_api_base:
        return OpenAI(api_key=s.openai_api_key, base_url=s.openai_api_base)
    return OpenAI(api_key=s.openai_api_key)
