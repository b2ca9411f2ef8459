# aeq_ai/judge_client.py

"""
Judge client: gọi LLM qua OpenAI SDK (có throttler), bóc JSON khỏi câu trả lời
và validate theo contract của schema.

Nguyên tắc: lỗi mạng / HTTP / hết retry KHÔNG ném lên kernel, chỉ trả
JudgeResponse(parsed=None, diagnostic=...). Kernel sẽ coi đó là output sai contract.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from openai import OpenAI, OpenAIError

from aeq_core.contract import validate_judge_output
from aeq_core.errors import ContractViolation
from aeq_core.schema import ItemDefinition, SchemaDefinition

from .api_throttler import ApiThrottler, ThrottlerError
from .judge_prompt import STRICT_JSON_REMINDER, TurnContext, build_judge_messages, build_priming_messages
from .settings import Settings, get_settings, make_openai_client

logger = logging.getLogger(__name__)

_BARE_NUMBER = re.compile(r"^-?\d+(?:\.\d+)?$")
_JSON_FENCE = re.compile(r"```json\s*([\s\S]*?)```", re.IGNORECASE)
MAX_TOKENS = 1500


@dataclass
class JudgeResponse:
    parsed: Any
    raw_text: str = ""
    diagnostic: Dict[str, Any] = field(default_factory=dict)
    valid: bool = False
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.parsed is not None


# ============================
# Bóc JSON
# ============================

def _get(obj: Any, key: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(key)
    return getattr(obj, key, None)


def _first_json_slice(text: str) -> Any:
    fence = _JSON_FENCE.search(text)
    candidate = fence.group(1) if fence else text
    starts = [i for i in (candidate.find("{"), candidate.find("[")) if i != -1]
    if not starts:
        raise ValueError("No JSON found in model output")
    end = max(candidate.rfind("}"), candidate.rfind("]"))
    return json.loads(candidate[min(starts):end + 1])


def parse_json_text(text: str) -> Any:
    """Số trần -> JSON chuẩn -> khối ```json -> đoạn từ { (hoặc [) đầu tiên tới } (hoặc ]) cuối cùng."""
    t = text.strip()
    if _BARE_NUMBER.match(t):
        return float(t) if "." in t else int(t)
    try:
        return json.loads(t)
    except json.JSONDecodeError:
        pass
    return _first_json_slice(text)


def extract_judge_json(message: Any) -> Tuple[Any, str, str]:
    """
    Trả (parsed, raw_text, source). Thứ tự: tool_calls -> function_call (cũ) -> content.
    Không bóc được -> parsed=None.
    """
    for tc in _get(message, "tool_calls") or []:
        args = _get(_get(tc, "function"), "arguments")
        if isinstance(args, str) and args.strip():
            try:
                return json.loads(args), args, "tool_calls"
            except json.JSONDecodeError:
                continue

    fn_args = _get(_get(message, "function_call"), "arguments")
    if isinstance(fn_args, str) and fn_args.strip():
        try:
            return json.loads(fn_args), fn_args, "function_call"
        except json.JSONDecodeError:
            pass

    content = _get(message, "content")
    if isinstance(content, str):
        try:
            return parse_json_text(content), content, "content"
        except ValueError:
            # json.JSONDecodeError là lớp con của ValueError
            return None, content, "content_unparsable"
    if isinstance(content, (dict, list)):
        return content, json.dumps(content, ensure_ascii=False), "content_object"
    return None, "", "empty"


# ============================
# Client
# ============================

class JudgeClient:
    def __init__(
        self,
        client: Optional[OpenAI] = None,
        settings: Optional[Settings] = None,
        throttler: Optional[ApiThrottler] = None,
        model: Optional[str] = None,
    ):
        self.settings = settings or get_settings()
        self._client = client
        self.throttler = throttler or ApiThrottler.from_settings(self.settings)
        self.model = model or self.settings.judge_model

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = make_openai_client(self.settings)
        return self._client

    def _request_kwargs(self) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {"timeout": self.settings.judge_timeout_s}
        if re.search(r"gpt-5", self.model, re.IGNORECASE):
            kwargs["max_completion_tokens"] = MAX_TOKENS
        else:
            kwargs["temperature"] = 0
            kwargs["max_tokens"] = MAX_TOKENS
        return kwargs

    def call(self, messages: List[Dict[str, str]]) -> JudgeResponse:
        diagnostic: Dict[str, Any] = {"model": self.model}
        try:
            response = self.throttler.safe_openai_chat(self.client, messages, model=self.model, **self._request_kwargs())
        except ThrottlerError as e:
            logger.error(f"❌ Judge thất bại sau {e.attempts} lần thử: {e.last_exception}")
            diagnostic.update(error="throttler_exhausted", attempts=e.attempts, detail=str(e.last_exception))
            return JudgeResponse(None, "", diagnostic)
        except OpenAIError as e:
            logger.error(f"🚫 Judge lỗi API: {e}")
            diagnostic.update(error="api_error", status=getattr(e, "status_code", None), detail=str(e))
            return JudgeResponse(None, "", diagnostic)

        choices = _get(response, "choices") or []
        message = _get(choices[0], "message") if choices else None
        parsed, raw, source = extract_judge_json(message)
        diagnostic["source"] = source
        if parsed is None:
            logger.warning(f"⚠️ Judge trả về nội dung không phải JSON ({source})")
        return JudgeResponse(parsed, raw, diagnostic)

    def judge_turn(self, schema: SchemaDefinition, item: ItemDefinition, ctx: TurnContext) -> JudgeResponse:
        """Một lần gọi + validate; sai thì nhắc lại luật JSON và thử thêm đúng một lần."""
        messages = build_judge_messages(schema, item, ctx)
        first = self._validated(schema, self.call(messages))
        if first.valid:
            return first

        logger.info(f"🔁 Judge output chưa hợp lệ cho {item.item_id}, thử lại với lời nhắc JSON")
        retry = messages + [{"role": "user", "content": STRICT_JSON_REMINDER}]
        second = self._validated(schema, self.call(retry))
        second.diagnostic["retried"] = True
        return second

    @staticmethod
    def _validated(schema: SchemaDefinition, resp: JudgeResponse) -> JudgeResponse:
        if resp.parsed is None:
            resp.errors = ["Model did not return valid JSON"]
            return resp
        try:
            validate_judge_output(schema, resp.parsed)
        except ContractViolation as e:
            resp.errors = list(e.errors) or [str(e)]
            return resp
        resp.valid = True
        return resp


class JudgePrimingTransport:
    """Transport priming cho kernel: gửi guidance một lần, True khi judge xác nhận bằng JSON."""

    def __init__(self, judge: JudgeClient):
        self.judge = judge

    def __call__(self, *, session_id, driver, schema, item, payload, guidance_version) -> bool:
        if guidance_version != schema.guidance_version:
            logger.warning(f"⚠️ GuidanceVersion mismatch khi priming {schema.schema_id} (session {session_id})")
            return False
        resp = self.judge.call(build_priming_messages(schema, item, payload))
        logger.debug(f"Priming {driver.id} cho session {session_id}: {resp.diagnostic}")
        return resp.parsed is not None
