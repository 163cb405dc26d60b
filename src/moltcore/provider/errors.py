"""SDK-agnostic provider error classification.

Errors are classified by fully-qualified type name, HTTP status and message
text so the session layer never needs to import SDK packages directly.
"""

import re
from typing import Iterable, List, Literal, Optional

FailoverReason = Literal["auth", "billing", "rate_limit", "timeout", "format", "unknown"]

# Connection-class errors eligible for automatic retry.
_RETRYABLE_TYPES: frozenset[str] = frozenset({
    "openai.APIConnectionError",
    "openai.APITimeoutError",
    "openai.InternalServerError",
    "openai.RateLimitError",
    "anthropic.APIConnectionError",
    "anthropic.APITimeoutError",
    "anthropic.InternalServerError",
    "anthropic.RateLimitError",
    "anthropic.OverloadedError",
    "httpx.ConnectError",
    "httpx.ReadTimeout",
    "httpx.ConnectTimeout",
    "httpx.RemoteProtocolError",
})

_RETRYABLE_TEXT = re.compile(
    r"rate[_ ]?limit|too many requests|overloaded|temporarily unavailable|"
    r"service unavailable|bad gateway|gateway timeout|internal server error|"
    r"timed? ?out|\b(?:500|502|503|504|529)\b",
    re.IGNORECASE,
)

_PATTERNS: List[tuple] = [
    ("billing", re.compile(
        r"\b402\b|payment required|insufficient (?:credits|balance|funds)|credit balance|"
        r"billing|plans? & billing",
        re.IGNORECASE,
    )),
    ("rate_limit", re.compile(
        r"rate[_ ]?limit|too many requests|\b429\b|exceeded your current quota|"
        r"resource(?: has been|_)? ?exhausted|quota exceeded|usage limit|overloaded",
        re.IGNORECASE,
    )),
    ("auth", re.compile(
        r"invalid[_ ]?api[_ ]?key|incorrect api key|invalid (?:x-api-key|token)|authentication|"
        r"unauthori[sz]ed|forbidden|permission denied|access denied|token (?:has )?expired|"
        r"no (?:api key|credentials) found|\b401\b|\b403\b",
        re.IGNORECASE,
    )),
    ("timeout", re.compile(r"timed? ?out|timeout|deadline exceeded", re.IGNORECASE)),
    ("format", re.compile(
        r"string should match pattern|tool_use\.id|tool_use_id|invalid request format|"
        r"messages\.\d+\.content",
        re.IGNORECASE,
    )),
]

_CONTEXT_OVERFLOW = re.compile(
    r"request_too_large|request exceeds the maximum size|context[_ ]length[_ ]exceeded|"
    r"maximum context length|prompt is too long|exceeds (?:the )?(?:model'?s? )?context window|"
    r"context overflow|input is too long",
    re.IGNORECASE,
)

_COMPACTION = re.compile(r"compaction|summariz", re.IGNORECASE)

_THINKING_UNSUPPORTED = re.compile(
    r"(?:reasoning|thinking|effort).*(?:not supported|unsupported|invalid|does not support)|"
    r"(?:not supported|unsupported|invalid|does not support).*(?:reasoning|thinking|effort)",
    re.IGNORECASE | re.DOTALL,
)

_LEVELS = ("off", "minimal", "low", "medium", "high")

_STATUS = {
    "auth": 401,
    "billing": 402,
    "rate_limit": 429,
    "timeout": 408,
    "format": 400,
}


class FailoverError(Exception):
    """A model failed in a way that warrants trying the next fallback model."""

    def __init__(
        self,
        message: str,
        *,
        reason: FailoverReason = "unknown",
        provider: Optional[str] = None,
        model: Optional[str] = None,
        profile_id: Optional[str] = None,
        status: Optional[int] = None,
    ):
        self.reason = reason
        self.provider = provider
        self.model = model
        self.profile_id = profile_id
        self.status = status if status is not None else resolve_failover_status(reason)
        super().__init__(message)


class ModelNotFoundError(Exception):
    """Raised when a model is not found."""

    def __init__(self, provider_id: str, model_id: str, suggestions: Optional[List[str]] = None):
        self.provider_id = provider_id
        self.model_id = model_id
        self.suggestions = suggestions or []
        msg = f'Model "{model_id}" not found for provider "{provider_id}"'
        if self.suggestions:
            msg += f". Did you mean: {', '.join(self.suggestions)}?"
        super().__init__(msg)


def classify_failover_reason(text: str) -> Optional[FailoverReason]:
    """Map an error message to the reason a credential or model failed."""
    if not text:
        return None
    for reason, pattern in _PATTERNS:
        if pattern.search(text):
            return reason
    return None


def is_failover_error_message(text: str) -> bool:
    return classify_failover_reason(text) is not None


def is_context_overflow(text: str) -> bool:
    return bool(text) and _CONTEXT_OVERFLOW.search(text) is not None


def is_compaction_failure(text: str) -> bool:
    return is_context_overflow(text) and _COMPACTION.search(text) is not None


def resolve_failover_status(reason: Optional[str]) -> Optional[int]:
    return _STATUS.get(reason or "")


def pick_fallback_thinking_level(message: str, attempted: Iterable[str]) -> Optional[str]:
    """Choose a lower thinking level after an "unsupported level" error.

    Levels the provider lists as supported are preferred, highest first.
    Otherwise thinking is switched off. Returns None when the message is not
    about the thinking level or every candidate was already tried.
    """
    if not message or not _THINKING_UNSUPPORTED.search(message):
        return None
    tried = set(attempted)
    lowered = message.lower()
    supported = [level for level in _LEVELS[1:] if re.search(rf"['\"`]{level}['\"`]", lowered)]
    for level in reversed(supported):
        if level not in tried:
            return level
    if "off" not in tried:
        return "off"
    return None


def _fqn(error: BaseException) -> str:
    cls = type(error)
    # Normalise private sub-modules (e.g. openai._exceptions -> openai)
    top = (getattr(cls, "__module__", "") or "").split(".")[0]
    return f"{top}.{cls.__qualname__}"


def status_code(error: BaseException) -> Optional[int]:
    code = getattr(error, "status_code", None)
    if isinstance(code, int):
        return code
    response = getattr(error, "response", None)
    code = getattr(response, "status_code", None)
    if isinstance(code, int):
        return code
    return None


def retryable(error: BaseException) -> bool:
    """True if the error is a transient provider failure worth retrying."""
    if isinstance(error, (TimeoutError, ConnectionError)):
        return True
    if _fqn(error) in _RETRYABLE_TYPES:
        return True
    code = status_code(error)
    if code is not None:
        return code in (408, 429) or 500 <= code <= 599
    text = str(error)
    if is_context_overflow(text):
        return False
    reason = classify_failover_reason(text)
    if reason in ("auth", "billing", "format"):
        return False
    return _RETRYABLE_TEXT.search(text) is not None


class AuthUnavailableError(RuntimeError):
    """No usable credential remains for a provider."""

    def __init__(self, provider: str, message: Optional[str] = None):
        self.provider = provider
        super().__init__(message or f"No available auth profile for {provider} (all in cooldown or unavailable).")
