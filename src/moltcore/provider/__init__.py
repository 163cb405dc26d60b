"""Provider/model abstraction and auth failover."""

from .auth import AuthProfile, AuthProfileStore
from .errors import (
    AuthUnavailableError,
    FailoverError,
    ModelNotFoundError,
    classify_failover_reason,
    is_compaction_failure,
    is_context_overflow,
    is_failover_error_message,
    pick_fallback_thinking_level,
    resolve_failover_status,
    retryable,
)
from .failover import AuthRotation, Credential
from .models import ModelInfo, ProviderInfo
from .provider import LanguageClient, Provider

__all__ = [
    "AuthProfile",
    "AuthProfileStore",
    "AuthRotation",
    "AuthUnavailableError",
    "Credential",
    "FailoverError",
    "LanguageClient",
    "ModelInfo",
    "ModelNotFoundError",
    "Provider",
    "ProviderInfo",
    "classify_failover_reason",
    "is_compaction_failure",
    "is_context_overflow",
    "is_failover_error_message",
    "pick_fallback_thinking_level",
    "resolve_failover_status",
    "retryable",
]
