"""Per-turn walk over a provider's auth profiles."""

from dataclasses import dataclass
from typing import List, Optional

from ..util.log import Log
from .auth import AuthProfileStore
from .errors import AuthUnavailableError, FailoverError
from .models import ProviderInfo

log = Log.create({"service": "failover"})


@dataclass
class Credential:
    key: str
    profile_id: Optional[str] = None


class AuthRotation:
    """Chooses the credential for each attempt of one turn.

    Candidates come from ``AuthProfileStore.resolve_order``. A provider with no
    stored profiles uses the key resolved from config or the environment.
    A locked profile is never rotated away from.
    """

    def __init__(
        self,
        store: AuthProfileStore,
        provider: ProviderInfo,
        model_id: str,
        *,
        order: Optional[List[str]] = None,
        locked: Optional[str] = None,
        fallback_configured: bool = False,
    ):
        self.store = store
        self.provider = provider
        self.model_id = model_id
        self.locked = locked
        self.fallback_configured = fallback_configured
        self.has_profiles = bool(store.for_provider(provider.id))
        self.candidates = store.resolve_order(provider.id, order, locked)
        self.index = 0

    def _unavailable(self) -> Exception:
        error = AuthUnavailableError(self.provider.id)
        if self.fallback_configured:
            return FailoverError(str(error), reason="auth", provider=self.provider.id, model=self.model_id)
        return error

    def current(self) -> Credential:
        """Credential for the next attempt.

        Raises:
            FailoverError: Nothing is usable and a model fallback exists.
            AuthUnavailableError: Nothing is usable and no fallback exists.
        """
        if self.index < len(self.candidates):
            profile = self.store.get(self.candidates[self.index])
            if profile is not None:
                return Credential(key=profile.key, profile_id=profile.id)
        if not self.has_profiles and self.provider.key:
            return Credential(key=self.provider.key)
        raise self._unavailable()

    @property
    def profile_id(self) -> Optional[str]:
        if self.index < len(self.candidates):
            return self.candidates[self.index]
        return None

    def advance(self) -> bool:
        """Move to the next candidate that is not cooling down."""
        if self.locked:
            return False
        index = self.index + 1
        while index < len(self.candidates):
            if not self.store.in_cooldown(self.candidates[index]):
                self.index = index
                log.info("rotating auth profile", {"provider": self.provider.id, "profile": self.candidates[index]})
                return True
            index += 1
        return False

    def mark_failure(self, reason: str) -> None:
        if self.profile_id:
            self.store.mark_failure(self.profile_id, reason)

    def mark_good(self) -> None:
        if self.profile_id:
            self.store.mark_good(self.profile_id)
            self.store.mark_used(self.profile_id)
