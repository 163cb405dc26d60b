"""Persistent auth profiles for provider credentials.

Profiles live in ``<data>/auth-profiles.json`` outside of user-facing config
files. A profile that fails is put in cooldown and skipped by
``resolve_order`` until the cooldown expires.
"""

import json
import os
import time
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel

from ..core.global_paths import GlobalPath
from ..util.log import Log

log = Log.create({"service": "auth"})

DEFAULT_COOLDOWN_MS = 60_000
MAX_COOLDOWN_MS = 60 * 60 * 1000


def _now_ms() -> int:
    return int(time.time() * 1000)


class AuthProfile(BaseModel):
    """One set of credentials for a provider."""
    id: str
    provider: str
    key: str
    last_used: Optional[int] = None
    cooldown_until: Optional[int] = None
    failure_count: int = 0
    last_failure_reason: Optional[str] = None


class AuthProfileStore:
    """Auth profiles keyed by id, persisted as JSON with mode 0600."""

    def __init__(self, path: Optional[Path] = None, *, cooldown_ms: int = DEFAULT_COOLDOWN_MS):
        self._path = Path(path) if path else Path(GlobalPath.data()) / "auth-profiles.json"
        self.cooldown_ms = cooldown_ms
        self._profiles: Optional[Dict[str, AuthProfile]] = None

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> Dict[str, AuthProfile]:
        if self._profiles is not None:
            return self._profiles
        profiles: Dict[str, AuthProfile] = {}
        if self._path.exists():
            try:
                with open(self._path, "r", encoding="utf-8") as handle:
                    data = json.load(handle)
            except (OSError, json.JSONDecodeError) as e:
                log.error("failed to read auth profiles", {"path": str(self._path), "error": str(e)})
                data = {}
            for entry in (data.get("profiles") or []) if isinstance(data, dict) else []:
                profile = AuthProfile.model_validate(entry)
                profiles[profile.id] = profile
        self._profiles = profiles
        return profiles

    def _save(self) -> None:
        profiles = self._load()
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(".tmp")
        with open(tmp, "w", encoding="utf-8") as handle:
            json.dump({"profiles": [p.model_dump() for p in profiles.values()]}, handle, indent=2)
        os.chmod(tmp, 0o600)
        os.replace(tmp, self._path)

    def all(self) -> List[AuthProfile]:
        return list(self._load().values())

    def get(self, profile_id: str) -> Optional[AuthProfile]:
        return self._load().get(profile_id)

    def for_provider(self, provider: str) -> List[AuthProfile]:
        return [p for p in self._load().values() if p.provider == provider]

    def upsert(self, profile: AuthProfile) -> None:
        self._load()[profile.id] = profile
        self._save()

    def remove(self, profile_id: str) -> None:
        if self._load().pop(profile_id, None) is not None:
            self._save()

    def in_cooldown(self, profile_id: str, now: Optional[int] = None) -> bool:
        profile = self.get(profile_id)
        if profile is None or profile.cooldown_until is None:
            return False
        return profile.cooldown_until > (now if now is not None else _now_ms())

    def resolve_order(
        self,
        provider: str,
        order: Optional[List[str]] = None,
        locked: Optional[str] = None,
    ) -> List[str]:
        """Candidate profile ids for ``provider``, best first.

        The locked profile comes first and is never skipped. Then the
        configured order, then every other profile of the provider. Profiles
        in cooldown are left out.
        """
        known = {p.id for p in self.for_provider(provider)}
        result: List[str] = []
        if locked and locked in known:
            result.append(locked)
        ordered = [pid for pid in (order or []) if pid in known]
        rest = sorted(known - set(ordered), key=lambda pid: self._load()[pid].last_used or 0)
        for pid in [*ordered, *rest]:
            if pid in result or self.in_cooldown(pid):
                continue
            result.append(pid)
        return result

    def mark_failure(self, profile_id: str, reason: str) -> None:
        """Record a failure and start a cooldown.

        The cooldown grows fivefold with each consecutive failure and is
        capped at one hour.
        """
        profile = self.get(profile_id)
        if profile is None:
            return
        profile.failure_count += 1
        profile.last_failure_reason = reason
        cooldown = min(self.cooldown_ms * 5 ** (profile.failure_count - 1), MAX_COOLDOWN_MS)
        profile.cooldown_until = _now_ms() + cooldown
        log.warn("auth profile in cooldown", {"profile": profile_id, "reason": reason, "ms": cooldown})
        self._save()

    def mark_good(self, profile_id: str) -> None:
        profile = self.get(profile_id)
        if profile is None or (profile.failure_count == 0 and profile.cooldown_until is None):
            return
        profile.failure_count = 0
        profile.cooldown_until = None
        profile.last_failure_reason = None
        self._save()

    def mark_used(self, profile_id: str) -> None:
        profile = self.get(profile_id)
        if profile is None:
            return
        profile.last_used = _now_ms()
        self._save()
