# aftercommit/config/settings.py
from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./aftercommit.db"
DEFAULT_ENVIRONMENT = "production"


def _parse_name_list(raw: str | None) -> frozenset[str]:
    """
    Parses comma/space/newline separated names.
    Accepts:
      "SendWelcomeEmail"
      "SendWelcomeEmail,AuditLogged"
      "SendWelcomeEmail AuditLogged"
      "app.mail.SendWelcomeEmail\nAuditLogged"
      "['SendWelcomeEmail', 'AuditLogged']"  (brackets/quotes ignored)
      "App\\Jobs\\SendWelcomeEmail emails/welcome"  (any non-empty token)
    """
    if not raw:
        return frozenset()

    cleaned = raw.strip().strip("[](){}").strip()
    if not cleaned:
        return frozenset()

    out: set[str] = set()
    for p in re.split(r"[,\s]+", cleaned):
        name = p.strip().strip("'\"")
        if not name:
            continue
        out.add(name)
    return frozenset(out)


def _optional(env: Mapping[str, str], key: str) -> Optional[str]:
    v = (env.get(key) or "").strip()
    return v or None


@dataclass(frozen=True, slots=True)
class Settings:
    database_url: str = DEFAULT_DATABASE_URL

    # --- deferral ---
    connection_name: Optional[str] = None  # derived from the engine URL when unset
    whitelist: frozenset[str] = frozenset()

    # --- environment ---
    environment: str = DEFAULT_ENVIRONMENT  # production | development

    @property
    def is_dev(self) -> bool:
        return self.environment.lower() in {"dev", "development", "local"}

    @classmethod
    def from_env(cls, env: Mapping[str, str]) -> "Settings":
        database_url = _optional(env, "DATABASE_URL") or DEFAULT_DATABASE_URL
        environment = _optional(env, "ENVIRONMENT") or DEFAULT_ENVIRONMENT

        return cls(
            database_url=database_url,
            connection_name=_optional(env, "DEFERRAL_CONNECTION_NAME"),
            whitelist=_parse_name_list(env.get("DEFERRAL_WHITELIST")),
            environment=environment,
        )

    @classmethod
    def load(cls) -> "Settings":
        """
        Loads from process env (and .env if present).
        """
        load_dotenv()
        return cls.from_env(os.environ)
