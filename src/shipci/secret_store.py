# secret_store.py
# Credentials are looked up by name at step start and masked in every captured log.
from __future__ import annotations

import os
import threading
from typing import Dict, Iterable, Mapping, Optional

from .exceptions import MissingSecretError

SECRET_ENV_PREFIX = "SHIPCI_SECRET_"
MASK = "***"


class Secrets:
    def __init__(self, values: Optional[Mapping[str, str]] = None, *, environ: Optional[Mapping[str, str]] = None):
        self._values: Dict[str, str] = dict(values or {})
        self._environ = environ if environ is not None else os.environ
        self._used: set[str] = set()
        self._lock = threading.Lock()

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Secrets":
        env = environ if environ is not None else os.environ
        values = {
            k[len(SECRET_ENV_PREFIX):]: v
            for k, v in env.items()
            if k.startswith(SECRET_ENV_PREFIX) and v
        }
        return cls(values, environ=env)

    def get(self, name: str) -> str:
        """
        Resolve a secret by name.

        Lookup order: explicit/prefixed values, then a plain env var of the
        same name (what hosted CI systems usually inject).
        """
        value = self._values.get(name)
        if value is None:
            value = self._environ.get(name) or None
        if value is None:
            raise MissingSecretError(name)
        with self._lock:
            self._used.add(value)
        return value

    def known_values(self) -> Iterable[str]:
        with self._lock:
            return set(self._values.values()) | self._used

    def mask(self, text: str) -> str:
        # longest first so a secret containing another is fully hidden
        for value in sorted(self.known_values(), key=len, reverse=True):
            if value:
                text = text.replace(value, MASK)
        return text
