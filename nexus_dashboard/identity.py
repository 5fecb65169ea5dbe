"""The single persisted identity record that gates the dashboard."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional

import logfire


@dataclass(frozen=True)
class Identity:
    name: str
    email: str


class IdentityStore:
    """Name/email record kept in a small JSON file."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._current = self._read()

    @property
    def current(self) -> Optional[Identity]:
        return self._current

    def _read(self) -> Optional[Identity]:
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return Identity(name=str(data["name"]), email=str(data["email"]))
        except (OSError, ValueError, KeyError, TypeError):
            logfire.warn("Ignoring unreadable identity file {path}", path=str(self.path))
            return None

    def login(self, email: str) -> Identity:
        email = email.strip()
        if "@" not in email:
            raise ValueError("a valid email address is required")
        identity = Identity(name=email.split("@")[0], email=email)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(asdict(identity)), encoding="utf-8")
        self._current = identity
        logfire.info("Signed in as {name}", name=identity.name)
        return identity

    def logout(self) -> None:
        self.path.unlink(missing_ok=True)
        self._current = None
