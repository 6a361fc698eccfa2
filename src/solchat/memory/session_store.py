"""
Persist chat sessions as a single JSON array in one file.

The whole collection is rewritten on every change (temp file + atomic rename), so each save is a
consistent snapshot.  Storage failures are logged and swallowed: the in-memory collection stays
authoritative and the next successful save catches the file up.
"""

import json
import logging
import os
import tempfile
import uuid
from pathlib import Path
from typing import (
    List,
    Optional,
    Sequence,
)

from pydantic import ValidationError

from solchat.core.schema import (
    Message,
    Session,
    TextPart,
    now_ms,
)

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "New chat"
TITLE_MAX_LENGTH = 45


def extract_title(messages: Sequence[Message]) -> Optional[str]:
    """First user-authored text part, truncated; *None* if there is none yet."""
    first = next((m for m in messages if m.role == "user"), None)
    if first is None:
        return None
    part = next((p for p in first.parts if isinstance(p, TextPart)), None)
    if part is None:
        return None
    return part.text[:TITLE_MAX_LENGTH]


class SessionStore:
    """Ordered (most recent first) collection of sessions backed by a JSON file."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._sessions: List[Session] = self._load()
        # Ids whose title has been derived from a user message and is now fixed
        self._titled = {s.id for s in self._sessions if s.title != DEFAULT_TITLE}

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def create_new(self) -> str:
        """Return a fresh session id; nothing is stored until the first save."""
        return str(uuid.uuid4())

    def list(self) -> List[Session]:
        """Sessions ordered by recency."""
        return list(self._sessions)

    def get(self, session_id: str) -> Optional[Session]:
        return next((s for s in self._sessions if s.id == session_id), None)

    def save(self, session_id: str, messages: Sequence[Message]) -> Optional[Session]:
        """
        Replace the record for *session_id* with *messages* and move it to the front.

        The title is derived from the first user message the first time one is available and is
        never recomputed afterwards.  Saving an empty message list is a no-op.
        """
        if not session_id or not messages:
            return None

        previous = self.get(session_id)
        if session_id in self._titled and previous is not None:
            title = previous.title
        else:
            derived = extract_title(messages)
            title = derived if derived is not None else DEFAULT_TITLE
            if derived is not None:
                self._titled.add(session_id)

        session = Session(
            id=session_id,
            title=title,
            messages=[m.model_copy(deep=True) for m in messages],
            updated_at=now_ms(),
        )
        self._sessions = [session] + [s for s in self._sessions if s.id != session_id]
        self._persist()
        return session

    def delete(self, session_id: str) -> None:
        """Remove *session_id*; unknown ids leave the store untouched."""
        if self.get(session_id) is None:
            return
        self._sessions = [s for s in self._sessions if s.id != session_id]
        self._titled.discard(session_id)
        self._persist()

    # ------------------------------------------------------------------ #
    # Storage
    # ------------------------------------------------------------------ #
    def _load(self) -> List[Session]:
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return []
        except (OSError, ValueError) as exc:
            logger.warning("Could not read sessions from %s: %s", self._path, exc)
            return []
        if not isinstance(raw, list):
            logger.warning("Ignoring sessions file %s: expected a JSON array", self._path)
            return []

        sessions = []
        for record in raw:
            try:
                sessions.append(Session.model_validate(record))
            except ValidationError as exc:
                logger.warning("Skipping unreadable session record: %s", exc)
        return sessions

    def _persist(self) -> None:
        payload = json.dumps([s.to_wire() for s in self._sessions])
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, prefix=".sessions-", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                os.replace(tmp_name, self._path)
            except OSError:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            logger.warning("Failed to persist sessions to %s: %s", self._path, exc)
