import datetime
import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import anyio

from services.config import Config
from services.db import get_supabase
from services.redis_session import build_session_cache
from services.utility import parse_timestamp

_logger = logging.getLogger("conversation")

CONVERSATIONS_TABLE = "conversations"
MESSAGES_TABLE = "conversation_messages"

DEFAULT_TITLE = "New Conversation"
TITLE_MAX_CHARS = 50
ROLES = ("user", "assistant", "system")

TOPIC_KEYWORDS = {
    "irrigation": ["water", "irrigation", "पानी", "सिंचाई"],
    "disease": ["disease", "health", "बीमारी", "स्वास्थ्य"],
    "fertilizer": ["fertilizer", "nutrition", "खाद", "पोषण"],
    "weather": ["weather", "rain", "मौसम", "बारिश"],
    "soil": ["soil", "मिट्टी"],
    "harvest": ["harvest", "crop", "फसल"],
    "pest": ["pest", "insect", "कीट"],
}

ISSUE_PATTERNS = [
    re.compile(r"problem with (.+)", re.IGNORECASE),
    re.compile(r"issue with (.+)", re.IGNORECASE),
    re.compile(r"(.+) disease", re.IGNORECASE),
    re.compile(r"(.+) की समस्या"),
    re.compile(r"(.+) बीमारी"),
]


def _utcnow():
    return datetime.datetime.now(datetime.timezone.utc)


def _parse_ts(value) -> datetime.datetime:
    if isinstance(value, datetime.datetime):
        return value
    if not value:
        return _utcnow()
    return parse_timestamp(value)


def _ilike_value(text: str) -> str:
    """Quoted PostgREST ilike operand so commas and parentheses stay literal."""
    escaped = text.replace("\\", "\\\\").replace('"', '\\"')
    return f'"%{escaped}%"'


def make_title(text: str) -> str:
    text = " ".join((text or "").split())
    if not text:
        return DEFAULT_TITLE
    if len(text) <= TITLE_MAX_CHARS:
        return text
    return text[:TITLE_MAX_CHARS] + "..."


def extract_topic(content: str) -> Optional[str]:
    lowered = (content or "").lower()
    for topic, keywords in TOPIC_KEYWORDS.items():
        if any(k in lowered for k in keywords):
            return topic
    return None


def extract_issue(query: str) -> Optional[str]:
    for pattern in ISSUE_PATTERNS:
        match = pattern.search(query or "")
        if match:
            return match.group(1).strip()

    lowered = (query or "").lower()
    if "problem" in lowered or "समस्या" in lowered:
        return query[:TITLE_MAX_CHARS] + ("..." if len(query) > TITLE_MAX_CHARS else "")
    return None


@dataclass
class ConversationMessage:
    id: str
    role: str
    content: str
    timestamp: datetime.datetime = field(default_factory=_utcnow)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConversationMessage":
        return cls(
            id=str(data.get("id") or uuid.uuid4()),
            role=data.get("role", "user"),
            content=data.get("content", ""),
            timestamp=_parse_ts(data.get("timestamp")),
            metadata=data.get("metadata") or {},
        )


@dataclass
class ConversationSession:
    id: str
    auth_id: str
    title: str = DEFAULT_TITLE
    messages: List[ConversationMessage] = field(default_factory=list)
    created_at: datetime.datetime = field(default_factory=_utcnow)
    updated_at: datetime.datetime = field(default_factory=_utcnow)
    # crop_type, farm_size, language, previous_recommendations, farm_location
    context: Dict[str, Any] = field(default_factory=dict)
    # False while the stored header could not be read; it must not be overwritten
    persisted: bool = True

    def header(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "auth_id": self.auth_id,
            "title": self.title,
            "context": self.context,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    def to_dict(self) -> Dict[str, Any]:
        data = self.header()
        data["messages"] = [m.to_dict() for m in self.messages]
        data["updated_at_ms"] = int(self.updated_at.timestamp() * 1000)
        data["persisted"] = self.persisted
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConversationSession":
        return cls(
            id=data["id"],
            auth_id=str(data.get("auth_id") or ""),
            title=data.get("title") or DEFAULT_TITLE,
            messages=[ConversationMessage.from_dict(m) for m in data.get("messages") or []],
            created_at=_parse_ts(data.get("created_at")),
            updated_at=_parse_ts(data.get("updated_at")),
            context=data.get("context") or {},
            persisted=data.get("persisted", True),
        )


class ConversationStore:
    """
    Conversation sessions: a keyed TTL cache in front of the Supabase
    `conversations` / `conversation_messages` tables.

    The header upsert and the message insert are separate writes. Either can
    fail alone, it is logged and the cached session stays authoritative.
    """

    def __init__(self, cache=None, client=None):
        self._cache = cache or build_session_cache()
        self._client = client
        self._locks: Dict[str, anyio.Lock] = {}

    def _db(self):
        return self._client or get_supabase()

    # ---------------- cache plumbing ----------------

    async def _remember(self, session: ConversationSession):
        await self._cache.set(session.id, session.to_dict())

    def _lock(self, conversation_id) -> anyio.Lock:
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = self._locks[conversation_id] = anyio.Lock()
        return lock

    async def _run_db(self, label, fn):
        try:
            return await anyio.to_thread.run_sync(fn)
        except Exception as exc:
            _logger.error("Conversation store %s failed: %s", label, exc)
            return None

    # ---------------- lifecycle ----------------

    async def create(self, auth_id=None, title=None, context=None, conversation_id=None) -> ConversationSession:
        session = ConversationSession(
            id=conversation_id or str(uuid.uuid4()),
            auth_id=str(auth_id or Config.default_auth_id),
            title=title or DEFAULT_TITLE,
            context=dict(context or {}),
        )
        await self._remember(session)
        await self._run_db(
            "create",
            lambda: self._db().table(CONVERSATIONS_TABLE).upsert(session.header()).execute(),
        )
        _logger.info("Conversation created id=%s auth_id=%s", session.id, session.auth_id)
        return session

    async def get(self, conversation_id) -> Optional[ConversationSession]:
        if not conversation_id:
            return None
        session, _ = await self._lookup(conversation_id)
        return session

    async def _lookup(self, conversation_id):
        """
        Returns (session, reachable). `reachable` is False when the tables
        could not be read, which is not the same as the row being absent.
        """
        cached = await self._cache.get(conversation_id)
        stub = ConversationSession.from_dict(cached) if cached else None
        if stub is not None and stub.persisted:
            return stub, True

        try:
            session = await anyio.to_thread.run_sync(self._load, conversation_id)
        except Exception as exc:
            _logger.error("Conversation store load failed id=%s: %s", conversation_id, exc)
            return stub, False

        if session is None:
            if stub is not None:
                # no stored row after all, the in-memory session becomes the record
                stub.persisted = True
                await self._remember(stub)
            return stub, True
        if stub is not None:
            known = {m.id for m in session.messages}
            session.messages.extend(m for m in stub.messages if m.id not in known)
        await self._remember(session)
        return session, True

    def _load(self, conversation_id) -> Optional[ConversationSession]:
        rows = (
            self._db().table(CONVERSATIONS_TABLE)
            .select("*")
            .eq("id", conversation_id)
            .limit(1)
            .execute()
            .data
        ) or []
        if not rows:
            return None

        messages = (
            self._db().table(MESSAGES_TABLE)
            .select("*")
            .eq("conversation_id", conversation_id)
            .order("timestamp", desc=False)
            .execute()
            .data
        ) or []

        session = ConversationSession.from_dict(rows[0])
        session.messages = [ConversationMessage.from_dict(m) for m in messages]
        return session

    async def get_or_create(self, conversation_id=None, auth_id=None, context=None) -> ConversationSession:
        if conversation_id:
            session, reachable = await self._lookup(conversation_id)
            if session is not None:
                return session
            if not reachable:
                session = ConversationSession(
                    id=conversation_id,
                    auth_id=str(auth_id or Config.default_auth_id),
                    context=dict(context or {}),
                    persisted=False,
                )
                await self._remember(session)
                _logger.warning("Conversation %s unreadable, continuing in memory", conversation_id)
                return session
        return await self.create(auth_id=auth_id, context=context, conversation_id=conversation_id)

    async def append_message(self, conversation_id, role, content, metadata=None) -> ConversationMessage:
        if role not in ROLES:
            raise ValueError(f"Invalid message role: {role}")

        async with self._lock(conversation_id):
            session = await self.get(conversation_id)
            if session is None:
                raise KeyError(f"Unknown conversation: {conversation_id}")

            message = ConversationMessage(
                id=str(uuid.uuid4()),
                role=role,
                content=content,
                metadata=dict(metadata or {}),
            )
            session.messages.append(message)
            session.updated_at = message.timestamp
            if role == "user" and session.title == DEFAULT_TITLE:
                session.title = make_title(content)

            await self._remember(session)

        header = session.header()
        row = {**message.to_dict(), "conversation_id": session.id}
        # an unread header only gets inserted when no row exists yet
        ignore_duplicates = not session.persisted
        await self._run_db(
            "header upsert",
            lambda: self._db().table(CONVERSATIONS_TABLE).upsert(header, ignore_duplicates=ignore_duplicates).execute(),
        )
        await self._run_db(
            "message insert",
            lambda: self._db().table(MESSAGES_TABLE).insert([row]).execute(),
        )
        return message

    async def update_context(self, conversation_id, **fields) -> Optional[ConversationSession]:
        async with self._lock(conversation_id):
            session = await self.get(conversation_id)
            if session is None:
                return None
            session.context.update({k: v for k, v in fields.items() if v is not None})
            await self._remember(session)
        return session

    async def history(self, conversation_id, limit: Optional[int] = None) -> List[ConversationMessage]:
        session = await self.get(conversation_id)
        if session is None:
            return []
        messages = session.messages
        return messages[-limit:] if limit else list(messages)

    async def list_for_user(self, auth_id, limit: int = 20) -> List[ConversationSession]:
        rows = await self._run_db(
            "list",
            lambda: (
                self._db().table(CONVERSATIONS_TABLE)
                .select("*")
                .eq("auth_id", str(auth_id))
                .order("updated_at", desc=True)
                .limit(limit)
                .execute()
                .data
            ),
        )
        return [ConversationSession.from_dict(r) for r in rows or []]

    async def update_title(self, conversation_id, title: str) -> bool:
        title = (title or "").strip()
        if not title:
            raise ValueError("Title must not be empty")

        async with self._lock(conversation_id):
            session = await self.get(conversation_id)
            if session is not None:
                session.title = title
                session.updated_at = _utcnow()
                await self._remember(session)

        result = await self._run_db(
            "title update",
            lambda: (
                self._db().table(CONVERSATIONS_TABLE)
                .update({"title": title, "updated_at": _utcnow().isoformat()})
                .eq("id", conversation_id)
                .execute()
            ),
        )
        return session is not None or result is not None

    async def search(self, query: str, limit: int = 10) -> List[ConversationSession]:
        query = (query or "").strip()
        if not query:
            return []

        pattern = _ilike_value(query)
        rows = await self._run_db(
            "search",
            lambda: (
                self._db().table(CONVERSATIONS_TABLE)
                .select("*")
                .or_(f"title.ilike.{pattern},context->>crop_type.ilike.{pattern}")
                .order("updated_at", desc=True)
                .limit(limit)
                .execute()
                .data
            ),
        )
        return [ConversationSession.from_dict(r) for r in rows or []]

    async def delete(self, conversation_id) -> bool:
        await self._cache.delete(conversation_id)
        self._locks.pop(conversation_id, None)

        def _delete():
            self._db().table(MESSAGES_TABLE).delete().eq("conversation_id", conversation_id).execute()
            self._db().table(CONVERSATIONS_TABLE).delete().eq("id", conversation_id).execute()
            return True

        return bool(await self._run_db("delete", _delete))

    async def insights(self, conversation_id) -> Dict[str, Any]:
        messages = await self.history(conversation_id)

        topics, issues = [], []
        for msg in messages:
            if msg.role != "user":
                continue
            topic = extract_topic(msg.content)
            if topic and topic not in topics:
                topics.append(topic)
            issue = extract_issue(msg.content)
            if issue and issue not in issues:
                issues.append(issue)

        duration = 0
        if messages:
            duration = round((messages[-1].timestamp - messages[0].timestamp).total_seconds() / 60)

        return {
            "total_messages": len(messages),
            "topics": topics,
            "issues": issues,
            "duration_minutes": duration,
            "last_activity": messages[-1].timestamp.isoformat() if messages else None,
        }

    # ---------------- cache management ----------------

    async def clear_cache(self) -> None:
        await self._cache.clear()
        self._locks.clear()
        _logger.info("Conversation cache cleared")

    async def cache_size(self) -> int:
        return await self._cache.size()

    async def purge_older_than(self, minutes: float) -> int:
        removed = await self._cache.purge_older_than(minutes)
        _logger.info("Purged %d cached conversations idle for more than %s minutes", removed, minutes)
        return removed


def history_as_chat(messages: List[ConversationMessage], turns: Optional[int] = None) -> List[Dict[str, str]]:
    """Replayable chat turns (user/assistant only) for the LLM prompt."""
    turns = Config.history_turns if turns is None else turns
    chat = [{"role": m.role, "content": m.content} for m in messages if m.role in ("user", "assistant")]
    return chat[-turns * 2:] if turns else []


_store = None


def get_conversation_store() -> ConversationStore:
    global _store
    if _store is None:
        _store = ConversationStore()
    return _store
