# tests/conftest.py
from __future__ import annotations

import copy
import os
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any, Callable, Dict, Iterator, List, Optional

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient
from pymongo import ReturnDocument

os.environ.setdefault("SECRET_KEY", "test-secret")

from courier.database.connection import mongo_db_dependency
from courier.main import app as fastapi_app
from courier.repositories.message_repository import MessageRepository
from courier.repositories.user_repository import UserRepository
from courier.services.chat_service import ChatService
from courier.services.conversation_service import ConversationService
from courier.utils.connection_registry import ConnectionRegistry, get_registry
from courier.utils.security import create_access_token


# --- in-memory stand-in for the slice of the Motor API the repositories use ---

_MISSING = object()


def _get(doc: Dict[str, Any], field: str) -> Any:
    return doc.get(field, _MISSING)


def _equals(value: Any, expected: Any) -> bool:
    if isinstance(value, list) and not isinstance(expected, list):
        return expected in value
    return value == expected


def _match_condition(value: Any, condition: Any) -> bool:
    if isinstance(condition, dict) and any(k.startswith("$") for k in condition):
        for op, arg in condition.items():
            if op == "$ne":
                if value is not _MISSING and _equals(value, arg):
                    return False
            elif op == "$in":
                if value is _MISSING or not any(_equals(value, a) for a in arg):
                    return False
            elif op == "$gte":
                if value is _MISSING or value < arg:
                    return False
            elif op == "$lt":
                if value is _MISSING or not value < arg:
                    return False
            else:
                raise NotImplementedError(op)
        return True
    return value is not _MISSING and _equals(value, condition)


def matches(doc: Dict[str, Any], query: Dict[str, Any]) -> bool:
    for key, condition in query.items():
        if key == "$or":
            if not any(matches(doc, sub) for sub in condition):
                return False
        elif key == "$and":
            if not all(matches(doc, sub) for sub in condition):
                return False
        elif not _match_condition(_get(doc, key), condition):
            return False
    return True


def _apply_update(doc: Dict[str, Any], update: Dict[str, Any]) -> bool:
    changed = False
    for op, fields in update.items():
        for field, value in fields.items():
            if op == "$set":
                if doc.get(field, _MISSING) != value:
                    doc[field] = copy.deepcopy(value)
                    changed = True
            elif op == "$addToSet":
                current = doc.setdefault(field, [])
                if value not in current:
                    current.append(value)
                    changed = True
            else:
                raise NotImplementedError(op)
    return changed


class FakeCursor:

    def __init__(self, docs: List[Dict[str, Any]]) -> None:
        self._docs = docs

    def sort(self, keys, direction: Optional[int] = None) -> "FakeCursor":
        if isinstance(keys, str):
            keys = [(keys, direction or 1)]
        for field, order in reversed(list(keys)):
            self._docs.sort(key=lambda d: d.get(field), reverse=order < 0)
        return self

    def limit(self, n: int) -> "FakeCursor":
        self._docs = self._docs[:n]
        return self

    async def to_list(self, length: Optional[int] = None) -> List[Dict[str, Any]]:
        return self._docs if length is None else self._docs[:length]

    def __aiter__(self):
        self._iter = iter(self._docs)
        return self

    async def __anext__(self) -> Dict[str, Any]:
        try:
            return next(self._iter)
        except StopIteration:
            raise StopAsyncIteration


class FakeCollection:

    def __init__(self) -> None:
        self.docs: List[Dict[str, Any]] = []
        self.indexes: List[Any] = []

    async def create_index(self, keys, **kwargs) -> str:
        self.indexes.append(keys)
        return str(len(self.indexes))

    async def insert_one(self, doc: Dict[str, Any]):
        stored = copy.deepcopy(doc)
        stored.setdefault("_id", ObjectId())
        self.docs.append(stored)
        return SimpleNamespace(inserted_id=stored["_id"])

    def _matching(self, query: Dict[str, Any]) -> List[Dict[str, Any]]:
        return [d for d in self.docs if matches(d, query)]

    async def find_one(self, query: Dict[str, Any], projection=None) -> Optional[Dict[str, Any]]:
        found = self._matching(query)
        return copy.deepcopy(found[0]) if found else None

    def find(self, query: Optional[Dict[str, Any]] = None, projection=None) -> FakeCursor:
        docs = [copy.deepcopy(d) for d in self._matching(query or {})]
        if projection:
            keep = {k for k, v in projection.items() if v} | {"_id"}
            docs = [{k: v for k, v in d.items() if k in keep} for d in docs]
        return FakeCursor(docs)

    async def update_one(self, query, update):
        found = self._matching(query)[:1]
        modified = sum(1 for d in found if _apply_update(d, update))
        return SimpleNamespace(matched_count=len(found), modified_count=modified)

    async def update_many(self, query, update):
        found = self._matching(query)
        modified = sum(1 for d in found if _apply_update(d, update))
        return SimpleNamespace(matched_count=len(found), modified_count=modified)

    async def find_one_and_update(self, query, update, return_document=ReturnDocument.BEFORE):
        found = self._matching(query)[:1]
        if not found:
            return None
        before = copy.deepcopy(found[0])
        _apply_update(found[0], update)
        return copy.deepcopy(found[0]) if return_document == ReturnDocument.AFTER else before

    async def count_documents(self, query: Dict[str, Any]) -> int:
        return len(self._matching(query))


class FakeDatabase:

    def __init__(self) -> None:
        self._collections: Dict[str, FakeCollection] = {}

    def __getitem__(self, name: str) -> FakeCollection:
        return self._collections.setdefault(name, FakeCollection())

    def get_collection(self, name: str) -> FakeCollection:
        return self[name]

    async def list_collection_names(self) -> List[str]:
        return list(self._collections)


# --- fixtures ---

START = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class TickingClock:
    """Each call returns one second after the previous one."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + timedelta(seconds=1)
        return current


@pytest.fixture()
def db() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture()
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture()
def message_repo(db: FakeDatabase, clock: TickingClock) -> MessageRepository:
    return MessageRepository(db, clock=clock)


@pytest.fixture()
def user_repo(db: FakeDatabase) -> UserRepository:
    return UserRepository(db)


@pytest.fixture()
def chat_service(message_repo: MessageRepository) -> ChatService:
    return ChatService(message_repo)


@pytest.fixture()
def conversation_service(message_repo: MessageRepository, user_repo: UserRepository) -> ConversationService:
    return ConversationService(message_repo, user_repo)


@pytest.fixture()
def registry() -> ConnectionRegistry:
    return ConnectionRegistry()


@pytest.fixture()
def seed_users(db: FakeDatabase) -> Callable[..., None]:
    def _seed(*user_ids: str) -> None:
        for user_id in user_ids:
            db["users"].docs.append(
                {"_id": user_id, "full_name": f"User {user_id}", "username": user_id, "profile_picture": ""}
            )

    return _seed


@pytest.fixture()
def client(db: FakeDatabase, registry: ConnectionRegistry) -> Iterator[TestClient]:
    async def _db_override():
        return db

    fastapi_app.dependency_overrides[mongo_db_dependency] = _db_override
    fastapi_app.dependency_overrides[get_registry] = lambda: registry
    try:
        # no context manager: the lifespan would dial a real MongoDB
        yield TestClient(fastapi_app)
    finally:
        fastapi_app.dependency_overrides.clear()


@pytest.fixture()
def auth_headers() -> Callable[[str], Dict[str, str]]:
    def _headers(user_id: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user_id)}"}

    return _headers


class RecordingChannel:
    """Registry-compatible channel that keeps every offered event."""

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        self.events: List[Dict[str, Any]] = []
        self.closed = False

    def offer(self, event: Dict[str, Any]) -> None:
        self.events.append(event)

    def close(self) -> None:
        self.closed = True
