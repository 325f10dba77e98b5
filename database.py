"""
MongoDB store client.

The store is constructed explicitly, connected once at startup and handed to
the routes through the application state. Nothing here is a module global.
"""
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Type, TypeVar, Union

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Request
from pydantic import BaseModel, ValidationError
from pymongo import MongoClient

from settings import Settings

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class StoreNotReady(RuntimeError):
    pass


class MalformedDocument(ValueError):
    def __init__(self, collection: str, doc_id: Optional[str], errors: Any = None):
        super().__init__(f"Malformed {collection} document {doc_id}")
        self.collection = collection
        self.doc_id = doc_id
        self.errors = errors


class StaleWriteError(RuntimeError):
    def __init__(self, collection: str, doc_id: str, expected_version: Optional[int] = None):
        super().__init__(f"{collection} {doc_id} was modified by another request")
        self.collection = collection
        self.doc_id = doc_id
        self.expected_version = expected_version


def serialize_doc(doc):
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.get("_id")
    if isinstance(_id, ObjectId):
        doc["id"] = str(_id)
        del doc["_id"]
    # convert datetimes
    for k, v in list(doc.items()):
        if isinstance(v, datetime):
            doc[k] = v.isoformat()
    return doc


def to_object_id(value: str) -> Optional[ObjectId]:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def parse_document(model: Type[M], doc: Dict[str, Any], collection: str = "") -> M:
    """Validate a raw document against its schema; reject anything that does not fit."""
    data = serialize_doc(doc)
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise MalformedDocument(collection or model.__name__.lower(), data.get("id"), e.errors()) from e


def parse_documents(model: Type[M], docs: Iterable[Dict[str, Any]], collection: str = "") -> List[M]:
    """Validate a batch of documents, skipping (and logging) the ones that do not fit."""
    parsed = []
    for doc in docs:
        try:
            parsed.append(parse_document(model, doc, collection))
        except MalformedDocument as e:
            logger.warning("Skipping malformed %s document %s", e.collection, e.doc_id)
    return parsed


class MongoStore:
    def __init__(self, settings: Settings, client_factory: Callable[..., Any] = MongoClient):
        self._settings = settings
        self._client_factory = client_factory
        self._client = None
        self._db = None
        self._ready = threading.Event()
        self._lock = threading.Lock()

    def connect(self) -> "MongoStore":
        with self._lock:
            if self._ready.is_set():
                return self
            if self._settings.database_url:
                self._client = self._client_factory(self._settings.database_url)
            else:
                self._client = self._client_factory()
            self._db = self._client[self._settings.database_name]
            self._ready.set()
            logger.info("Connected to database %s", self._settings.database_name)
        return self

    def wait_ready(self, timeout: Optional[float] = None) -> bool:
        return self._ready.wait(timeout)

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set()

    @property
    def db(self):
        if not self._ready.is_set():
            raise StoreNotReady("Database not connected")
        return self._db

    def close(self) -> None:
        if self._client is not None:
            self._client.close()

    def create_document(self, collection_name: str, data: Union[BaseModel, dict]) -> str:
        if isinstance(data, BaseModel):
            doc = data.model_dump(exclude={"id"} if "id" in type(data).model_fields else None)
        else:
            doc = dict(data)
            doc.pop("id", None)
        now = datetime.now(timezone.utc)
        doc["created_at"] = now
        doc["updated_at"] = now
        result = self.db[collection_name].insert_one(doc)
        return str(result.inserted_id)

    def get_documents(self, collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None,
                      sort: Optional[list] = None) -> List[dict]:
        cursor = self.db[collection_name].find(filter_dict or {})
        if sort:
            cursor = cursor.sort(sort)
        if limit:
            cursor = cursor.limit(limit)
        return list(cursor)

    def find_by_id(self, collection_name: str, doc_id: str) -> Optional[dict]:
        oid = to_object_id(doc_id)
        if oid is None:
            return None
        return self.db[collection_name].find_one({"_id": oid})

    def find_one(self, collection_name: str, filter_dict: dict) -> Optional[dict]:
        return self.db[collection_name].find_one(filter_dict)

    def update_document(self, collection_name: str, doc_id: str, changes: dict,
                        expected_version: Optional[int] = None, expected: Optional[dict] = None) -> bool:
        """Apply ``changes`` and bump ``version``.

        With ``expected_version`` (or ``expected`` field values) the write only
        lands if the stored document still matches; otherwise StaleWriteError
        is raised. Returns False when the document does not exist.
        """
        oid = to_object_id(doc_id)
        if oid is None:
            return False
        changes = {k: v for k, v in changes.items() if k not in ("_id", "id", "version")}
        filt: Dict[str, Any] = {"_id": oid, **(expected or {})}
        if expected_version is not None:
            filt["version"] = expected_version
        update = {
            "$set": {**changes, "updated_at": datetime.now(timezone.utc)},
            "$inc": {"version": 1},
        }
        res = self.db[collection_name].update_one(filt, update)
        if res.matched_count:
            return True
        guarded = expected_version is not None or bool(expected)
        if guarded and self.db[collection_name].count_documents({"_id": oid}):
            raise StaleWriteError(collection_name, doc_id, expected_version)
        return False

    def count(self, collection_name: str, filter_dict: Optional[dict] = None) -> int:
        return self.db[collection_name].count_documents(filter_dict or {})


def get_store(request: Request) -> MongoStore:
    return request.app.state.store
