"""
Record storage for the School Records API.

A ``Store`` holds one ``Collection`` per entity. Two backends implement the
same contract:

- ``MemoryStore``: plain dicts, one lock per collection around id assignment
  and writes. Reads take a snapshot of the dict and never wait on writers.
- ``MongoStore``: one MongoDB collection per entity. Ids come from an atomic
  ``$inc`` on the ``counters`` collection and unique keys are backed by
  unique indexes.

Records are the pydantic models from ``schemas``. Writes never mutate a stored
record in place; an update stores a new model instance.
"""

import datetime as dt
import itertools
import logging
import threading
from typing import Any, Callable, Dict, List, Mapping, NamedTuple, Optional, Tuple, Type, Union

from pydantic import BaseModel
from pydantic_core import to_jsonable_python
from pymongo import ASCENDING, MongoClient, ReturnDocument
from pymongo.errors import DuplicateKeyError

from errors import DuplicateRecordError
from schemas import Activity, Attendance, Class, ClassEnrollment, Event, Grade, Student, Teacher, User
from seed import seed_sample_data

logger = logging.getLogger(__name__)

Clock = Callable[[], dt.datetime]


class CollectionSpec(NamedTuple):
    name: str
    record_model: Type[BaseModel]
    unique: Tuple[Tuple[str, ...], ...] = ()
    newest_first: bool = False


COLLECTIONS: Dict[str, CollectionSpec] = {
    spec.name: spec
    for spec in (
        CollectionSpec("users", User, (("username",), ("email",))),
        CollectionSpec("students", Student, (("student_id",),)),
        CollectionSpec("teachers", Teacher, (("teacher_id",), ("email",))),
        CollectionSpec("classes", Class, (("class_code",),)),
        CollectionSpec("class_enrollments", ClassEnrollment, (("class_id", "student_id"),)),
        CollectionSpec("attendance", Attendance),
        CollectionSpec("grades", Grade),
        CollectionSpec("events", Event),
        CollectionSpec("activities", Activity, newest_first=True),
    )
}

CASCADE = "cascade"
DETACH = "detach"

# parent collection -> (dependent collection, foreign key, policy)
DEPENDENTS: Dict[str, Tuple[Tuple[str, str, str], ...]] = {
    "students": (
        ("class_enrollments", "student_id", CASCADE),
        ("attendance", "student_id", CASCADE),
        ("grades", "student_id", CASCADE),
    ),
    "classes": (
        ("class_enrollments", "class_id", CASCADE),
        ("attendance", "class_id", CASCADE),
        ("grades", "class_id", CASCADE),
    ),
    "teachers": (("classes", "teacher_id", DETACH),),
    "users": (("teachers", "user_id", DETACH),),
}

# Fields the store assigns; callers cannot set or change them
SERVER_FIELDS = ("id", "timestamp")


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def calendar_day(value: Any) -> Any:
    """Truncate datetimes to their date; other values pass through."""
    if isinstance(value, dt.datetime):
        return value.date()
    return value


def _values(data: Union[BaseModel, Mapping[str, Any]]) -> Dict[str, Any]:
    if isinstance(data, BaseModel):
        data = data.model_dump()
    return {k: v for k, v in data.items() if k not in SERVER_FIELDS}


class Collection:
    """Storage contract shared by both backends."""

    def __init__(self, spec: CollectionSpec, clock: Clock = utcnow):
        self.spec = spec
        self.clock = clock

    @property
    def name(self) -> str:
        return self.spec.name

    def _build(self, record_id: int, values: Dict[str, Any]) -> BaseModel:
        data = dict(values, id=record_id)
        if "timestamp" in self.spec.record_model.model_fields:
            data["timestamp"] = self.clock()
        return self.spec.record_model.model_validate(data)

    def _merge(self, current: BaseModel, fields: Mapping[str, Any]) -> BaseModel:
        data = current.model_dump()
        data.update(_values(fields))
        return self.spec.record_model.model_validate(data)

    def _ordered(self, records: List[BaseModel]) -> List[BaseModel]:
        if self.spec.newest_first:
            return sorted(records, key=lambda r: (r.timestamp, r.id), reverse=True)
        return records

    def create(self, data):
        raise NotImplementedError

    def get(self, record_id: int):
        raise NotImplementedError

    def get_by(self, field: str, value: Any):
        raise NotImplementedError

    def list(self):
        raise NotImplementedError

    def find(self, **criteria):
        raise NotImplementedError

    def update(self, record_id: int, fields: Mapping[str, Any]):
        raise NotImplementedError

    def delete(self, record_id: int) -> bool:
        raise NotImplementedError

    def count(self) -> int:
        raise NotImplementedError


class MemoryCollection(Collection):
    def __init__(self, spec: CollectionSpec, clock: Clock = utcnow):
        super().__init__(spec, clock)
        self._rows: Dict[int, BaseModel] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()
        # unique key fields -> {key values: record id}
        self._indexes: Dict[Tuple[str, ...], Dict[Tuple[Any, ...], int]] = {
            fields: {} for fields in spec.unique
        }

    def _check_unique(self, record: BaseModel):
        for fields, index in self._indexes.items():
            key = tuple(getattr(record, f) for f in fields)
            owner = index.get(key)
            if owner is not None and owner != record.id:
                raise DuplicateRecordError(self.name, fields, key if len(key) > 1 else key[0])

    def _index(self, record: BaseModel):
        for fields, index in self._indexes.items():
            index[tuple(getattr(record, f) for f in fields)] = record.id

    def _unindex(self, record: BaseModel):
        for fields, index in self._indexes.items():
            index.pop(tuple(getattr(record, f) for f in fields), None)

    def create(self, data):
        values = _values(data)
        with self._lock:
            # placeholder id so a rejected write burns no id
            candidate = self._build(0, values)
            self._check_unique(candidate)
            record = candidate.model_copy(update={"id": next(self._ids)})
            self._rows[record.id] = record
            self._index(record)
        return record

    def get(self, record_id: int):
        return self._rows.get(record_id)

    def get_by(self, field: str, value: Any):
        index = self._indexes.get((field,))
        if index is not None:
            record_id = index.get((value,))
            return None if record_id is None else self._rows.get(record_id)
        for record in self.list():
            if getattr(record, field) == value:
                return record
        return None

    def list(self):
        return self._ordered(list(self._rows.values()))

    def find(self, **criteria):
        wanted = {f: calendar_day(v) for f, v in criteria.items()}
        return [
            record
            for record in self.list()
            if all(calendar_day(getattr(record, f)) == v for f, v in wanted.items())
        ]

    def update(self, record_id: int, fields: Mapping[str, Any]):
        with self._lock:
            current = self._rows.get(record_id)
            if current is None:
                return None
            record = self._merge(current, fields)
            self._check_unique(record)
            self._unindex(current)
            self._rows[record_id] = record
            self._index(record)
        return record

    def delete(self, record_id: int) -> bool:
        with self._lock:
            record = self._rows.pop(record_id, None)
            if record is None:
                return False
            self._unindex(record)
        return True

    def count(self) -> int:
        return len(self._rows)


class MongoCollection(Collection):
    def __init__(self, spec: CollectionSpec, db, clock: Clock = utcnow):
        super().__init__(spec, clock)
        self._docs = db[spec.name]
        self._counters = db["counters"]
        for fields in spec.unique:
            self._docs.create_index([(f, ASCENDING) for f in fields], unique=True)

    def _next_id(self) -> int:
        counter = self._counters.find_one_and_update(
            {"_id": self.name},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return counter["seq"]

    @staticmethod
    def _encode(record: BaseModel) -> Dict[str, Any]:
        doc = record.model_dump(mode="json")
        doc["_id"] = doc.pop("id")
        return doc

    def _decode(self, doc: Optional[Mapping[str, Any]]):
        if not doc:
            return None
        data = dict(doc)
        data["id"] = data.pop("_id")
        return self.spec.record_model.model_validate(data)

    def _check_unique(self, doc: Mapping[str, Any], record_id: Optional[int] = None):
        for fields in self.spec.unique:
            query: Dict[str, Any] = {f: doc.get(f) for f in fields}
            if record_id is not None:
                query["_id"] = {"$ne": record_id}
            if self._docs.find_one(query, {"_id": 1}) is not None:
                key = tuple(doc.get(f) for f in fields)
                raise DuplicateRecordError(self.name, fields, key if len(key) > 1 else key[0])

    def _duplicate(self, exc: DuplicateKeyError) -> DuplicateRecordError:
        pattern = (exc.details or {}).get("keyPattern") or {}
        fields = tuple(pattern) or (self.spec.unique[0] if self.spec.unique else ("_id",))
        return DuplicateRecordError(self.name, fields, None)

    def create(self, data):
        values = _values(data)
        candidate = self._build(0, values)
        self._check_unique(self._encode(candidate))
        record = candidate.model_copy(update={"id": self._next_id()})
        try:
            self._docs.insert_one(self._encode(record))
        except DuplicateKeyError as exc:
            raise self._duplicate(exc) from exc
        return record

    def get(self, record_id: int):
        return self._decode(self._docs.find_one({"_id": record_id}))

    def get_by(self, field: str, value: Any):
        return self._decode(self._docs.find_one({field: to_jsonable_python(value)}))

    def list(self):
        return self._ordered([self._decode(d) for d in self._docs.find().sort("_id", ASCENDING)])

    def find(self, **criteria):
        query = {f: to_jsonable_python(calendar_day(v)) for f, v in criteria.items()}
        return self._ordered([self._decode(d) for d in self._docs.find(query).sort("_id", ASCENDING)])

    def update(self, record_id: int, fields: Mapping[str, Any]):
        current = self.get(record_id)
        if current is None:
            return None
        changes = _values(fields)
        if not changes:
            return current
        doc = self._encode(self._merge(current, changes))
        self._check_unique(doc, record_id)
        try:
            updated = self._docs.find_one_and_update(
                {"_id": record_id},
                {"$set": {k: doc[k] for k in changes}},
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError as exc:
            raise self._duplicate(exc) from exc
        return self._decode(updated)

    def delete(self, record_id: int) -> bool:
        return self._docs.delete_one({"_id": record_id}).deleted_count == 1

    def count(self) -> int:
        return self._docs.count_documents({})


class Store:
    kind = "base"

    users: Collection
    students: Collection
    teachers: Collection
    classes: Collection
    class_enrollments: Collection
    attendance: Collection
    grades: Collection
    events: Collection
    activities: Collection

    def __init__(self, collections: Dict[str, Collection]):
        self._collections = collections
        for name, collection in collections.items():
            setattr(self, name, collection)

    def __getitem__(self, name: str) -> Collection:
        return self._collections[name]

    def __contains__(self, name: str) -> bool:
        return name in self._collections

    @property
    def names(self) -> List[str]:
        return list(self._collections)

    def counts(self) -> Dict[str, int]:
        return {name: c.count() for name, c in self._collections.items()}

    def delete(self, name: str, record_id: int) -> bool:
        """Delete a record and apply the referential policy to its dependents.

        Students and classes take their enrollments, attendance and grades
        with them. Classes of a deleted teacher and teachers of a deleted user
        are detached (foreign key set to null). Each step is a single-record
        write; there is no surrounding transaction.
        """
        if not self[name].delete(record_id):
            return False
        for dependent, foreign_key, policy in DEPENDENTS.get(name, ()):
            collection = self[dependent]
            for record in collection.find(**{foreign_key: record_id}):
                if policy == CASCADE:
                    collection.delete(record.id)
                else:
                    collection.update(record.id, {foreign_key: None})
            logger.debug("%s %s %s rows of %s %s", policy, dependent, foreign_key, name, record_id)
        return True


class MemoryStore(Store):
    kind = "memory"

    def __init__(self, clock: Clock = utcnow):
        super().__init__({name: MemoryCollection(spec, clock) for name, spec in COLLECTIONS.items()})


class MongoStore(Store):
    kind = "mongodb"

    def __init__(self, db, clock: Clock = utcnow):
        self.db = db
        super().__init__({name: MongoCollection(spec, db, clock) for name, spec in COLLECTIONS.items()})


def create_store(settings) -> Store:
    """Build the configured store, seeding it with demo data when asked.

    ``DATABASE_URL`` selects MongoDB; without it the store lives in memory.
    Seeding only runs against a store with no users.
    """
    if settings.database_url:
        client = MongoClient(settings.database_url)
        store: Store = MongoStore(client[settings.database_name])
        logger.info("Using MongoDB database %s", settings.database_name)
    else:
        store = MemoryStore()
        logger.info("Using in-memory store")
    if settings.seed_sample_data and store.users.count() == 0:
        seed_sample_data(store)
        logger.info("Seeded sample data: %s", store.counts())
    return store
