from typing import Any, Dict, Iterable, List, Mapping, Tuple


class RecordError(Exception):
    """Base class for errors the API reports to callers."""


class RecordValidationError(RecordError):
    def __init__(self, message: str, fields: Mapping[str, List[str]]):
        super().__init__(message)
        self.message = message
        self.fields = dict(fields)

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, "fields": self.fields}


class RecordNotFoundError(RecordError):
    def __init__(self, kind: str, record_id: int):
        super().__init__(f"{kind} not found")
        self.kind = kind
        self.record_id = record_id


class AuthenticationError(RecordError):
    pass


class DuplicateRecordError(Exception):
    """Raised by the store when a write would repeat a unique key."""

    def __init__(self, collection: str, fields: Tuple[str, ...], value: Any):
        super().__init__(f"{collection}: duplicate {'/'.join(fields)} {value!r}")
        self.collection = collection
        self.fields = fields
        self.value = value


# Request locations FastAPI prefixes onto error locs
_LOCATIONS = ("body", "query", "path", "header")


def field_errors(errors: Iterable[Mapping[str, Any]]) -> Dict[str, List[str]]:
    """Group pydantic error dicts by dotted field path."""
    grouped: Dict[str, List[str]] = {}
    for err in errors:
        loc = list(err.get("loc", ()))
        if loc and loc[0] in _LOCATIONS:
            loc = loc[1:] or loc
        key = ".".join(str(part) for part in loc) or "body"
        grouped.setdefault(key, []).append(err.get("msg", "Invalid value"))
    return grouped
