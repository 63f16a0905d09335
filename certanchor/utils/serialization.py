"""
Turn stored certificate documents into JSON-ready response payloads.
"""

from datetime import datetime
from typing import Any, Dict

from bson import ObjectId

HIDDEN_FIELDS = ("_id",)


def to_jsonable(value: Any) -> Any:
    """ObjectIds become strings and datetimes ISO 8601, recursively through dicts and lists."""
    if isinstance(value, dict):
        return {key: to_jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(item) for item in value]
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def serialize_document(document: Dict[str, Any]) -> Dict[str, Any]:
    """Drop Mongo-internal keys from a certificate document and make it JSON-ready."""
    return to_jsonable({key: value for key, value in document.items() if key not in HIDDEN_FIELDS})
