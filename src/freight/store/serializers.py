"""Row <-> model conversion for the SQLite store.

Decimals are stored as strings so no precision is lost, datetimes as ISO 8601
strings, enums by value, and list/dict columns as JSON.  Reading back goes
through pydantic validation, which turns those strings into the right types.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, TypeVar

from pydantic import BaseModel

ModelT = TypeVar("ModelT", bound=BaseModel)


class _DecimalEncoder(json.JSONEncoder):
    """JSON encoder that converts Decimal values to strings."""

    def default(self, o: object) -> Any:
        if isinstance(o, Decimal):
            return str(o)
        if isinstance(o, datetime):
            return o.isoformat()
        return super().default(o)


def dumps_json(value: Any) -> str:
    """JSON-encode *value*, converting Decimals to strings."""
    return json.dumps(value, cls=_DecimalEncoder)


def to_db(value: Any) -> Any:
    """Convert a Python value to something sqlite3 can bind.

    Args:
        value: A model field value.

    Returns:
        ``str`` for Decimal/datetime/enum, JSON text for containers and
        nested models, ``int`` for bools, otherwise the value itself.
    """
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, BaseModel):
        return dumps_json(value.model_dump())
    if isinstance(value, (list, dict)):
        return dumps_json(value)
    return value


def model_to_row(model: BaseModel) -> dict[str, Any]:
    """Flatten a model into a column -> bindable value dict."""
    return {name: to_db(getattr(model, name)) for name in type(model).model_fields}


def row_to_model(row: sqlite3.Row, model: type[ModelT], json_columns: tuple[str, ...] = ()) -> ModelT:
    """Build a validated model from a database row.

    Args:
        row: A row fetched with ``sqlite3.Row`` as row factory.
        model: The pydantic model class to build.
        json_columns: Columns holding JSON text to decode first.

    Returns:
        A validated instance of *model*.
    """
    data = dict(row)
    for column in json_columns:
        if data.get(column) is not None:
            data[column] = json.loads(data[column])
    return model.model_validate(data)
