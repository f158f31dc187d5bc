"""Column types for embedded documents.

Nutrition variants and shopping-list items are always read and written as a
whole, so they live in a single JSON text column next to the relational data
instead of in their own tables.
"""

from __future__ import annotations

from typing import Any

from pydantic import TypeAdapter
from sqlalchemy import Text
from sqlalchemy.engine import Dialect
from sqlalchemy.types import TypeDecorator


class EmbeddedDocument(TypeDecorator[Any]):
    """JSON text column validated through a pydantic type.

    - Bind: python value -> JSON string (None stays NULL)
    - Result: JSON string -> validated python value

    Example:
        >>> column = mapped_column(EmbeddedDocument(list[NutritionVariant]))
    """

    impl = Text
    cache_ok = True

    def __init__(self, document_type: Any) -> None:
        super().__init__()
        self.document_type = document_type
        self._adapter: TypeAdapter[Any] = TypeAdapter(document_type)

    def process_bind_param(self, value: Any, dialect: Dialect) -> str | None:
        if value is None:
            return None
        validated = self._adapter.validate_python(value)
        return self._adapter.dump_json(validated, by_alias=True).decode("utf-8")

    def process_result_value(self, value: str | None, dialect: Dialect) -> Any:
        if value is None:
            return None
        return self._adapter.validate_json(value)

    def coerce_compared_value(self, op: Any, value: Any) -> Any:
        return Text()
