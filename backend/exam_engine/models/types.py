"""Custom SQLAlchemy types shared by the exam models.

Column types here behave the same on PostgreSQL (production) and SQLite
(tests).
"""

import enum
import json
from typing import Any, List, Optional, Type

from sqlalchemy import Enum, Integer, Text, TypeDecorator
from sqlalchemy.dialects.postgresql import ARRAY


def value_enum(enum_cls: Type[enum.Enum], length: int = 32) -> Enum:
    """
    Enum column type that stores the member *value* as a plain string.

    SQLAlchemy stores enum names by default. Storing values keeps the raw
    column readable (``'active'`` rather than ``'ACTIVE'``) so partial index
    predicates and ad-hoc SQL can compare against the lowercase literals.
    """
    return Enum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        validate_strings=True,
        length=length,
    )


class IdList(TypeDecorator):
    """
    An ordered list of integer ids.

    - On PostgreSQL: native ARRAY(Integer)
    - On SQLite: JSON text

    Used for ``ExamSession.question_order``, which is written once at
    session creation and never updated.
    """

    impl = Text
    cache_ok = True

    def load_dialect_impl(self, dialect):
        """Choose implementation based on database dialect."""
        if dialect.name == "postgresql":
            return dialect.type_descriptor(ARRAY(Integer))
        return dialect.type_descriptor(Text())

    def process_bind_param(self, value: Optional[List[int]], dialect) -> Any:
        """Convert Python list to database format."""
        if value is None:
            return None
        value = [int(v) for v in value]
        if dialect.name == "postgresql":
            return value
        return json.dumps(value)

    def process_result_value(self, value: Any, dialect) -> Optional[List[int]]:
        """Convert database value to Python list."""
        if value is None:
            return None
        if dialect.name == "postgresql":
            return list(value)
        return json.loads(value)
