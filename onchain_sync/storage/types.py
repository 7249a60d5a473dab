from sqlalchemy import Numeric, String
from sqlalchemy.types import TypeDecorator


class BigUint(TypeDecorator):
    """uint256 column.

    NUMERIC(78, 0) on PostgreSQL, decimal text everywhere else (SQLite would
    otherwise round big values through a float). Always returns ``int``.
    """

    impl = String(80)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(Numeric(78, 0))
        return dialect.type_descriptor(String(80))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if dialect.name == "postgresql":
            return int(value)
        return str(int(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return int(value)
