"""
Database type compatibility layer for multiple database backends.
Handles JSON documents and IP addresses across SQLite and PostgreSQL.
"""
from sqlalchemy import TypeDecorator, String, Text
import json


class JSONB(TypeDecorator):
    """Platform-independent JSON document type.

    Stored as serialized text so SQLite and PostgreSQL behave alike.
    Accepts dicts and lists.
    """
    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, str):
            return value
        return json.dumps(value, default=str)

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, (dict, list)):
            return value
        if isinstance(value, str):
            return json.loads(value)
        return value


class INET(TypeDecorator):
    """Platform-independent INET type for IP addresses.

    Uses VARCHAR for both SQLite and PostgreSQL.
    """
    impl = String(45)
    cache_ok = True
