"""
Repositórios para acesso a dados.
Fact stores (PostgreSQL and pandas) and identifier resolvers.
"""

from .identifier_resolver import (
    MemoryIdentifierResolver,
    PassthroughIdentifierResolver,
    SqlIdentifierResolver,
)
from .memory_fact_store import MemoryFactStore
from .sql_fact_store import SqlFactStore

__all__ = [
    "MemoryFactStore",
    "SqlFactStore",
    "MemoryIdentifierResolver",
    "PassthroughIdentifierResolver",
    "SqlIdentifierResolver",
]
