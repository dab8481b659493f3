"""Datastore adapters.

The sync core only needs the narrow contract in
:class:`~gp51sync.datastore.base.Datastore`; the relational schema and
everything else about it belongs to the dashboard.
"""

from gp51sync.datastore.base import Datastore
from gp51sync.datastore.memory import InMemoryDatastore
from gp51sync.datastore.postgres import PostgresDatastore, PostgresSessionStore, create_pool

__all__ = [
    "Datastore",
    "InMemoryDatastore",
    "PostgresDatastore",
    "PostgresSessionStore",
    "create_pool",
]
