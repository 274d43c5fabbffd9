"""SQLite persistence for loads, bids, negotiation messages, and invoices.

Provides the shared ``Database`` (connection + transaction scope) and one
repository per aggregate.
"""

from freight.store.accounts import SqliteAccountDirectory
from freight.store.database import Database
from freight.store.invoices import InvoiceRepository
from freight.store.loads import LoadRepository
from freight.store.negotiation import BidRepository, NegotiationLog
from freight.store.schema import init_schema

__all__ = [
    "BidRepository",
    "Database",
    "InvoiceRepository",
    "LoadRepository",
    "NegotiationLog",
    "SqliteAccountDirectory",
    "init_schema",
]
