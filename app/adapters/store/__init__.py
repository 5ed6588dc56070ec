"""Document store adapters (DynamoDB and in-memory)."""

from app.adapters.store.base import AbstractDocumentStore, TableSchema, Tables
from app.adapters.store.factory import create_document_store

__all__ = ["AbstractDocumentStore", "TableSchema", "Tables", "create_document_store"]
