"""Factory pattern for creating document store instances."""

from app.adapters.store.base import AbstractDocumentStore, Tables
from app.adapters.store.dynamodb import DynamoDBDocumentStore
from app.adapters.store.in_memory import InMemoryDocumentStore
from app.core.config import StoreSettings, settings
from app.core.errors import ValidationAppError


def create_document_store(store_settings: StoreSettings | None = None) -> AbstractDocumentStore:
    """Instantiate the document store selected by ``STORE_BACKEND``.

    Returns:
        AbstractDocumentStore: Configured store instance.

    Raises:
        ValidationAppError: If the backend name is unknown.
    """
    cfg = store_settings or settings.store
    backend = cfg.backend.lower()

    if backend == "memory":
        return InMemoryDocumentStore(Tables.from_settings(cfg).all())

    if backend == "dynamodb":
        return DynamoDBDocumentStore.from_settings(cfg)

    raise ValidationAppError(
        code="store_unknown_backend",
        message=f"Unknown store backend: '{backend}'. Supported backends: memory, dynamodb",
    )
