"""Application layer module.

Contains the services that orchestrate ingestion, persistence, caching
and object storage.
"""

from catalog_api.application.catalog_service import CatalogService, require_role
from catalog_api.application.finalizer import AttachmentFinalizer, PendingObject
from catalog_api.application.ingestion import (
    FieldPolicy,
    IngestedForm,
    UploadIngestionPipeline,
    UploadSchema,
)
from catalog_api.application.reconciliation import ReconcileResult, ReconciliationService

__all__ = [
    "AttachmentFinalizer",
    "CatalogService",
    "FieldPolicy",
    "IngestedForm",
    "PendingObject",
    "ReconcileResult",
    "ReconciliationService",
    "UploadIngestionPipeline",
    "UploadSchema",
    "require_role",
]
