"""
Composed FastAPI Dependencies

Route handlers get their services from here, never by importing the
container directly. The container is attached to app.state in the lifespan.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from docdump.container import ServiceContainer
from docdump.services.documents import DocumentService
from docdump.services.ingestion import UploadIntake
from docdump.services.queries import DocumentQueryService


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_intake(container: Annotated[ServiceContainer, Depends(get_container)]) -> UploadIntake:
    return container.intake


def get_queries(container: Annotated[ServiceContainer, Depends(get_container)]) -> DocumentQueryService:
    return container.queries


def get_document_service(container: Annotated[ServiceContainer, Depends(get_container)]) -> DocumentService:
    return container.documents


# ---------------------------------------------------------------------------
# Type aliases for cleaner route signatures
# ---------------------------------------------------------------------------

Intake    = Annotated[UploadIntake,         Depends(get_intake)]
Queries   = Annotated[DocumentQueryService, Depends(get_queries)]
Documents = Annotated[DocumentService,      Depends(get_document_service)]
