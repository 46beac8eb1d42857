"""Document upload API routes."""

from typing import Annotated

import asyncpg
from fastapi import APIRouter, Depends, File, Form, UploadFile

from electoral.api.deps import CurrentUserDep, HierarchyDep
from electoral.core.config import get_settings
from electoral.core.database import get_db
from electoral.core.responses import success_response
from electoral.services import gateway

router = APIRouter(prefix="/documents", tags=["Documents"])


@router.post("/{node_code}")
async def upload_document(
    node_code: int,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    hierarchy: HierarchyDep,
    current_user: CurrentUserDep,
    file: UploadFile = File(...),
    document_type: str = Form(...),
    libelle: str | None = Form(None),
):
    """
    Upload a PV or supporting document for a department or arrondissement.

    **Document types:**
    - ``pv_departement``: filed against a department
    - ``pv_arrondissement``, ``document_arrondissement``: filed against an arrondissement
    """
    # one byte past the limit is enough to reject an oversized upload
    max_bytes = get_settings().MAX_DOCUMENT_SIZE_MB * 1024 * 1024
    content = await file.read(max_bytes + 1)
    document = await gateway.register_document(
        conn,
        hierarchy,
        current_user,
        node_code,
        document_type=document_type,
        filename=file.filename or "document",
        content=content,
        content_type=file.content_type,
        libelle=libelle,
    )
    return success_response(data=document, message="Document uploaded")


@router.get("/{node_code}")
async def list_documents(
    node_code: int,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    hierarchy: HierarchyDep,
    current_user: CurrentUserDep,
    document_type: str | None = None,
):
    """Documents filed at or below a node, newest first."""
    documents = await gateway.list_documents(
        conn, hierarchy, current_user, node_code, document_type
    )
    return success_response(data=documents)
