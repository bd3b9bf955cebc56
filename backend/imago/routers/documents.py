"""
Imago Occurrences - Documents Router
Public retrieval of finalized occurrence documents by name.
"""
from fastapi import APIRouter, Depends, HTTPException, Response

from ..services.occurrences import DocumentStorage, OccurrenceError
from ..services.occurrences.document_renderer import PDF_CONTENT_TYPE
from .admin import get_document_storage
from .http_errors import to_http_exception

router = APIRouter(prefix="/documents", tags=["documents"])


@router.get("/{name}")
def get_document(name: str, storage: DocumentStorage = Depends(get_document_storage)):
    try:
        content = storage.get(name)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid document name")
    except OccurrenceError as e:
        raise to_http_exception(e)

    media_type = PDF_CONTENT_TYPE if name.endswith(".pdf") else "application/octet-stream"
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'inline; filename="{name}"'},
    )
