"""
Indexing API endpoints.
"""

from pathlib import Path

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from semantic_search.dependencies import IndexingInProgressError, ServiceContainer, get_container
from semantic_search.models.search import IndexRequest, IndexResponse
from semantic_search.services.store import StoreError
from semantic_search.utils.logger import get_logger

router = APIRouter(tags=["index"])
logger = get_logger(__name__)


@router.post("/index", response_model=IndexResponse)
async def index_project(
    request: IndexRequest,
    container: ServiceContainer = Depends(get_container),
):
    """
    Index a project root for semantic search.

    Runs in the background unless wait=true. Re-indexing is idempotent.
    """
    root = Path(request.root).expanduser() if request.root else container.settings.project_root
    if not root.exists():
        raise HTTPException(status_code=404, detail=f"Path not found: {root}")

    if not request.wait:
        try:
            container.start_background_index(root, prune=request.prune)
        except IndexingInProgressError as e:
            raise HTTPException(status_code=409, detail=str(e))
        response = IndexResponse(accepted=True, root=str(root), message="Indexing started in the background.")
        return JSONResponse(status_code=202, content=response.model_dump(mode="json"))

    try:
        report = await container.run_index(root, prune=request.prune)
    except IndexingInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except StoreError as e:
        logger.error("indexing_failed", root=str(root), error=str(e))
        raise HTTPException(status_code=503, detail=f"Indexing failed: {e}")

    return IndexResponse(
        accepted=True,
        root=report.root,
        message=f"Indexed {report.chunks_upserted} chunks from {report.files_indexed} files.",
        report=report,
    )
