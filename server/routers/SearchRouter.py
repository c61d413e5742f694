from fastapi import APIRouter, Depends, Request

from server.dependencies.auth import verify_api_key
from shared.models.search import SearchRequest, SearchResponse

router = APIRouter(tags=["search"])


@router.post("/search")
async def search_documents(
    request: Request,
    body: SearchRequest,
    _: None = Depends(verify_api_key),
) -> SearchResponse:
    """Relevance search over the enabled indexes, reconciled against the store.

    Args:
        request (Request): FastAPI request (provides app.state.retrieval_service).
        body (SearchRequest): Query, optional path scopes, index and limit.
        _ (None): Auth dependency result (unused).

    Returns:
        SearchResponse: Results by descending weighted relevance.
    """
    return await request.app.state.retrieval_service.search(
        body.query,
        scopes=body.scopes,
        limit=body.limit,
        index_name=body.index_name,
    )


@router.post("/admin/search-debug")
async def search_debug(
    request: Request,
    body: SearchRequest,
    _: None = Depends(verify_api_key),
) -> SearchResponse:
    """Same as /search, plus the engine filter, raw hit ids, dropped ids and timings."""
    return await request.app.state.retrieval_service.search(
        body.query,
        scopes=body.scopes,
        limit=body.limit,
        index_name=body.index_name,
        debug=True,
    )
