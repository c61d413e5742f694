from fastapi import APIRouter, Depends, HTTPException, Request

from server.dependencies.auth import verify_api_key
from server.models.requests import SearchIndexUpdate
from shared.models.search_index import SearchIndexDefinition

router = APIRouter(prefix="/admin/indexes", tags=["indexes"])


async def _save_and_provision(request: Request, definition: SearchIndexDefinition) -> SearchIndexDefinition:
    saved = await request.app.state.store.save_search_index(definition)
    if saved.enabled:
        try:
            await request.app.state.index_service.ensure_index(saved)
        except Exception as e:
            # the definition is kept; the engine creates the index on the first write
            request.app.state.logging.warning("Provisioning index '%s' failed: %s", saved.name, e)
    return saved


@router.get("")
async def list_indexes(
    request: Request,
    _: None = Depends(verify_api_key),
) -> list[SearchIndexDefinition]:
    return await request.app.state.store.list_search_indexes()


@router.post("", status_code=201)
async def create_index(
    request: Request,
    body: SearchIndexDefinition,
    _: None = Depends(verify_api_key),
) -> SearchIndexDefinition:
    """Register a new index definition. 409 if the name is taken."""
    if await request.app.state.store.get_search_index(body.name) is not None:
        raise HTTPException(status_code=409, detail=f"Index '{body.name}' already exists")
    return await _save_and_provision(request, body)


@router.put("/{name}")
async def update_index(
    request: Request,
    name: str,
    body: SearchIndexUpdate,
    _: None = Depends(verify_api_key),
) -> SearchIndexDefinition:
    """Change enabled flag, weight and filters. Existing projections are not rewritten until the next full run."""
    if await request.app.state.store.get_search_index(name) is None:
        raise HTTPException(status_code=404, detail=f"Index '{name}' not found")
    definition = SearchIndexDefinition(name=name, **body.model_dump())
    return await _save_and_provision(request, definition)
