from fastapi import APIRouter, Depends, Query, status

from shortlink_app.dependencies import get_url_service
from shortlink_app.schemas.url import (
    AnalyticsResponse,
    BulkResponse,
    BulkURLCreate,
    DeleteResponse,
    URLCreate,
    URLDetail,
    URLList,
    URLResponse,
    URLUpdate,
)
from shortlink_app.security import get_optional_owner, require_owner
from shortlink_app.services.url_service import URLService

router = APIRouter(prefix="/urls", tags=["urls"])


@router.post("", response_model=URLResponse, status_code=status.HTTP_201_CREATED)
async def create_short_url(
    url_data: URLCreate,
    owner: str = Depends(get_optional_owner),
    url_service: URLService = Depends(get_url_service)
):
    """Create a short URL. Anonymous callers are allowed."""
    return await url_service.create_short_url(url_data, owner=owner)


@router.post("/bulk", response_model=BulkResponse)
async def create_bulk(
    payload: BulkURLCreate,
    owner: str = Depends(require_owner),
    url_service: URLService = Depends(get_url_service)
):
    """Create many short URLs; each item succeeds or fails on its own"""
    results, errors = await url_service.create_bulk(payload.urls, owner=owner)
    return BulkResponse(
        results=[URLResponse.model_validate(link) for link in results],
        errors=errors,
    )


@router.get("", response_model=URLList)
async def list_urls(
    page: int = Query(1, ge=1),
    limit: int = Query(None, ge=1),
    owner: str = Depends(require_owner),
    url_service: URLService = Depends(get_url_service)
):
    items, page, limit = await url_service.list_urls(owner, page=page, limit=limit)
    return {"urls": items, "page": page, "limit": limit}


@router.get("/{link_id}/analytics", response_model=AnalyticsResponse)
async def get_analytics(
    link_id: str,
    owner: str = Depends(require_owner),
    url_service: URLService = Depends(get_url_service)
):
    link, snapshot, recent = await url_service.get_analytics(link_id, owner)
    return {"url": link, "analytics": snapshot, "recent_clicks": recent}


@router.put("/{link_id}", response_model=URLDetail)
async def update_url(
    link_id: str,
    changes: URLUpdate,
    owner: str = Depends(require_owner),
    url_service: URLService = Depends(get_url_service)
):
    return await url_service.update_url(link_id, owner, changes)


@router.delete("/{link_id}", response_model=DeleteResponse)
async def delete_url(
    link_id: str,
    owner: str = Depends(require_owner),
    url_service: URLService = Depends(get_url_service)
):
    """Soft delete: the code stops resolving, analytics are kept"""
    await url_service.delete_url(link_id, owner)
    return DeleteResponse(message="URL deleted successfully")
