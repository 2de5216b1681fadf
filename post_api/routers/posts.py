"""Post CRUD routes.

Each operation is reachable under the paths older clients still call
(``/posts``, ``/api/posts``, ``/create-post`` and friends).
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse

from post_api.core.errors import PostValidationError
from post_api.db.store import FlatFileStore, get_store
from post_api.schemas.post import MessageResponse, PostListResponse, PostQuery
from post_api.services import post_service
from post_api.services.image_service import ImageIngestor, get_image_ingestor
from post_api.services.request_payload import parse_request_payload

router = APIRouter()

StoreDep = Annotated[FlatFileStore, Depends(get_store)]
IngestorDep = Annotated[ImageIngestor, Depends(get_image_ingestor)]


@router.get("/posts")
@router.get("/api/posts")
def list_posts(
    store: StoreDep,
    type: Annotated[str | None, Query()] = None,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
    search: Annotated[str | None, Query()] = None,
    page: Annotated[int, Query()] = 1,
    items_per_page: Annotated[int, Query(alias="itemsPerPage")] = 10,
):
    query = PostQuery(
        type=type,
        status=status_filter,
        search=search,
        page=page,
        items_per_page=items_per_page,
    )
    posts, total = post_service.list_posts(store, query)
    body = PostListResponse(posts=[post.to_record() for post in posts], total=total)
    return JSONResponse(body.model_dump())


@router.get("/posts/{post_id}")
@router.get("/api/posts/{post_id}")
def get_post(post_id: str, store: StoreDep):
    return JSONResponse(post_service.get_post(store, post_id).to_record())


@router.post("/posts")
@router.post("/api/posts")
@router.post("/create-post")
@router.post("/api/create-post")
async def create_post(request: Request, store: StoreDep, ingestor: IngestorDep):
    payload = await parse_request_payload(request)
    post = await post_service.create_post(store, payload, ingestor)
    return JSONResponse(post.to_record(), status_code=status.HTTP_201_CREATED)


@router.put("/posts/{post_id}")
@router.put("/api/posts/{post_id}")
async def update_post(post_id: str, request: Request, store: StoreDep, ingestor: IngestorDep):
    payload = await parse_request_payload(request)
    post = await post_service.update_post(store, post_id, payload, ingestor)
    return JSONResponse(post.to_record())


@router.put("/update-post")
@router.put("/api/update-post")
async def update_post_by_query(
    request: Request,
    store: StoreDep,
    ingestor: IngestorDep,
    id: Annotated[str | None, Query()] = None,
):
    return await update_post(_require_post_id(id), request, store, ingestor)


@router.delete("/posts/{post_id}")
@router.delete("/api/posts/{post_id}")
async def delete_post(post_id: str, store: StoreDep, ingestor: IngestorDep):
    await post_service.delete_post(store, post_id, ingestor)
    return JSONResponse(MessageResponse(message="Post deleted").model_dump())


@router.delete("/delete-post")
@router.delete("/api/delete-post")
async def delete_post_by_query(
    store: StoreDep,
    ingestor: IngestorDep,
    id: Annotated[str | None, Query()] = None,
):
    return await delete_post(_require_post_id(id), store, ingestor)


def _require_post_id(post_id: str | None) -> str:
    if not post_id:
        raise PostValidationError("Post ID is required")
    return post_id
