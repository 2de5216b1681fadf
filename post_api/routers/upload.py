"""Standalone image upload route."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from post_api.schemas.post import UploadResponse
from post_api.services import post_service
from post_api.services.image_service import ImageIngestor, get_image_ingestor
from post_api.services.request_payload import parse_request_payload

router = APIRouter()


@router.post("/upload")
@router.post("/api/upload")
async def upload_file(
    request: Request,
    ingestor: Annotated[ImageIngestor, Depends(get_image_ingestor)],
):
    payload = await parse_request_payload(request)
    stored = await post_service.upload_image(payload, ingestor)
    body = UploadResponse(url=stored.url, filename=stored.filename)
    return JSONResponse(body.model_dump())
