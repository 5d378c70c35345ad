"""
Merchant onboarding: connection (signup) URL for the admin UI.
"""
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Query

from api.dependencies import get_acting_user_id, get_connection_url_generator
from application.services.connection_url import ConnectionUrlGenerator
from core.response import success_response


router = APIRouter(prefix="/onboarding", tags=["Onboarding"])


@router.get("/connection-url")
async def connection_url(
    products: List[str] = Query(default=[]),
    user_id: int = Depends(get_acting_user_id),
    generator: ConnectionUrlGenerator = Depends(get_connection_url_generator),
):
    url = await generator.generate(products, user_id)
    # empty url: try again later
    return success_response(
        data={"url": url, "environment": generator.environment()},
        message="Success" if url else "Connection URL unavailable, try again later",
    )
