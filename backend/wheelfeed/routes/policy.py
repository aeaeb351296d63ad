"""
Import policy routes.

Hidden categories (brands excluded from import, with bulk deactivate and
restore) and the broken image list fed by the probe and the storefront.
"""

from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ..services.category_policy import BULK_ACTIONS
from ..services.config import ImportSettings
from ..services.database import db_pool
from ..services.image_probe import ImageProbe
from .deps import get_settings, importer_for


router = APIRouter(prefix="/api/policy", tags=["policy"])


class HiddenCategoriesRequest(BaseModel):
    categories: List[str]


class HiddenCategoriesResponse(BaseModel):
    categories: List[str]
    configured: List[str]


class BulkActionResponse(BaseModel):
    action: str
    changed: int
    categories: List[str]


class BrokenImage(BaseModel):
    url: str
    detected_at: Optional[str] = None


class BrokenImagesResponse(BaseModel):
    images: List[BrokenImage]
    total: int


class MarkBrokenRequest(BaseModel):
    url: str


@router.get("/hidden-categories", response_model=HiddenCategoriesResponse)
def get_hidden_categories(settings: ImportSettings = Depends(get_settings)):
    """Categories skipped during import (environment plus saved list)."""
    try:
        with db_pool.get_connection() as conn:
            policy = importer_for(conn, settings).policy
            categories = policy.get_hidden_categories()
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to load policy: {str(e)}")

    return HiddenCategoriesResponse(categories=categories, configured=policy.configured)


@router.put("/hidden-categories", response_model=HiddenCategoriesResponse)
def set_hidden_categories(request: HiddenCategoriesRequest,
                          settings: ImportSettings = Depends(get_settings)):
    """Replace the saved hidden category list."""
    try:
        with db_pool.get_connection() as conn:
            policy = importer_for(conn, settings).policy
            categories = policy.set_hidden_categories(request.categories)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to save policy: {str(e)}")

    return HiddenCategoriesResponse(categories=categories, configured=policy.configured)


@router.post("/hidden-categories/{action}", response_model=BulkActionResponse)
def apply_bulk_action(action: str, settings: ImportSettings = Depends(get_settings)):
    """Deactivate or restore every wheel in a hidden category."""
    if action not in BULK_ACTIONS:
        raise HTTPException(
            status_code=400,
            detail=f"Unknown action '{action}'. Use one of: {', '.join(BULK_ACTIONS)}"
        )

    try:
        with db_pool.get_connection() as conn:
            policy = importer_for(conn, settings).policy
            changed = policy.apply_bulk_action(conn, action)
            categories = policy.get_hidden_categories()
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Bulk action failed: {str(e)}")

    return BulkActionResponse(action=action, changed=changed, categories=categories)


@router.get("/broken-images", response_model=BrokenImagesResponse)
def list_broken_images(settings: ImportSettings = Depends(get_settings)):
    """Image URLs found broken in the last probe window."""
    try:
        with db_pool.get_connection() as conn:
            images = _probe(conn, settings).broken_images()
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to load broken images: {str(e)}")

    return BrokenImagesResponse(images=[BrokenImage(**img) for img in images], total=len(images))


@router.post("/broken-images")
def mark_image_broken(request: MarkBrokenRequest,
                      settings: ImportSettings = Depends(get_settings)) -> Dict:
    """Storefront report of an image that failed to load; cached as invalid."""
    try:
        with db_pool.get_connection() as conn:
            accepted = _probe(conn, settings).mark_broken(request.url)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to mark image: {str(e)}")

    if not accepted:
        raise HTTPException(status_code=400, detail="Not a valid image URL")
    return {"success": True, "url": request.url.strip()}


def _probe(conn, settings: ImportSettings) -> ImageProbe:
    importer = importer_for(conn, settings)
    return importer.probe or ImageProbe(importer.store, settings.probe_ttl)
