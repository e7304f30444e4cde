from fastapi import APIRouter

from app.api.views import router as views_router
from app.config import get_settings

router = APIRouter()

router.include_router(views_router)


@router.get("/", tags=["root"])
def read_root() -> dict[str, str]:
    return {"message": "Welcome to the Murmur thread gateway"}


@router.get("/reactions/palette", tags=["reactions"])
def read_reaction_palette() -> dict[str, list[str]]:
    """Emoji offered by the reaction picker."""

    return {"emoji": list(get_settings().reaction_palette)}
