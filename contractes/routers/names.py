"""Names router: display formatting of registry person names."""

from typing import Annotated

from fastapi import APIRouter, Query

from contractes.services.person_names import format_display_name

router = APIRouter()


@router.get("/names/display")
async def display_name(name: Annotated[str, Query(max_length=300)] = "") -> dict[str, str]:
    """Reorder a surname-first registry name for display.

    Example:
        ``/api/names/display?name=LAPORTA ESTRUCH JOAN`` ->
        ``{"name": "LAPORTA ESTRUCH JOAN", "displayName": "Joan Laporta Estruch"}``
    """
    return {"name": name, "displayName": format_display_name(name)}
