"""Companies router: registry administration history per company."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Path, status

from contractes.models import CompanyAdminHistory
from contractes.services.registry_service import RegistryService, get_registry_service

router = APIRouter()


@router.get(
    "/companies/{registry_id}/admin-history",
    response_model=CompanyAdminHistory,
    status_code=status.HTTP_200_OK,
)
async def get_company_admin_history(
    registry_id: Annotated[str, Path(min_length=1, max_length=20)],
    registry: Annotated[RegistryService, Depends(get_registry_service)],
) -> CompanyAdminHistory:
    """Role spans of every person linked to a company, newest first.

    Raises:
        HTTPException: 404 if the registry id has no spans.
    """
    history = await registry.load_company_admin_history(registry_id)
    if history is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No registry history for '{registry_id}'",
        )
    return history
