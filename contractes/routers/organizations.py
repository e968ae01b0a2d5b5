"""Organizations router: current office holders and tenure history."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query

from contractes.config import DEFAULT_PAGE_SIZE
from contractes.models import OfficeHoldersPage, OfficeTenures
from contractes.routers.persons import sanitize_for_log
from contractes.services.office_service import OfficeService, get_office_service

logger = logging.getLogger(__name__)

router = APIRouter()

OfficeDep = Annotated[OfficeService, Depends(get_office_service)]


@router.get("/organizations/office-holders", response_model=OfficeHoldersPage)
async def get_office_holders(
    office: OfficeDep,
    name: Annotated[str, Query(max_length=300)] = "",
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> OfficeHoldersPage:
    """Current holder of every seat of the organization best matching ``name``.

    Out-of-range ``page`` and ``page_size`` values are clamped, not rejected.
    """
    logger.info(f"Office holders lookup: name='{sanitize_for_log(name)}', page={page}")
    return await office.resolve_current_office_holders(name, page=page, page_size=page_size)


@router.get("/organizations/tenures", response_model=OfficeTenures)
async def get_office_tenures(
    office: OfficeDep,
    name: Annotated[str, Query(max_length=300)] = "",
) -> OfficeTenures:
    return await office.resolve_office_tenures(name)
