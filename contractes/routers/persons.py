"""Persons router.

Identity search, resolved registry profiles and the public offices held
by a person.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status

from contractes.config import DEFAULT_PAGE_SIZE, MAX_SEARCH_PAGE
from contractes.models import (
    AwardeeTargets,
    PersonProfile,
    PersonSearchPage,
    PublicOfficeProfile,
    TopLinkedPerson,
)
from contractes.services.office_service import OfficeService, get_office_service
from contractes.services.registry_service import (
    RegistryService,
    get_awardee_targets,
    get_registry_service,
)
from contractes.services.top_persons import load_top_linked_persons

logger = logging.getLogger(__name__)

router = APIRouter()

RegistryDep = Annotated[RegistryService, Depends(get_registry_service)]
OfficeDep = Annotated[OfficeService, Depends(get_office_service)]


def sanitize_for_log(value: str, max_length: int = 100) -> str:
    """Sanitize a string for safe logging to prevent log injection."""
    sanitized = "".join(c if c.isprintable() and c not in "\n\r\t" else " " for c in value)
    if len(sanitized) > max_length:
        sanitized = sanitized[:max_length] + "..."
    return sanitized


@router.get("/persons", response_model=PersonSearchPage)
async def search_persons(
    registry: RegistryDep,
    search: Annotated[str, Query(max_length=200)] = "",
    page: Annotated[int, Query(ge=1, le=MAX_SEARCH_PAGE)] = 1,
) -> PersonSearchPage:
    """Search registry identities by name.

    Queries shorter than three characters return an empty page.
    """
    logger.info(f"Person search: query='{sanitize_for_log(search)}', page={page}")
    offset = (page - 1) * DEFAULT_PAGE_SIZE
    return await registry.search_identities(search, offset=offset, limit=DEFAULT_PAGE_SIZE)


@router.get("/persons/top", response_model=list[TopLinkedPerson])
async def top_linked_persons() -> list[TopLinkedPerson]:
    return load_top_linked_persons()


async def _require_profile(registry: RegistryService, name: str) -> PersonProfile:
    profile = await registry.resolve_identity_profile(name)
    if profile is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Person not found",
        )
    return profile


@router.get("/persons/{name}/profile", response_model=PersonProfile)
async def get_person_profile(name: str, registry: RegistryDep) -> PersonProfile:
    """Resolve a name to one registry identity with its companies.

    Raises:
        HTTPException: 404 if no identity matches or the store is unavailable.
    """
    return await _require_profile(registry, name)


@router.get("/persons/{name}/awardee-targets", response_model=AwardeeTargets)
async def get_person_awardee_targets(name: str, registry: RegistryDep) -> AwardeeTargets:
    """Registry ids and company names to look up as contract awardees."""
    profile = await _require_profile(registry, name)
    return get_awardee_targets(profile)


@router.get("/persons/{name}/public-office", response_model=PublicOfficeProfile)
async def get_person_public_office(name: str, office: OfficeDep) -> PublicOfficeProfile:
    """Public offices held by a person, with inferred tenure ends."""
    return await office.fetch_public_office_profile(name)
