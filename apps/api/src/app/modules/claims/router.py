"""
Claims Router

Endpoints:
- POST  /claims/education          Add an education item
- PATCH /claims/education/{id}     Edit an education item
- POST  /claims/experience         Add an experience item
- PATCH /claims/experience/{id}    Edit an experience item

Each accepts `verifier_email` to ask a platform verifier at the student's
institute to review the item.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import CurrentUser, require_student
from app.core.database import get_db
from app.core.exceptions import ServiceError, internal_http_exception, to_http_exception
from app.modules.claims import service
from app.modules.claims.models import ItemType
from app.modules.claims.schemas import (
    ClaimItemResponse,
    EducationCreateRequest,
    EducationUpdateRequest,
    ExperienceCreateRequest,
    ExperienceUpdateRequest,
    VerificationRequestFields,
)

logger = logging.getLogger(__name__)

router = APIRouter()


async def _run(coro, action: str) -> ClaimItemResponse:
    try:
        return await coro
    except ServiceError as e:
        logger.warning(f"{action} rejected: {e.error_code}")
        raise to_http_exception(e) from e
    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Unexpected error during {action}: {e}")
        raise internal_http_exception() from e


async def _create(
    item_type: ItemType, data: VerificationRequestFields, user: CurrentUser, db: AsyncSession
) -> ClaimItemResponse:
    return await _run(
        service.create_item(db, user, item_type, data), f"create {item_type.value.lower()}"
    )


async def _update(
    item_type: ItemType,
    item_id: UUID,
    data: VerificationRequestFields,
    user: CurrentUser,
    db: AsyncSession,
) -> ClaimItemResponse:
    return await _run(
        service.update_item(db, user, item_type, item_id, data),
        f"update {item_type.value.lower()} {item_id}",
    )


@router.post(
    "/education",
    response_model=ClaimItemResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add Education",
)
async def create_education(
    data: EducationCreateRequest,
    user: CurrentUser = Depends(require_student),
    db: AsyncSession = Depends(get_db),
) -> ClaimItemResponse:
    """
    Add an education item, optionally asking a platform verifier to review it.

    Raises:
        HTTPException 403: Caller is not a student
    """
    return await _create(ItemType.EDUCATION, data, user, db)


@router.patch("/education/{item_id}", response_model=ClaimItemResponse, summary="Edit Education")
async def update_education(
    item_id: UUID,
    data: EducationUpdateRequest,
    user: CurrentUser = Depends(require_student),
    db: AsyncSession = Depends(get_db),
) -> ClaimItemResponse:
    """
    Edit an education item. Verified items cannot be edited.

    Raises:
        HTTPException 403: Not the owner
        HTTPException 404: Item not found
        HTTPException 409: Item already verified
    """
    return await _update(ItemType.EDUCATION, item_id, data, user, db)


@router.post(
    "/experience",
    response_model=ClaimItemResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add Experience",
)
async def create_experience(
    data: ExperienceCreateRequest,
    user: CurrentUser = Depends(require_student),
    db: AsyncSession = Depends(get_db),
) -> ClaimItemResponse:
    return await _create(ItemType.EXPERIENCE, data, user, db)


@router.patch("/experience/{item_id}", response_model=ClaimItemResponse, summary="Edit Experience")
async def update_experience(
    item_id: UUID,
    data: ExperienceUpdateRequest,
    user: CurrentUser = Depends(require_student),
    db: AsyncSession = Depends(get_db),
) -> ClaimItemResponse:
    return await _update(ItemType.EXPERIENCE, item_id, data, user, db)
