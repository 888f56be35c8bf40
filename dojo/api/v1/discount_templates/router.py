"""Discount templates router."""

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from dojo.api.v1.discount_codes.schemas import DiscountCodeResponse
from dojo.core.exceptions import ServiceError
from dojo.db.session import get_db

from .schemas import (
    CreateCodeFromTemplateRequest,
    DiscountTemplateCreate,
    DiscountTemplateResponse,
    DiscountTemplateUpdate,
)
from . import service

router = APIRouter(prefix="/api/v1/discount-templates", tags=["discount-templates"])


@router.get("", response_model=List[DiscountTemplateResponse])
async def list_discount_templates(
    active_only: bool = Query(False, description="Only return active templates"),
    db: AsyncSession = Depends(get_db),
) -> List[DiscountTemplateResponse]:
    if active_only:
        return await service.list_active_templates(db)
    return await service.list_templates(db)


@router.post("", response_model=DiscountTemplateResponse, status_code=status.HTTP_201_CREATED)
async def create_discount_template(
    payload: DiscountTemplateCreate,
    db: AsyncSession = Depends(get_db),
) -> DiscountTemplateResponse:
    try:
        return await service.create_template(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/{template_id}", response_model=DiscountTemplateResponse)
async def read_discount_template(
    template_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> DiscountTemplateResponse:
    template = await service.get_template(db, template_id)
    if not template:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Discount template not found")
    return template


@router.patch("/{template_id}", response_model=DiscountTemplateResponse)
async def update_discount_template(
    template_id: UUID,
    payload: DiscountTemplateUpdate,
    db: AsyncSession = Depends(get_db),
) -> DiscountTemplateResponse:
    try:
        template = await service.update_template(db, template_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    if not template:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Discount template not found")
    return template


@router.delete("/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_discount_template(template_id: UUID, db: AsyncSession = Depends(get_db)) -> None:
    try:
        deleted = await service.delete_template(db, template_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Discount template not found")


@router.post(
    "/{template_id}/codes",
    response_model=DiscountCodeResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_code_from_template(
    template_id: UUID,
    payload: CreateCodeFromTemplateRequest,
    db: AsyncSession = Depends(get_db),
) -> DiscountCodeResponse:
    try:
        return await service.create_discount_from_template(db, template_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
