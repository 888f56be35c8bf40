"""Discount codes router: code admin, checkout validate/apply, usage history."""

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from dojo.core.exceptions import ServiceError
from dojo.core.money import from_cents, to_cents
from dojo.db.session import get_db

from .schemas import (
    ApplyDiscountRequest,
    ApplyDiscountResponse,
    DiscountCodeCreate,
    DiscountCodeResponse,
    DiscountCodeUpdate,
    DiscountCodeUsageResponse,
    DiscountCodeWithUsage,
    DiscountValidationResponse,
    ValidateDiscountRequest,
)
from . import service

router = APIRouter(prefix="/api/v1/discount-codes", tags=["discount-codes"])


@router.get("", response_model=List[DiscountCodeWithUsage])
async def list_discount_codes(db: AsyncSession = Depends(get_db)) -> List[DiscountCodeWithUsage]:
    return await service.list_codes(db)


@router.get("/active", response_model=List[DiscountCodeResponse])
async def list_active_discount_codes(db: AsyncSession = Depends(get_db)) -> List[DiscountCodeResponse]:
    return await service.list_active_codes(db)


@router.post("", response_model=DiscountCodeResponse, status_code=status.HTTP_201_CREATED)
async def create_discount_code(
    payload: DiscountCodeCreate,
    db: AsyncSession = Depends(get_db),
) -> DiscountCodeResponse:
    try:
        return await service.create_discount_code(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


# --- Checkout ---
@router.post("/validate", response_model=DiscountValidationResponse)
async def validate_discount_code(
    payload: ValidateDiscountRequest,
    db: AsyncSession = Depends(get_db),
) -> DiscountValidationResponse:
    result = await service.validate_discount_code(
        db,
        payload.code,
        payload.family_id,
        from_cents(payload.subtotal_amount_cents),
        payload.applicable_to,
        student_id=payload.student_id,
    )
    return DiscountValidationResponse(
        is_valid=result.is_valid,
        discount_code_id=result.discount_code_id,
        code=result.code,
        discount_amount_cents=to_cents(result.discount_amount),
        error_message=result.error_message,
    )


@router.post("/apply", response_model=ApplyDiscountResponse)
async def apply_discount_code(
    payload: ApplyDiscountRequest,
    db: AsyncSession = Depends(get_db),
) -> ApplyDiscountResponse:
    original = from_cents(payload.original_amount_cents) if payload.original_amount_cents is not None else None
    result = await service.apply_discount_code(
        db,
        payload.discount_code_id,
        payload.family_id,
        from_cents(payload.discount_amount_cents),
        payment_id=payload.payment_id,
        student_id=payload.student_id,
        original_amount=original,
    )
    return ApplyDiscountResponse(success=result.success, error=result.error)


@router.post("/payments/{payment_id}/restore")
async def restore_discount_for_failed_payment(
    payment_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> dict:
    restored = await service.restore_discount_for_failed_payment(db, payment_id)
    return {"restored": restored}


# --- Usage history ---
@router.get("/usage/family/{family_id}", response_model=List[DiscountCodeUsageResponse])
async def read_family_discount_usage(
    family_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> List[DiscountCodeUsageResponse]:
    return await service.get_family_discount_usage(db, family_id)


@router.get("/usage/student/{student_id}", response_model=List[DiscountCodeUsageResponse])
async def read_student_discount_usage(
    student_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> List[DiscountCodeUsageResponse]:
    return await service.get_student_discount_usage(db, student_id)


@router.get("/by-code/{code}", response_model=DiscountCodeResponse)
async def read_discount_code_by_code(code: str, db: AsyncSession = Depends(get_db)) -> DiscountCodeResponse:
    found = await service.get_discount_code_by_code(db, code)
    if not found:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Discount code not found")
    return found


@router.get("/{code_id}", response_model=DiscountCodeResponse)
async def read_discount_code(code_id: UUID, db: AsyncSession = Depends(get_db)) -> DiscountCodeResponse:
    code = await service.get_discount_code(db, code_id)
    if not code:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Discount code not found")
    return code


@router.patch("/{code_id}", response_model=DiscountCodeResponse)
async def update_discount_code(
    code_id: UUID,
    payload: DiscountCodeUpdate,
    db: AsyncSession = Depends(get_db),
) -> DiscountCodeResponse:
    try:
        code = await service.update_discount_code(db, code_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    if not code:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Discount code not found")
    return code


@router.post("/{code_id}/activate", response_model=DiscountCodeResponse)
async def activate_discount_code(code_id: UUID, db: AsyncSession = Depends(get_db)) -> DiscountCodeResponse:
    code = await service.activate_discount_code(db, code_id)
    if not code:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Discount code not found")
    return code


@router.post("/{code_id}/deactivate", response_model=DiscountCodeResponse)
async def deactivate_discount_code(code_id: UUID, db: AsyncSession = Depends(get_db)) -> DiscountCodeResponse:
    code = await service.deactivate_discount_code(db, code_id)
    if not code:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Discount code not found")
    return code


@router.delete("/{code_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_discount_code(code_id: UUID, db: AsyncSession = Depends(get_db)) -> None:
    try:
        deleted = await service.delete_discount_code(db, code_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Discount code not found")
