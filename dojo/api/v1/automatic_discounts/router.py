"""Automatic discounts router: automation rules, event recording, assignments, batch utilities."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from dojo.core.exceptions import ServiceError
from dojo.db.session import get_db

from .schemas import (
    AutomationRuleCreate,
    AutomationRuleResponse,
    AutomationRuleUpdate,
    BatchProcessResponse,
    DiscountAssignmentResponse,
    DiscountEventCreate,
    DiscountEventResponse,
    RecordEventResponse,
)
from . import events, service

router = APIRouter(prefix="/api/v1/automatic-discounts", tags=["automatic-discounts"])


# --- Rules ---
@router.get("/rules", response_model=List[AutomationRuleResponse])
async def list_automation_rules(db: AsyncSession = Depends(get_db)) -> List[AutomationRuleResponse]:
    return await service.list_automation_rules(db)


@router.post("/rules", response_model=AutomationRuleResponse, status_code=status.HTTP_201_CREATED)
async def create_automation_rule(
    payload: AutomationRuleCreate,
    db: AsyncSession = Depends(get_db),
) -> AutomationRuleResponse:
    try:
        return await service.create_automation_rule(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/rules/{rule_id}", response_model=AutomationRuleResponse)
async def read_automation_rule(rule_id: UUID, db: AsyncSession = Depends(get_db)) -> AutomationRuleResponse:
    rule = await service.get_automation_rule(db, rule_id)
    if not rule:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Automation rule not found")
    return rule


@router.patch("/rules/{rule_id}", response_model=AutomationRuleResponse)
async def update_automation_rule(
    rule_id: UUID,
    payload: AutomationRuleUpdate,
    db: AsyncSession = Depends(get_db),
) -> AutomationRuleResponse:
    try:
        rule = await service.update_automation_rule(db, rule_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    if not rule:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Automation rule not found")
    return rule


@router.delete("/rules/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_automation_rule(rule_id: UUID, db: AsyncSession = Depends(get_db)) -> None:
    if not await service.delete_automation_rule(db, rule_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Automation rule not found")


# --- Events ---
@router.post("/events", response_model=RecordEventResponse, status_code=status.HTTP_201_CREATED)
async def record_discount_event(
    payload: DiscountEventCreate,
    db: AsyncSession = Depends(get_db),
) -> RecordEventResponse:
    try:
        recorded = await service.record_event(
            db,
            payload.event_type,
            student_id=payload.student_id,
            family_id=payload.family_id,
            event_data=payload.event_data,
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return RecordEventResponse(
        event=DiscountEventResponse.model_validate(recorded.event),
        assignments=[
            service.assignment_to_response(a, a.discount_code.code) for a in recorded.assignments
        ],
    )


# --- Assignments ---
@router.get("/assignments", response_model=List[DiscountAssignmentResponse])
async def list_discount_assignments(
    rule_id: Optional[UUID] = Query(None),
    family_id: Optional[UUID] = Query(None),
    student_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> List[DiscountAssignmentResponse]:
    return await service.list_discount_assignments(
        db, rule_id=rule_id, family_id=family_id, student_id=student_id
    )


# --- Utilities ---
@router.post("/batch-process", response_model=BatchProcessResponse)
async def batch_process_existing_data(db: AsyncSession = Depends(get_db)) -> BatchProcessResponse:
    result = await events.batch_process_existing_data(db)
    return BatchProcessResponse(
        enrollment_events=result.enrollment_events,
        first_payment_events=result.first_payment_events,
    )
