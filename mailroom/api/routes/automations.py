"""Automation rule endpoints."""
from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from mailroom.api.deps import current_tenant_id
from mailroom.db import models
from mailroom.db.session import get_db
from mailroom.services import automation
from mailroom.services.automation import Action, Trigger

router = APIRouter(prefix="/automations", tags=["automations"])


class RuleCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    trigger: Trigger
    action: Action
    is_active: bool = True


class RuleUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    trigger: Trigger | None = None
    action: Action | None = None
    is_active: bool | None = None


class RuleResponse(BaseModel):
    id: int
    tenant_id: int
    name: str
    trigger: Trigger
    action: Action
    is_active: bool
    created_at: datetime | None = None


def to_response(rule: models.AutomationRule) -> RuleResponse:
    return RuleResponse(
        id=rule.id,
        tenant_id=rule.tenant_id,
        name=rule.name,
        trigger=automation.parse_trigger(rule),
        action=automation.parse_action(rule),
        is_active=rule.is_active,
        created_at=rule.created_at,
    )


@router.post("/", response_model=RuleResponse, status_code=status.HTTP_201_CREATED)
def create_rule(
    payload: RuleCreate, tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)
) -> RuleResponse:
    """Create a rule. Referenced lists and templates must belong to the caller."""

    rule = automation.create_rule(
        db, tenant_id, name=payload.name, trigger=payload.trigger, action=payload.action, is_active=payload.is_active
    )
    return to_response(rule)


@router.get("/", response_model=list[RuleResponse])
def list_rules(tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)) -> list[RuleResponse]:
    return [to_response(rule) for rule in automation.list_rules(db, tenant_id)]


@router.get("/{rule_id}", response_model=RuleResponse)
def get_rule(rule_id: int, tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)) -> RuleResponse:
    return to_response(automation.get_rule(db, tenant_id, rule_id))


@router.patch("/{rule_id}", response_model=RuleResponse)
def update_rule(
    rule_id: int,
    payload: RuleUpdate,
    tenant_id: int = Depends(current_tenant_id),
    db: Session = Depends(get_db),
) -> RuleResponse:
    rule = automation.update_rule(
        db,
        tenant_id,
        rule_id,
        name=payload.name,
        trigger=payload.trigger,
        action=payload.action,
        is_active=payload.is_active,
    )
    return to_response(rule)


@router.delete("/{rule_id}", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
def delete_rule(rule_id: int, tenant_id: int = Depends(current_tenant_id), db: Session = Depends(get_db)) -> Response:
    automation.delete_rule(db, tenant_id, rule_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
