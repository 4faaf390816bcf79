from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel, Field, ConfigDict


class CreateRuleRequest(BaseModel):
    name: str
    interval_minutes: int = Field(..., description="Minutes between executions")
    amount: int = Field(..., description="Points per execution, negative deducts")
    member_ids: list[int] = Field(default_factory=list, description="Empty targets every member")
    conditions: Optional[dict[str, Any]] = None
    enabled: bool = True

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "name": "Daily attendance",
            "interval_minutes": 1440,
            "amount": 5,
            "member_ids": [],
            "conditions": {"field": "member.balance", "operator": "less_than", "value": 100},
        }
    })


class ToggleRuleRequest(BaseModel):
    enabled: bool


class RuleResponse(BaseModel):
    id: int
    name: str
    interval_minutes: int
    amount: int
    member_ids: list[int]
    conditions: Optional[dict[str, Any]] = None
    enabled: bool
    created_at: datetime
    last_executed: Optional[datetime] = None


class RuleRunResponse(BaseModel):
    rule_id: int
    executed_at: datetime
    applied: list[int]
    rejected: list[int]
