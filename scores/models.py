from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict


class ChangeKind(str, Enum):
    CREATED = "CREATED"
    CREDIT = "CREDIT"
    DEBIT = "DEBIT"


class Member(BaseModel):
    id: int
    name: str
    balance: int = Field(default=0, ge=0)
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BalanceChanged(BaseModel):
    member_id: int
    balance: int
    delta: int
    kind: ChangeKind
    occurred_at: datetime


class CreateMemberRequest(BaseModel):
    name: str = Field(..., description="Display label, duplicates and empty names allowed")

    model_config = ConfigDict(json_schema_extra={"example": {"name": "Alice"}})


class PointsRequest(BaseModel):
    amount: int = Field(..., description="Points to add or deduct, must be positive")

    model_config = ConfigDict(json_schema_extra={"example": {"amount": 10}})


class BalanceResponse(BaseModel):
    member_id: int
    balance: int


class PointsResponse(BaseModel):
    member: Member
    message: str


class MemberListResponse(BaseModel):
    members: list[Member]
    total_count: int


class LeaderboardEntry(BaseModel):
    rank: int
    member_id: int
    name: str
    balance: int


class LeaderboardResponse(BaseModel):
    entries: list[LeaderboardEntry]
    total_count: int
    limit: Optional[int] = None
