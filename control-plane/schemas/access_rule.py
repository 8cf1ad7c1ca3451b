# control-plane/schemas/access_rule.py
"""
Access rule Pydantic schemas
"""

from pydantic import BaseModel, Field, field_validator, ConfigDict
from typing import Optional, List
from datetime import datetime
from enum import Enum


class RuleType(str, Enum):
    """Supported access rule value types"""
    IP = "ip"
    CIDR = "cidr"
    HOSTNAME = "hostname"
    HOSTNAME_WILDCARD = "hostname_wildcard"


# === Request Schemas ===

class AccessRuleCreate(BaseModel):
    """Schema for creating a new access rule"""
    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Unique rule name",
        examples=["db-primary"]
    )
    description: Optional[str] = Field(None, max_length=255)
    rule_type: RuleType = Field(..., description="How `value` is interpreted")
    value: str = Field(
        ...,
        min_length=1,
        max_length=255,
        description="Address, CIDR, hostname or *.suffix",
        examples=["192.168.1.100", "10.0.0.0/8", "*.internal.example.com"]
    )
    port_range: Optional[str] = Field(
        None,
        max_length=20,
        description="Single port, inclusive range or * (omitted = any)",
        examples=["443", "8000-9000", "*"]
    )
    protocol: Optional[str] = Field(
        None,
        description="tcp, udp, icmp or * (omitted = any)",
        examples=["tcp"]
    )
    network_id: Optional[int] = Field(
        None,
        description="Scope network; the target must also lie inside it"
    )
    is_active: bool = True

    @field_validator('protocol')
    @classmethod
    def validate_protocol(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.lower().strip()
        if v not in ('tcp', 'udp', 'icmp', '*'):
            raise ValueError('Invalid protocol. Must be one of: tcp, udp, icmp, *')
        return v

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "name": "db-primary",
                "description": "Primary PostgreSQL host",
                "rule_type": "ip",
                "value": "192.168.1.100",
                "port_range": "5432",
                "protocol": "tcp",
                "network_id": None,
                "is_active": True
            }
        }
    )


class AccessRuleUpdate(BaseModel):
    """
    Schema for updating an access rule
    `version` is the version the change was based on; a stale one is rejected
    """
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=255)
    rule_type: Optional[RuleType] = None
    value: Optional[str] = Field(None, min_length=1, max_length=255)
    port_range: Optional[str] = Field(None, max_length=20)
    protocol: Optional[str] = None
    network_id: Optional[int] = None
    is_active: Optional[bool] = None
    version: Optional[int] = Field(None, ge=1)


class UserAssignmentRequest(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=255)


class GroupAssignmentRequest(BaseModel):
    group_name: str = Field(..., min_length=1, max_length=255)


class TargetSchema(BaseModel):
    """Destination for a point authorization check"""
    address: Optional[str] = Field(None, examples=["192.168.1.100"])
    hostname: Optional[str] = Field(None, examples=["api.example.com"])
    port: Optional[int] = Field(None, ge=1, le=65535)
    protocol: Optional[str] = None


class AuthorizationCheckRequest(BaseModel):
    """Admin diagnostic: would this principal be allowed to reach the target?"""
    user_id: str = Field(..., min_length=1)
    email: Optional[str] = None
    groups: List[str] = Field(default_factory=list)
    target: TargetSchema


# === Response Schemas ===

class AccessRuleResponse(BaseModel):
    """Standard access rule response"""
    id: int
    name: str
    description: Optional[str] = None
    rule_type: str
    value: str
    port_range: Optional[str] = None
    protocol: Optional[str] = None
    network_id: Optional[int] = None
    is_active: bool
    version: int
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AccessRuleListResponse(BaseModel):
    rules: List[AccessRuleResponse]
    total: int


class AssignmentsResponse(BaseModel):
    rule_id: int
    users: List[str]
    groups: List[str]


class AuthorizationCheckResponse(BaseModel):
    allowed: bool
    matching_rule_ids: List[int]
