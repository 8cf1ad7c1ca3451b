# control-plane/schemas/reachability.py
"""
Route and firewall rule schemas served to clients and data-plane enforcers
"""

from pydantic import BaseModel, Field, ConfigDict
from typing import List


class RoutesResponse(BaseModel):
    """Routes a principal receives through one hub or gateway"""
    node_id: int
    routes: List[str] = Field(default_factory=list, examples=[["192.168.1.100/32"]])
    route_lines: List[str] = Field(
        default_factory=list,
        description="Routes rendered as client route directives",
        examples=[["route 192.168.1.100 255.255.255.255"]]
    )


class FirewallRuleEntry(BaseModel):
    """
    One allowed destination
    Everything not listed is denied
    """
    rule_id: int
    rule_name: str
    type: str
    destination: str
    port_range: str = "*"
    protocol: str = "*"
    action: str = "allow"

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "rule_id": 3,
                "rule_name": "db-primary",
                "type": "ip",
                "destination": "192.168.1.100/32",
                "port_range": "5432",
                "protocol": "tcp",
                "action": "allow"
            }
        }
    )


class FirewallRulesResponse(BaseModel):
    node_id: int
    default_policy: str = "deny"
    rules: List[FirewallRuleEntry]
