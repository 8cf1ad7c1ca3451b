# control-plane/core/rule_matcher.py
"""
Rule Matcher - type-specific matching of one access rule against a target

A stored rule value is parsed once into one of four frozen value types
(IpRule, CidrRule, HostnameRule, HostnameWildcardRule). Parsing is the only
place that validates; matching dispatches over the parsed type and never
raises. A stored value that no longer parses is treated as non-matching.
"""

import ipaddress
import logging
import re
from dataclasses import dataclass
from typing import Optional, Union

from database.models import RuleType
from .errors import ValidationError

logger = logging.getLogger(__name__)

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]

WILDCARD = "*"
PROTOCOLS = {"tcp", "udp", "icmp"}

_LABEL_RE = re.compile(r"^[a-z0-9_]([a-z0-9_-]{0,61}[a-z0-9_])?$")


# === Rule value types ===

@dataclass(frozen=True)
class IpRule:
    address: IPAddress


@dataclass(frozen=True)
class CidrRule:
    network: IPNetwork


@dataclass(frozen=True)
class HostnameRule:
    hostname: str


@dataclass(frozen=True)
class HostnameWildcardRule:
    """`*.<suffix>`; only the suffix is kept"""
    suffix: str


RuleValue = Union[IpRule, CidrRule, HostnameRule, HostnameWildcardRule]


@dataclass(frozen=True)
class PortRange:
    low: int
    high: int

    def contains(self, port: int) -> bool:
        return self.low <= port <= self.high

    def __str__(self) -> str:
        return str(self.low) if self.low == self.high else f"{self.low}-{self.high}"


@dataclass(frozen=True)
class Target:
    """
    Destination being checked

    At least one of address / hostname is expected. port and protocol are
    optional; a rule that restricts them does not match a target that omits
    them.
    """
    address: Optional[str] = None
    hostname: Optional[str] = None
    port: Optional[int] = None
    protocol: Optional[str] = None

    @property
    def ip(self) -> Optional[IPAddress]:
        if not self.address:
            return None
        try:
            return ipaddress.ip_address(self.address.strip())
        except ValueError:
            return None


@dataclass(frozen=True)
class CompiledRule:
    """Parsed form of an AccessRule row"""
    value: RuleValue
    ports: Optional[PortRange] = None
    protocol: Optional[str] = None


# === Parsing / validation ===

def normalize_hostname(hostname: str) -> str:
    return hostname.strip().lower().rstrip(".")


def _validate_hostname(hostname: str) -> str:
    name = normalize_hostname(hostname)
    if not name or len(name) > 253:
        raise ValidationError(f"Invalid hostname: {hostname!r}")
    for label in name.split("."):
        if not _LABEL_RE.match(label):
            raise ValidationError(f"Invalid hostname: {hostname!r}")
    return name


def parse_rule_value(rule_type: str, value: str) -> RuleValue:
    """
    Parse a rule value according to its type

    Raises:
        ValidationError: If the type is unknown or the value does not parse
    """
    if value is None or not str(value).strip():
        raise ValidationError("Rule value must not be empty")
    value = str(value).strip()

    if rule_type == RuleType.IP.value:
        try:
            return IpRule(ipaddress.ip_address(value))
        except ValueError:
            raise ValidationError(f"Invalid IP address: {value!r}")

    if rule_type == RuleType.CIDR.value:
        if "/" not in value:
            raise ValidationError(f"CIDR value must carry a prefix length: {value!r}")
        try:
            return CidrRule(ipaddress.ip_network(value, strict=False))
        except ValueError:
            raise ValidationError(f"Invalid CIDR: {value!r}")

    if rule_type == RuleType.HOSTNAME.value:
        if WILDCARD in value:
            raise ValidationError("Wildcards require the hostname_wildcard type")
        return HostnameRule(_validate_hostname(value))

    if rule_type == RuleType.HOSTNAME_WILDCARD.value:
        if not value.startswith("*."):
            raise ValidationError(f"Wildcard hostname must start with '*.': {value!r}")
        suffix = value[2:]
        if WILDCARD in suffix:
            raise ValidationError(f"Only a single leading wildcard is allowed: {value!r}")
        return HostnameWildcardRule(_validate_hostname(suffix))

    raise ValidationError(f"Unknown rule type: {rule_type!r}")


def parse_port_range(port_range: Optional[str]) -> Optional[PortRange]:
    """
    Parse "443", "8000-9000" or "*"

    Returns None when any port is allowed.
    """
    if port_range is None:
        return None
    text = str(port_range).strip()
    if not text or text == WILDCARD:
        return None

    low_text, sep, high_text = text.partition("-")
    try:
        low = int(low_text)
        high = int(high_text) if sep else low
    except ValueError:
        raise ValidationError(f"Invalid port range: {port_range!r}")

    if not (1 <= low <= 65535 and 1 <= high <= 65535) or low > high:
        raise ValidationError(f"Invalid port range: {port_range!r}")
    return PortRange(low, high)


def validate_protocol(protocol: Optional[str]) -> Optional[str]:
    """Lower-case a protocol, returning None for empty"""
    if protocol is None or not str(protocol).strip():
        return None
    value = str(protocol).strip().lower()
    if value != WILDCARD and value not in PROTOCOLS:
        raise ValidationError(f"Invalid protocol: {protocol!r}")
    return value


def compile_rule(rule) -> Optional[CompiledRule]:
    """
    Compile a stored rule (anything with rule_type, value, port_range, protocol)

    Returns None for values that no longer parse.
    """
    try:
        protocol = validate_protocol(rule.protocol)
        return CompiledRule(
            value=parse_rule_value(rule.rule_type, rule.value),
            ports=parse_port_range(rule.port_range),
            protocol=None if protocol == WILDCARD else protocol,
        )
    except ValidationError as e:
        logger.warning(f"Ignoring malformed access rule {getattr(rule, 'id', None)}: {e}")
        return None


# === Matching ===

def _hostname_matches_suffix(hostname: str, suffix: str) -> bool:
    if not hostname.endswith("." + suffix):
        return False
    prefix = hostname[: -(len(suffix) + 1)]
    return bool(prefix) and all(prefix.split("."))


def value_matches(value: RuleValue, target: Target) -> bool:
    """Match only the destination part of a rule"""
    if isinstance(value, IpRule):
        ip = target.ip
        return ip is not None and ip == value.address

    if isinstance(value, CidrRule):
        ip = target.ip
        return ip is not None and ip.version == value.network.version and ip in value.network

    if isinstance(value, HostnameRule):
        return bool(target.hostname) and normalize_hostname(target.hostname) == value.hostname

    if isinstance(value, HostnameWildcardRule):
        return bool(target.hostname) and _hostname_matches_suffix(
            normalize_hostname(target.hostname), value.suffix
        )

    raise TypeError(f"Unhandled rule value type: {type(value).__name__}")


def compiled_matches(rule: CompiledRule, target: Target) -> bool:
    if not value_matches(rule.value, target):
        return False

    if rule.ports is not None:
        if target.port is None or not rule.ports.contains(target.port):
            return False

    if rule.protocol is not None:
        if not target.protocol:
            return False
        if target.protocol.strip().lower() != rule.protocol:
            return False

    return True


def match(rule, target: Target) -> bool:
    """
    Check whether a stored access rule matches a target

    Never raises: malformed stored values do not match.
    """
    compiled = compile_rule(rule)
    if compiled is None:
        return False
    return compiled_matches(compiled, target)


def address_network(value: RuleValue) -> Optional[IPNetwork]:
    """
    Address range granted by a rule value

    An ip rule is a single-host network; hostname rules have no address range.
    """
    if isinstance(value, IpRule):
        return ipaddress.ip_network(value.address)
    if isinstance(value, CidrRule):
        return value.network
    return None
