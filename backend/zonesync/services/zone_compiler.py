"""
Zone compiler: turns a domain's record set into BIND9 zone-file text

Everything in this module is pure. Given the same domain name, records,
previous serial, clock value and SOA parameters, ``compile_zone`` returns
byte-identical text, which keeps it testable without a server.
"""

import hashlib
import ipaddress
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from ..core.exceptions import ValidationError

RECORD_TYPES = ("A", "AAAA", "CNAME", "MX", "TXT", "NS", "SRV")

# Output order within one owner name
_TYPE_ORDER = {rtype: index for index, rtype in enumerate(("NS", "A", "AAAA", "CNAME", "MX", "TXT", "SRV"))}

MAX_SERIAL = 2 ** 32 - 1
DEFAULT_MX_PRIORITY = 10
TXT_CHUNK_SIZE = 255
MAX_NAME_LENGTH = 253

_LABEL_RE = re.compile(r"^[A-Za-z0-9_](?:[A-Za-z0-9_-]{0,61}[A-Za-z0-9_])?$")
_QUOTED_STRINGS_RE = re.compile(r'^"(?:[^"\\]|\\.)*"(?:\s+"(?:[^"\\]|\\.)*")*$')
_TXT_TOKEN_RE = re.compile(r"\\[0-9]{3}|\\.|[^\\]", re.DOTALL)
_FORBIDDEN_CHARS = ("\n", "\r", "\x00")


@dataclass(frozen=True)
class ZoneRecord:
    """A DNS record as supplied by the record store"""
    type: str
    name: str
    value: str
    ttl: Any
    status: str = "active"
    id: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status is None or str(self.status).lower() == "active"

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ZoneRecord":
        """Build from a row or JSON object (``type`` or ``record_type`` key)"""
        return cls(
            type=data.get("type", data.get("record_type", "")),
            name=data.get("name", "@"),
            value=data.get("value", ""),
            ttl=data.get("ttl"),
            status=data.get("status", "active"),
            id=str(data["id"]) if data.get("id") is not None else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "name": self.name,
            "value": self.value,
            "ttl": self.ttl,
            "status": self.status,
        }


@dataclass(frozen=True)
class ResourceRecord:
    """One normalized zone-file line"""
    owner: str
    ttl: int
    rtype: str
    rdata: str

    def sort_key(self) -> Tuple:
        apex = 0 if self.owner == "@" else 1
        return (apex, self.owner, _TYPE_ORDER[self.rtype], self.rdata, self.ttl)

    def render(self) -> str:
        return f"{self.owner}\t{self.ttl}\tIN\t{self.rtype}\t{self.rdata}"


@dataclass(frozen=True)
class SOAParameters:
    """Zone-wide constants written into every compiled zone"""
    default_ttl: int = 604800
    refresh: int = 604800
    retry: int = 86400
    expire: int = 2419200
    negative_ttl: int = 604800
    primary_ns_template: str = "ns1.{domain}"
    admin_mailbox_template: str = "admin.{domain}"
    glue_address: Optional[str] = None
    max_ttl: int = 2147483647

    @classmethod
    def from_settings(cls, settings) -> "SOAParameters":
        return cls(
            default_ttl=settings.ZONE_DEFAULT_TTL,
            refresh=settings.SOA_REFRESH,
            retry=settings.SOA_RETRY,
            expire=settings.SOA_EXPIRE,
            negative_ttl=settings.SOA_NEGATIVE_TTL,
            primary_ns_template=settings.PRIMARY_NS_TEMPLATE,
            admin_mailbox_template=settings.ADMIN_MAILBOX_TEMPLATE,
            glue_address=settings.glue_address,
            max_ttl=settings.MAX_TTL,
        )


@dataclass(frozen=True)
class ZoneSnapshot:
    """Active, normalized, ordered records of one domain plus the serial"""
    domain_name: str
    serial: int
    records: Tuple[ResourceRecord, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class CompiledZone:
    """Zone text ready for publishing"""
    snapshot: ZoneSnapshot
    text: str
    checksum: str

    @property
    def domain_name(self) -> str:
        return self.snapshot.domain_name

    @property
    def serial(self) -> int:
        return self.snapshot.serial

    @property
    def record_count(self) -> int:
        return len(self.snapshot.records)


def next_serial(previous_serial: Optional[int], now: Optional[float] = None) -> int:
    """Return ``max(previous_serial + 1, unix_time)``.

    Using the previous serial as a floor keeps serials strictly increasing
    when two publishes land in the same second or the clock steps back.
    """
    timestamp = int(time.time() if now is None else now)
    serial = timestamp if previous_serial is None else max(int(previous_serial) + 1, timestamp)
    if serial > MAX_SERIAL:
        raise ValidationError(
            f"Serial {serial} does not fit in 32 bits",
            field="serial",
            value=serial,
            suggestions=["Reset the zone serial on the server following RFC 1982 before publishing again"]
        )
    return serial


def _is_valid_hostname(name: str, allow_wildcard: bool = False) -> bool:
    if not name or len(name) > MAX_NAME_LENGTH:
        return False
    labels = name.split(".")
    for index, label in enumerate(labels):
        if allow_wildcard and index == 0 and label == "*":
            continue
        if not _LABEL_RE.match(label):
            return False
    return True


def normalize_domain_name(domain_name: str) -> str:
    """Lower-case, strip the trailing dot and validate a zone name"""
    if not isinstance(domain_name, str):
        raise ValidationError("Domain name must be a string", field="domain_name", value=domain_name)
    name = domain_name.strip().lower().rstrip(".")
    if not _is_valid_hostname(name) or "." not in name:
        raise ValidationError(
            f"Invalid domain name: {domain_name!r}",
            field="domain_name",
            value=domain_name,
            suggestions=["Use a fully qualified name such as example.com"]
        )
    return name


def relativize_owner(name: Optional[str], domain_name: str) -> str:
    """Rewrite an owner name relative to the zone; the apex becomes ``@``"""
    raw = (name or "").strip()
    if raw in ("", "@"):
        return "@"
    if any(char in raw for char in _FORBIDDEN_CHARS):
        raise ValidationError("Record name contains control characters", field="name", value=raw)

    lowered = raw.lower()
    absolute = lowered.endswith(".")
    lowered = lowered.rstrip(".")
    if lowered == domain_name:
        return "@"
    if lowered.endswith("." + domain_name):
        lowered = lowered[: -(len(domain_name) + 1)]
    elif absolute:
        raise ValidationError(
            f"Record name {raw!r} is outside zone {domain_name}",
            field="name",
            value=raw
        )

    if not _is_valid_hostname(lowered, allow_wildcard=True):
        raise ValidationError(
            f"Invalid record name: {raw!r}",
            field="name",
            value=raw,
            suggestions=["Use '@' for the apex or a label such as 'www'"]
        )
    return lowered


def validate_ttl(ttl: Any, max_ttl: int) -> int:
    """TTL must be an integer in ``1..max_ttl``"""
    if isinstance(ttl, bool) or not isinstance(ttl, int):
        raise ValidationError("TTL must be an integer number of seconds", field="ttl", value=ttl)
    if ttl <= 0 or ttl > max_ttl:
        raise ValidationError(
            f"TTL {ttl} is out of range (1..{max_ttl})",
            field="ttl",
            value=ttl,
            suggestions=[f"Use a TTL between 1 and {max_ttl} seconds"]
        )
    return ttl


def _format_target(value: str, field_name: str = "value", allow_root: bool = False) -> str:
    target = value.strip()
    if target == "@":
        return "@"
    if allow_root and target == ".":
        return "."
    bare = target.rstrip(".")
    if not _is_valid_hostname(bare):
        raise ValidationError(f"Invalid hostname: {value!r}", field=field_name, value=value)
    # Dotted targets are treated as absolute, single labels stay in-zone
    if target.endswith(".") or "." in bare:
        return bare.lower() + "."
    return bare.lower()


def _parse_uint16(token: str, field_name: str) -> int:
    if not token.isdigit() or int(token) > 65535:
        raise ValidationError(f"{field_name} must be an integer between 0 and 65535", field=field_name, value=token)
    return int(token)


def _has_unescaped_quote(text: str) -> bool:
    escaped = False
    for char in text:
        if escaped:
            escaped = False
        elif char == "\\":
            escaped = True
        elif char == '"':
            return True
    # A trailing backslash would escape the closing quote
    return escaped


def _split_txt(text: str) -> List[str]:
    """Split into character-strings of at most 255 octets without breaking escapes"""
    chunks = []
    current = []
    size = 0
    for token in _TXT_TOKEN_RE.findall(text):
        token_size = 1 if token.startswith("\\") else len(token.encode("utf-8"))
        if size + token_size > TXT_CHUNK_SIZE:
            chunks.append("".join(current))
            current, size = [], 0
        current.append(token)
        size += token_size
    chunks.append("".join(current))
    return chunks


def _format_txt(value: str) -> str:
    stripped = value.strip()
    if len(stripped) >= 2 and stripped.startswith('"') and stripped.endswith('"'):
        if not _QUOTED_STRINGS_RE.match(stripped):
            raise ValidationError("TXT value contains an unescaped quote", field="value", value=value)
        return stripped
    if _has_unescaped_quote(value):
        raise ValidationError(
            "TXT value contains an unescaped quote",
            field="value",
            value=value,
            suggestions=['Escape embedded quotes as \\"']
        )
    return " ".join(f'"{chunk}"' for chunk in _split_txt(value))


def format_rdata(rtype: str, value: Any, owner: str) -> str:
    """Validate and render the data part of a record"""
    if not isinstance(value, str):
        raise ValidationError("Record value must be a string", field="value", value=value)
    if any(char in value for char in _FORBIDDEN_CHARS):
        raise ValidationError(
            "Record value contains a line break or NUL character",
            field="value",
            value=value
        )
    if not value.strip():
        raise ValidationError(f"{rtype} record value cannot be empty", field="value", value=value)

    if rtype == "TXT":
        return _format_txt(value)

    if '"' in value or ";" in value:
        raise ValidationError(f"Invalid characters in {rtype} value", field="value", value=value)

    if rtype == "A":
        try:
            return str(ipaddress.IPv4Address(value.strip()))
        except ValueError:
            raise ValidationError(f"Invalid IPv4 address: {value!r}", field="value", value=value)

    if rtype == "AAAA":
        try:
            return str(ipaddress.IPv6Address(value.strip()))
        except ValueError:
            raise ValidationError(f"Invalid IPv6 address: {value!r}", field="value", value=value)

    if rtype in ("CNAME", "NS"):
        return _format_target(value)

    if rtype == "MX":
        parts = value.split()
        if len(parts) == 1:
            priority, target = DEFAULT_MX_PRIORITY, parts[0]
        elif len(parts) == 2:
            priority, target = _parse_uint16(parts[0], "priority"), parts[1]
        else:
            raise ValidationError("MX value must be '<priority> <target>'", field="value", value=value)
        return f"{priority} {_format_target(target, allow_root=True)}"

    if rtype == "SRV":
        parts = value.split()
        if len(parts) != 4:
            raise ValidationError(
                "SRV value must be '<priority> <weight> <port> <target>'",
                field="value",
                value=value
            )
        if not owner.startswith("_"):
            raise ValidationError(
                f"SRV record name must look like _service._proto, got {owner!r}",
                field="name",
                value=owner
            )
        priority = _parse_uint16(parts[0], "priority")
        weight = _parse_uint16(parts[1], "weight")
        port = _parse_uint16(parts[2], "port")
        return f"{priority} {weight} {port} {_format_target(parts[3], allow_root=True)}"

    raise ValidationError(f"Unsupported record type: {rtype!r}", field="type", value=rtype)


def normalize_record(record: ZoneRecord, domain_name: str, max_ttl: int) -> ResourceRecord:
    """Validate one record and convert it into a zone-file line"""
    rtype = str(record.type or "").strip().upper()
    if rtype not in RECORD_TYPES:
        raise ValidationError(
            f"Unsupported record type: {record.type!r}",
            field="type",
            value=record.type,
            suggestions=[f"Supported types: {', '.join(RECORD_TYPES)}"]
        )
    owner = relativize_owner(record.name, domain_name)
    ttl = validate_ttl(record.ttl, max_ttl)
    rdata = format_rdata(rtype, record.value, owner)
    return ResourceRecord(owner=owner, ttl=ttl, rtype=rtype, rdata=rdata)


def _check_conflicts(records: List[ResourceRecord]) -> None:
    by_owner: Dict[str, List[ResourceRecord]] = {}
    for record in records:
        by_owner.setdefault(record.owner, []).append(record)

    for owner, owned in by_owner.items():
        cnames = [r for r in owned if r.rtype == "CNAME"]
        if not cnames:
            continue
        if owner == "@":
            raise ValidationError(
                "CNAME records are not allowed at the zone apex",
                field="name",
                value="@"
            )
        if len(owned) > 1:
            raise ValidationError(
                f"CNAME at {owner!r} cannot coexist with other records",
                field="name",
                value=owner
            )


def build_snapshot(
    domain_name: str,
    records: Iterable[Union[ZoneRecord, Mapping[str, Any]]],
    serial: int,
    max_ttl: int = 2147483647
) -> ZoneSnapshot:
    """Filter to active records, validate, dedupe and order them"""
    zone = normalize_domain_name(domain_name)
    normalized = set()
    for item in records:
        record = item if isinstance(item, ZoneRecord) else ZoneRecord.from_mapping(item)
        if not record.is_active:
            continue
        normalized.add(normalize_record(record, zone, max_ttl))

    ordered = sorted(normalized, key=ResourceRecord.sort_key)
    _check_conflicts(ordered)
    return ZoneSnapshot(domain_name=zone, serial=serial, records=tuple(ordered))


def _mailbox(template: str, domain_name: str) -> str:
    mailbox = template.format(domain=domain_name)
    if "@" in mailbox:
        local, _, host = mailbox.partition("@")
        mailbox = local.replace(".", "\\.") + "." + host
    return mailbox.rstrip(".") + "."


def render_zone(snapshot: ZoneSnapshot, soa: SOAParameters) -> str:
    """Render zone text for a snapshot"""
    domain = snapshot.domain_name
    primary_ns = soa.primary_ns_template.format(domain=domain).rstrip(".") + "."
    mailbox = _mailbox(soa.admin_mailbox_template, domain)

    lines = [
        f"; Zone file for {domain}",
        "; Managed by zonesync, manual edits are overwritten on the next publish",
        f"$ORIGIN {domain}.",
        f"$TTL {soa.default_ttl}",
        f"@\tIN\tSOA\t{primary_ns} {mailbox} (",
        f"\t\t{snapshot.serial}\t; Serial",
        f"\t\t{soa.refresh}\t; Refresh",
        f"\t\t{soa.retry}\t; Retry",
        f"\t\t{soa.expire}\t; Expire",
        f"\t\t{soa.negative_ttl} )\t; Negative Cache TTL",
        ";",
        f"@\tIN\tNS\t{primary_ns}",
    ]

    # Glue for an in-zone primary nameserver, unless the user manages it
    ns_host = primary_ns.rstrip(".")
    if soa.glue_address and ns_host.endswith("." + domain):
        glue_owner = ns_host[: -(len(domain) + 1)]
        user_defined = any(r.owner == glue_owner and r.rtype in ("A", "AAAA") for r in snapshot.records)
        if not user_defined:
            glue_type = "AAAA" if ":" in soa.glue_address else "A"
            lines.append(f"{glue_owner}\tIN\t{glue_type}\t{soa.glue_address}")

    lines.append("; Records")
    lines.extend(record.render() for record in snapshot.records)
    return "\n".join(lines) + "\n"


def compile_zone(
    domain_name: str,
    records: Iterable[Union[ZoneRecord, Mapping[str, Any]]],
    previous_serial: Optional[int] = None,
    *,
    now: Optional[float] = None,
    soa: Optional[SOAParameters] = None
) -> CompiledZone:
    """Compile a domain's records into zone text with the next serial.

    Raises ``ValidationError`` for the first malformed active record;
    inactive records are dropped before validation.
    """
    soa = soa or SOAParameters()
    serial = next_serial(previous_serial, now)
    snapshot = build_snapshot(domain_name, records, serial, soa.max_ttl)
    text = render_zone(snapshot, soa)
    checksum = hashlib.sha256(text.encode("utf-8")).hexdigest()
    return CompiledZone(snapshot=snapshot, text=text, checksum=checksum)
