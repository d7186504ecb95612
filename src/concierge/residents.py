"""
Resident directory and delivery-person records.

The directory is a small, fixed, ordered list of people a caller may ask for.
It is loaded once at startup (from `RESIDENTS_FILE` when configured) and is
never mutated by call handling.

`RESIDENTS_FILE` format:

    [
      {"name": "Matt", "phone_number": "+13107959382", "aliases": ["Matthew", "Mat"]}
    ]
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import json
from pathlib import Path
import re
from typing import Any, Iterator, List, Optional, Tuple

import structlog

from src.concierge.config import ConfigError

logger = structlog.get_logger(__name__)

_E164_RE = re.compile(r"^\+[1-9][0-9]{7,14}$")

# Verification code handed to every detected carrier. Carrier detection is a
# keyword match only; nothing is verified against a real order.
UNVERIFIED_DELIVERY_CODE = "APPROVED"


@dataclass(frozen=True)
class Resident:
    name: str
    phone_number: str
    aliases: Tuple[str, ...] = ()

    @property
    def spellings(self) -> Tuple[str, ...]:
        """Primary name followed by aliases, in match order."""
        return (self.name,) + self.aliases


@dataclass(frozen=True)
class DeliveryPerson:
    order_id: str
    name: str
    expected_arrival: datetime
    verification_code: str
    phone_number: Optional[str] = None


def stub_delivery_person() -> DeliveryPerson:
    return DeliveryPerson(
        order_id="manual-delivery",
        name="Delivery Person",
        expected_arrival=datetime.now(timezone.utc),
        verification_code=UNVERIFIED_DELIVERY_CODE,
    )


@dataclass(frozen=True)
class ResidentDirectory:
    residents: Tuple[Resident, ...] = field(default_factory=tuple)

    def __iter__(self) -> Iterator[Resident]:
        return iter(self.residents)

    def __len__(self) -> int:
        return len(self.residents)

    def names(self) -> List[str]:
        return [r.name for r in self.residents]


DEFAULT_RESIDENTS: Tuple[Resident, ...] = (
    Resident(name="Matt", phone_number="+13107959382", aliases=("Matthew", "Mat")),
    Resident(name="Lindsay", phone_number="+12049991981", aliases=("Lindsey", "Linsey", "Lyndsay")),
)


def _project_root() -> Path:
    # src/concierge/residents.py -> src/concierge -> src -> project root
    return Path(__file__).resolve().parent.parent.parent


def resolve_residents_path(residents_path: str) -> Path:
    """
    Resolve a residents file path.

    Relative paths are interpreted relative to the project root.
    """
    path = Path(residents_path)
    if path.is_absolute():
        return path
    return _project_root() / path


def _parse_resident(raw: Any, index: int) -> Resident:
    if not isinstance(raw, dict):
        raise ConfigError(f"Resident #{index} must be an object")

    name = str(raw.get("name") or "").strip()
    phone = str(raw.get("phone_number") or raw.get("phoneNumber") or "").strip()
    aliases = raw.get("aliases") or []

    if not name:
        raise ConfigError(f"Resident #{index} is missing a name")
    if not _E164_RE.match(phone):
        raise ConfigError(f"Resident '{name}' has an invalid E.164 phone number: {phone!r}")
    if not isinstance(aliases, list):
        raise ConfigError(f"Resident '{name}' aliases must be a list")

    return Resident(
        name=name,
        phone_number=phone,
        aliases=tuple(str(a).strip() for a in aliases if str(a).strip()),
    )


def load_residents_from_json(path: Path) -> ResidentDirectory:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Could not read residents file {path}: {e}") from e

    if not isinstance(data, list):
        raise ConfigError(f"Residents file {path} must contain a JSON list")

    return ResidentDirectory(residents=tuple(_parse_resident(r, i) for i, r in enumerate(data)))


def load_directory(residents_file: Optional[str] = None) -> ResidentDirectory:
    """
    Load the resident directory.

    Falls back to the built-in directory when no file is configured.
    """
    if not residents_file:
        directory = ResidentDirectory(residents=DEFAULT_RESIDENTS)
        logger.info("Using built-in resident directory", residents=directory.names())
        return directory

    path = resolve_residents_path(residents_file)
    directory = load_residents_from_json(path)
    logger.info(
        "Resident directory loaded",
        residents_file=str(path),
        residents=directory.names(),
    )
    return directory
