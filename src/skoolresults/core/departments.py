import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DepartmentInfo:
    key: str
    db_name: str
    short_name: str
    aliases: Tuple[str, ...]


DEPARTMENTS: Dict[str, DepartmentInfo] = {
    "kg": DepartmentInfo("kg", "KG", "KG", ("kg", "kindergarten")),
    "primary": DepartmentInfo("primary", "PRIMARY", "PRI", ("primary", "p", "pri", "primary school")),
    "jhs": DepartmentInfo(
        "jhs",
        "JUNIOR HIGH",
        "JHS",
        ("jhs", "junior high", "junior high school", "j.h.s", "j.h.s."),
    ),
    "shs": DepartmentInfo(
        "shs",
        "SENIOR HIGH",
        "SHS",
        ("shs", "senior high", "senior high school", "s.h.s", "s.h.s."),
    ),
}

# Aliases are matched case-insensitively; every stored name is also an alias.
_BY_ALIAS: Dict[str, DepartmentInfo] = {
    alias: info for info in DEPARTMENTS.values() for alias in info.aliases
}


def get_department(name: Optional[str]) -> Optional[DepartmentInfo]:
    if not name:
        return None
    return _BY_ALIAS.get(name.strip().lower())


def normalize_department_name(name: Optional[str]) -> str:
    """Stored department name for any alias ("jhs" -> "JUNIOR HIGH")."""
    if not name or not name.strip():
        return ""
    info = get_department(name)
    if info is not None:
        return info.db_name
    logger.warning("Unknown department name %r, using upper-case form", name)
    return name.strip().upper()


def department_key(name: Optional[str]) -> Optional[str]:
    info = get_department(name)
    return info.key if info else None


def department_short_name(name: Optional[str]) -> str:
    info = get_department(name)
    if info is None:
        return normalize_department_name(name)
    return info.short_name


def is_valid_department(name: Optional[str]) -> bool:
    return get_department(name) is not None
