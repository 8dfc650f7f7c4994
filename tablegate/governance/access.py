"""
Access gate -- decides, per requester, which tables may be read.

Roles are defined in ``config/access_policy.yml``:

  roles:
    admin:
      tier: elevated
      max_export_rows: 50000
      sees_hidden_tables: true
    analyst:
      tier: standard
      max_export_rows: 10000
    external_customer:
      tier: restricted
      max_export_rows: 10000

Rules, applied in order by ``authorize``:
  1. The table must exist in the target database's catalog.
  2. ``restricted`` roles need an explicit ``(user, database, table)`` grant.
  3. Unless the caller passes ``bypass_visibility`` (report blocks) or the
     role sees hidden tables, a table flagged invisible is refused.

Visibility is a browsing convenience; grants are the permission.  Every
refusal raises the same ``AccessDenied`` -- the real reason goes to the log
only.  Nothing here is cached: grants can change mid-session.
"""
from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, Iterable

import yaml

from tablegate.core.config import get_settings
from tablegate.core.errors import AccessDenied
from tablegate.core.logging import get_logger
from tablegate.db.catalog import Catalog
from tablegate.governance.identifiers import TableRef, parse_table_name

logger = get_logger(__name__)

TIER_RESTRICTED = "restricted"
TIER_STANDARD = "standard"
TIER_ELEVATED = "elevated"
_TIERS = (TIER_RESTRICTED, TIER_STANDARD, TIER_ELEVATED)

VisibilityCheck = Callable[[str, str], bool]


# ── Data classes ────────────────────────────────────────


@dataclass(frozen=True)
class Role:
    """A single role definition."""
    name: str
    tier: str = TIER_RESTRICTED
    max_export_rows: int = 10_000
    sees_hidden_tables: bool = False


@dataclass(frozen=True)
class User:
    id: str
    email: str
    role: str
    is_active: bool = True


@dataclass(frozen=True)
class AccessPolicy:
    roles: dict[str, Role]
    warning_threshold: int = 2000
    absolute_ceiling: int = 50_000

    def role(self, name: str) -> Role:
        """Look up *name*; unknown roles fall back to the restricted tier."""
        role = self.roles.get(name)
        if role is None:
            logger.warning("Unknown role '%s' -- treating as restricted", name)
            return Role(name=name, tier=TIER_RESTRICTED, max_export_rows=0)
        return role

    def max_export_rows(self, role_name: str) -> int:
        return min(self.role(role_name).max_export_rows, self.absolute_ceiling)


DEFAULT_ROLES: dict[str, Role] = {
    "admin": Role("admin", TIER_ELEVATED, 50_000, sees_hidden_tables=True),
    "analyst": Role("analyst", TIER_STANDARD, 10_000),
    "external_customer": Role("external_customer", TIER_RESTRICTED, 10_000),
}


# ── Parsing ─────────────────────────────────────────────


def parse_roles(raw: dict[str, Any] | None) -> dict[str, Role]:
    """Parse the ``roles`` section of the access policy YAML."""
    if not raw:
        return {}

    roles: dict[str, Role] = {}
    for name, cfg in raw.items():
        cfg = cfg or {}
        tier = cfg.get("tier", TIER_RESTRICTED)
        if tier not in _TIERS:
            raise ValueError(f"Role '{name}' has unknown tier '{tier}'. Allowed: {', '.join(_TIERS)}")
        roles[name] = Role(
            name=name,
            tier=tier,
            max_export_rows=int(cfg.get("max_export_rows", 10_000)),
            sees_hidden_tables=bool(cfg.get("sees_hidden_tables", tier == TIER_ELEVATED)),
        )
    return roles


def parse_policy(raw: dict[str, Any] | None, absolute_ceiling: int, warning_threshold: int) -> AccessPolicy:
    raw = raw or {}
    roles = parse_roles(raw.get("roles")) or dict(DEFAULT_ROLES)
    export = raw.get("export") or {}
    return AccessPolicy(
        roles=roles,
        warning_threshold=int(export.get("warning_threshold", warning_threshold)),
        absolute_ceiling=int(export.get("absolute_ceiling", absolute_ceiling)),
    )


@lru_cache
def load_access_policy(path: str | None = None) -> AccessPolicy:
    """Load and cache the access policy; built-in defaults if the file is absent."""
    settings = get_settings()
    policy_path = Path(path or settings.access_policy_path)
    raw: dict[str, Any] | None = None
    if policy_path.exists():
        with open(policy_path) as f:
            raw = yaml.safe_load(f)
    else:
        logger.warning("Access policy %s not found -- using built-in roles", policy_path)
    return parse_policy(raw, settings.export_absolute_ceiling, settings.export_warning_threshold)


# ── Enforcement ─────────────────────────────────────────


def grant_key(database: str, table: TableRef) -> tuple[str, str]:
    return (database, table.full_name)


def _deny(user: User, database: str, table: str, reason: str) -> AccessDenied:
    logger.warning("Access denied user=%s role=%s db=%s table=%s: %s", user.id, user.role, database, table, reason)
    return AccessDenied()


def authorize(
    user: User,
    database: str,
    table: str,
    *,
    catalog: Catalog,
    grants: Iterable[tuple[str, str]],
    policy: AccessPolicy,
    is_visible: VisibilityCheck | None = None,
    bypass_visibility: bool = False,
) -> TableRef:
    """Return the parsed table if *user* may read it, else raise ``AccessDenied``.

    Parameters
    ----------
    grants:
        ``(database, "schema.table")`` pairs granted to the user, fetched
        for this request.
    is_visible:
        ``(database, "schema.table") -> bool`` from table settings.
    bypass_visibility:
        Skip rule 3.  Grants are still enforced.
    """
    ref = parse_table_name(table)
    role = policy.role(user.role)

    if not catalog.table_exists(ref):
        raise _deny(user, database, ref.full_name, "table not in catalog")

    if role.tier == TIER_RESTRICTED and grant_key(database, ref) not in set(grants):
        raise _deny(user, database, ref.full_name, "no grant")

    if not bypass_visibility and not role.sees_hidden_tables and is_visible is not None:
        if not is_visible(database, ref.full_name):
            raise _deny(user, database, ref.full_name, "table hidden")

    return ref


def visible_tables(
    user: User,
    database: str,
    tables: list[TableRef],
    *,
    grants: Iterable[tuple[str, str]],
    policy: AccessPolicy,
    is_visible: VisibilityCheck | None = None,
) -> list[TableRef]:
    """Filter a catalog listing down to what *user* may browse."""
    role = policy.role(user.role)
    granted = set(grants)
    result = []
    for ref in tables:
        if role.tier == TIER_RESTRICTED and grant_key(database, ref) not in granted:
            continue
        if not role.sees_hidden_tables and is_visible is not None and not is_visible(database, ref.full_name):
            continue
        result.append(ref)
    return result
