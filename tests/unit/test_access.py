"""
Unit tests -- access gate: tiers, grants, visibility, policy loading.
"""
import pytest

from tablegate.core.errors import AccessDenied, InvalidIdentifier
from tablegate.governance.access import (
    DEFAULT_ROLES,
    TIER_ELEVATED,
    TIER_RESTRICTED,
    AccessPolicy,
    User,
    authorize,
    load_access_policy,
    parse_policy,
    parse_roles,
    visible_tables,
)
from tablegate.governance.identifiers import TableRef
from tests.fakes import FakeCatalog

POLICY = AccessPolicy(roles=dict(DEFAULT_ROLES))
CATALOG = FakeCatalog({"public.orders": ["id"], "public.customers": ["id"], "public.internal": ["id"]})

ADMIN = User("1", "admin@example.com", "admin")
ANALYST = User("2", "analyst@example.com", "analyst")
CUSTOMER_A = User("3", "a@example.com", "external_customer")
CUSTOMER_B = User("4", "b@example.com", "external_customer")

GRANTS = {
    "3": [("Production", "public.orders")],
    "4": [("Production", "public.customers")],
}


def _hidden_internal(database, table):
    return table != "public.internal"


def _authorize(user, table, **kwargs):
    return authorize(
        user, "Production", table,
        catalog=CATALOG, grants=GRANTS.get(user.id, []), policy=POLICY, is_visible=_hidden_internal, **kwargs,
    )


def test_standard_role_reads_any_visible_table():
    assert _authorize(ANALYST, "orders") == TableRef("public", "orders")
    assert _authorize(ANALYST, "public.customers").full_name == "public.customers"


def test_restricted_role_needs_grant():
    assert _authorize(CUSTOMER_A, "orders").full_name == "public.orders"
    with pytest.raises(AccessDenied):
        _authorize(CUSTOMER_A, "customers")


def test_grants_are_isolated_between_users():
    with pytest.raises(AccessDenied):
        _authorize(CUSTOMER_B, "orders")
    assert _authorize(CUSTOMER_B, "customers").full_name == "public.customers"


def test_grant_is_per_database():
    with pytest.raises(AccessDenied):
        authorize(
            CUSTOMER_A, "Staging", "orders",
            catalog=CATALOG, grants=GRANTS["3"], policy=POLICY,
        )


def test_hidden_table_refused_for_non_admin():
    with pytest.raises(AccessDenied):
        _authorize(ANALYST, "internal")


def test_admin_sees_hidden_tables():
    assert _authorize(ADMIN, "internal").full_name == "public.internal"


def test_bypass_visibility_still_enforces_grants():
    assert _authorize(ANALYST, "internal", bypass_visibility=True).full_name == "public.internal"
    with pytest.raises(AccessDenied):
        _authorize(CUSTOMER_A, "customers", bypass_visibility=True)


def test_missing_table_indistinguishable_from_denied():
    with pytest.raises(AccessDenied) as missing:
        _authorize(ANALYST, "does_not_exist")
    with pytest.raises(AccessDenied) as ungranted:
        _authorize(CUSTOMER_A, "customers")
    assert missing.value.message == ungranted.value.message == "Access denied"
    assert missing.value.to_dict() == ungranted.value.to_dict()


def test_malformed_table_name_rejected_before_catalog():
    with pytest.raises(InvalidIdentifier):
        _authorize(ANALYST, "orders; DROP TABLE x")


def test_unknown_role_treated_as_restricted():
    ghost = User("9", "ghost@example.com", "ghost")
    assert POLICY.role("ghost").tier == TIER_RESTRICTED
    assert POLICY.max_export_rows("ghost") == 0
    with pytest.raises(AccessDenied):
        _authorize(ghost, "orders")


def test_visible_tables_filters_by_grant_and_visibility():
    tables = [TableRef("public", "customers"), TableRef("public", "internal"), TableRef("public", "orders")]
    kwargs = dict(policy=POLICY, is_visible=_hidden_internal)
    assert [t.table for t in visible_tables(ADMIN, "Production", tables, grants=[], **kwargs)] == [
        "customers", "internal", "orders",
    ]
    assert [t.table for t in visible_tables(ANALYST, "Production", tables, grants=[], **kwargs)] == [
        "customers", "orders",
    ]
    assert [t.table for t in visible_tables(CUSTOMER_A, "Production", tables, grants=GRANTS["3"], **kwargs)] == [
        "orders",
    ]


def test_max_export_rows_capped_by_absolute_ceiling():
    policy = AccessPolicy(roles=dict(DEFAULT_ROLES), absolute_ceiling=20_000)
    assert policy.max_export_rows("admin") == 20_000
    assert policy.max_export_rows("analyst") == 10_000


def test_parse_roles_rejects_unknown_tier():
    with pytest.raises(ValueError):
        parse_roles({"boss": {"tier": "superuser"}})


def test_parse_policy_from_yaml_shape():
    raw = {
        "roles": {"ops": {"tier": "elevated", "max_export_rows": 25000}},
        "export": {"warning_threshold": 500},
    }
    policy = parse_policy(raw, absolute_ceiling=50_000, warning_threshold=2000)
    assert policy.role("ops").tier == TIER_ELEVATED
    assert policy.role("ops").sees_hidden_tables
    assert policy.warning_threshold == 500
    assert policy.absolute_ceiling == 50_000


def test_load_shipped_policy():
    load_access_policy.cache_clear()
    policy = load_access_policy()
    assert policy.role("admin").tier == TIER_ELEVATED
    assert policy.max_export_rows("admin") == 50_000
    assert policy.max_export_rows("analyst") == 10_000
    assert policy.role("external_customer").tier == TIER_RESTRICTED
