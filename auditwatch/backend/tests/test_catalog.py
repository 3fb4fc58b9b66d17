"""
tests/test_catalog.py

Tests for catalog/ — index resolution, NO_MATCH sentinel, label normalisation
and DomainConfig loading.
"""

from __future__ import annotations

import json

import pytest

from auditwatch.backend.catalog import (
    DEFAULT_DOMAIN,
    NO_MATCH,
    ConditionCatalog,
    DomainConfig,
    FieldKind,
    GroupOp,
    Operator,
    sanitize_label,
)


@pytest.fixture
def catalog() -> ConditionCatalog:
    return ConditionCatalog(DEFAULT_DOMAIN)


# ---------------------------------------------------------------------------
# Index resolution
# ---------------------------------------------------------------------------

class TestIndexResolution:

    def test_group_ops(self, catalog):
        assert catalog.resolve_group_op(0) is GroupOp.AND
        assert catalog.resolve_group_op(1) is GroupOp.OR

    def test_field_kind_order_is_stable(self, catalog):
        assert catalog.resolve_field_kind(0) is FieldKind.EVENT_ID
        assert catalog.resolve_field_kind(3) is FieldKind.USERNAME
        assert catalog.resolve_field_kind(7) is FieldKind.PAGE_ID
        assert catalog.resolve_field_kind(14) is FieldKind.CUSTOM_USER_FIELD

    def test_operator_order_is_stable(self, catalog):
        assert catalog.resolve_operator(0) is Operator.EQUAL
        assert catalog.resolve_operator(1) is Operator.CONTAINS
        assert catalog.resolve_operator(4) is Operator.NOT_EQUAL

    def test_string_index_accepted(self, catalog):
        assert catalog.resolve_field_kind("5") is FieldKind.SOURCE_IP

    @pytest.mark.parametrize("index", [-1, 99, None, "abc", 1.5j, True])
    def test_out_of_range_or_garbage_is_no_match(self, catalog, index):
        assert catalog.resolve_field_kind(index) is NO_MATCH

    def test_no_match_is_falsy_singleton(self):
        assert not NO_MATCH
        assert repr(NO_MATCH) == "NO_MATCH"

    def test_post_status_values(self, catalog):
        assert catalog.resolve_value(FieldKind.POST_STATUS, 4) == "PUBLISHED"

    def test_post_types_exclude_attachment(self, catalog):
        assert "ATTACHMENT" not in catalog.post_types
        assert catalog.resolve_value(FieldKind.POST_TYPE, 1) == "PAGE"

    def test_user_roles_are_upper_case_display_names(self, catalog):
        assert catalog.resolve_value(FieldKind.USER_ROLE, 5) == "SHOP MANAGER"

    def test_value_for_kind_without_value_catalog(self, catalog):
        assert catalog.resolve_value(FieldKind.EVENT_ID, 0) is NO_MATCH

    def test_removed_role_resolves_to_no_match(self):
        small = ConditionCatalog(DomainConfig(user_roles=(("editor", "Editor"),)))
        assert small.resolve_value(FieldKind.USER_ROLE, 3) is NO_MATCH


# ---------------------------------------------------------------------------
# Label normalisation
# ---------------------------------------------------------------------------

class TestLabels:

    def test_sanitize_label(self):
        assert sanitize_label(" Failed Login ") == "failed-login"

    def test_sanitize_user_role_by_display_name(self, catalog):
        assert catalog.sanitize_user_role("SHOP MANAGER") == "shop_manager"

    def test_sanitize_user_role_by_key(self, catalog):
        assert catalog.sanitize_user_role("editor") == "editor"

    def test_sanitize_unknown_role(self, catalog):
        assert catalog.sanitize_user_role("ghost") is NO_MATCH
        assert catalog.sanitize_user_role("") is NO_MATCH

    def test_alternative_object_key(self, catalog):
        assert catalog.alternative_object_key("activity-log-plugin") == "wp-activity-log"
        assert catalog.alternative_object_key("nothing") is None

    def test_alternative_event_type_key(self, catalog):
        assert catalog.alternative_event_type_key("session-destroyed") == "session-destroy"


# ---------------------------------------------------------------------------
# DomainConfig
# ---------------------------------------------------------------------------

class TestDomainConfig:

    def test_from_dict(self):
        d = DomainConfig.from_dict({
            "post_types": ["post", "product"],
            "user_roles": {"customer": "Customer"},
        })
        assert d.post_types == ("post", "product")
        assert d.user_roles == (("customer", "Customer"),)
        assert d.event_types == ()

    def test_from_file(self, tmp_path):
        path = tmp_path / "domain.json"
        path.write_text(json.dumps({"post_types": ["product"]}))
        d = DomainConfig.from_file(str(path))
        assert ConditionCatalog(d).post_types == ("PRODUCT",)

    def test_from_file_rejects_non_object(self, tmp_path):
        path = tmp_path / "domain.json"
        path.write_text("[1, 2]")
        with pytest.raises(ValueError):
            DomainConfig.from_file(str(path))
