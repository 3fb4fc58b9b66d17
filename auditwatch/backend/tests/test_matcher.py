"""
tests/test_matcher.py

Tests for engine/matcher.py — one predicate per field kind, and the
"anything unexpected is False" default.
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from auditwatch.backend.catalog import FieldKind, GroupOp, Operator
from auditwatch.backend.config import Settings
from auditwatch.backend.engine.interfaces import UserRecord
from auditwatch.backend.engine.matcher import ConditionMatcher, normalize_post_status
from auditwatch.backend.engine.models import (
    Condition,
    EventTypeExtra,
    ObjectExtra,
    PostIdExtra,
    PostStatusExtra,
    PostTypeConstraint,
    PostTypeExtra,
    UserRoleExtra,
)
from auditwatch.backend.models import EventContext
from auditwatch.backend.storage.memory import InMemoryUserDirectory


NOW = datetime(2024, 3, 15, 14, 30, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def cond(kind: FieldKind, op: Operator, value: str = "", extra=None) -> Condition:
    return Condition(kind, op, value, GroupOp.AND, extra)


def event(event_id: int = 1000, **attributes) -> EventContext:
    return EventContext(event_id, NOW.timestamp(), attributes)


@pytest.fixture
def users() -> InMemoryUserDirectory:
    return InMemoryUserDirectory([
        UserRecord(7, "alice", "alice@example.org", roles=("editor",)),
        UserRecord(8, "bob", "bob@example.org"),
    ])


@pytest.fixture
def matcher(users) -> ConditionMatcher:
    return ConditionMatcher(users=users, clock=lambda: NOW, config=Settings())


# ---------------------------------------------------------------------------
# Fail-closed defaults
# ---------------------------------------------------------------------------

class TestFailClosed:

    def test_unresolved_condition_never_matches(self, matcher):
        c = Condition(FieldKind.EVENT_ID, Operator.EQUAL, "1000", resolved=False)
        assert matcher.matches(c, event(1000)) is False

    def test_missing_kind_never_matches(self, matcher):
        assert matcher.matches(Condition(None, None, "1000"), event(1000)) is False

    def test_raw_legacy_alias_never_matches(self, matcher):
        c = cond(FieldKind.PAGE_ID, Operator.EQUAL, "5")
        assert matcher.matches(c, event(PostID=5, PostType="page")) is False

    def test_operator_not_valid_for_kind(self, matcher):
        assert matcher.matches(cond(FieldKind.EVENT_ID, Operator.CONTAINS, "1000"), event(1000)) is False

    def test_handler_exception_is_absorbed(self, users):
        def broken_lookup(_post_id):
            raise RuntimeError("db down")

        m = ConditionMatcher(users=users, clock=lambda: NOW, post_status_of=broken_lookup, config=Settings())
        c = cond(FieldKind.POST_STATUS, Operator.EQUAL, "PUBLISHED")
        assert m.matches(c, event(PostID=3)) is False


# ---------------------------------------------------------------------------
# EVENT ID / DATE / TIME
# ---------------------------------------------------------------------------

class TestEventId:

    def test_equal(self, matcher):
        assert matcher.matches(cond(FieldKind.EVENT_ID, Operator.EQUAL, "1000"), event(1000))
        assert not matcher.matches(cond(FieldKind.EVENT_ID, Operator.EQUAL, "1001"), event(1000))

    def test_not_equal(self, matcher):
        assert matcher.matches(cond(FieldKind.EVENT_ID, Operator.NOT_EQUAL, "1001"), event(1000))

    def test_non_numeric_value(self, matcher):
        assert not matcher.matches(cond(FieldKind.EVENT_ID, Operator.NOT_EQUAL, "abc"), event(1000))


class TestDateTime:

    def test_date_equal_uses_wall_clock(self, matcher):
        assert matcher.matches(cond(FieldKind.DATE, Operator.EQUAL, "2024-03-15"), event())
        assert not matcher.matches(cond(FieldKind.DATE, Operator.EQUAL, "2024-03-16"), event())

    def test_date_after_and_before(self, matcher):
        assert matcher.matches(cond(FieldKind.DATE, Operator.IS_AFTER, "2024-03-01"), event())
        assert not matcher.matches(cond(FieldKind.DATE, Operator.IS_AFTER, "2024-04-01"), event())
        assert matcher.matches(cond(FieldKind.DATE, Operator.IS_BEFORE, "2024-04-01"), event())

    def test_date_input_order(self, users):
        m = ConditionMatcher(users=users, clock=lambda: NOW, config=Settings(DATE_INPUT_ORDER="dmy"))
        assert m.matches(cond(FieldKind.DATE, Operator.IS_AFTER, "01-03-2024"), event())

    def test_malformed_date(self, matcher):
        assert not matcher.matches(cond(FieldKind.DATE, Operator.IS_AFTER, "yesterday"), event())

    def test_time_equal(self, matcher):
        assert matcher.matches(cond(FieldKind.TIME, Operator.EQUAL, "14:30"), event())

    def test_time_after_and_before(self, matcher):
        assert matcher.matches(cond(FieldKind.TIME, Operator.IS_AFTER, "09:00"), event())
        assert not matcher.matches(cond(FieldKind.TIME, Operator.IS_AFTER, "18:00"), event())
        assert matcher.matches(cond(FieldKind.TIME, Operator.IS_BEFORE, "18:00"), event())

    def test_malformed_time(self, matcher):
        assert not matcher.matches(cond(FieldKind.TIME, Operator.IS_AFTER, "25:00"), event())


# ---------------------------------------------------------------------------
# USERNAME / USER ROLE / SOURCE IP
# ---------------------------------------------------------------------------

class TestUsername:

    def test_resolves_acting_user_id(self, matcher):
        assert matcher.matches(cond(FieldKind.USERNAME, Operator.EQUAL, "alice"), event(CurrentUserID=7))

    def test_falls_back_to_username_attribute(self, matcher):
        assert matcher.matches(cond(FieldKind.USERNAME, Operator.EQUAL, "carol"), event(Username="carol"))

    def test_unknown_user_id(self, matcher):
        assert not matcher.matches(cond(FieldKind.USERNAME, Operator.EQUAL, "alice"), event(CurrentUserID=99))
        assert not matcher.matches(cond(FieldKind.USERNAME, Operator.NOT_EQUAL, "alice"), event(CurrentUserID=99))

    def test_not_equal(self, matcher):
        assert matcher.matches(cond(FieldKind.USERNAME, Operator.NOT_EQUAL, "alice"), event(CurrentUserID=8))
        assert not matcher.matches(cond(FieldKind.USERNAME, Operator.NOT_EQUAL, "alice"), event(CurrentUserID=7))

    def test_no_user_at_all(self, matcher):
        assert not matcher.matches(cond(FieldKind.USERNAME, Operator.EQUAL, ""), event())


class TestUserRole:

    def test_equal_via_extra(self, matcher):
        c = cond(FieldKind.USER_ROLE, Operator.EQUAL, extra=UserRoleExtra("EDITOR"))
        assert matcher.matches(c, event(CurrentUserRoles=["editor"]))

    def test_display_name_maps_to_key(self, matcher):
        c = cond(FieldKind.USER_ROLE, Operator.EQUAL, extra=UserRoleExtra("SHOP MANAGER"))
        assert matcher.matches(c, event(CurrentUserRoles=["customer", "shop_manager"]))

    def test_not_equal_means_no_role_matches(self, matcher):
        c = cond(FieldKind.USER_ROLE, Operator.NOT_EQUAL, extra=UserRoleExtra("EDITOR"))
        assert matcher.matches(c, event(CurrentUserRoles=["author"]))
        assert not matcher.matches(c, event(CurrentUserRoles=["author", "editor"]))

    def test_unknown_role_label_normalised(self, matcher):
        c = cond(FieldKind.USER_ROLE, Operator.EQUAL, "Custom Role")
        assert matcher.matches(c, event(CurrentUserRoles="custom_role"))


class TestSourceIp:

    def test_equal(self, matcher):
        assert matcher.matches(cond(FieldKind.SOURCE_IP, Operator.EQUAL, "10.0.0.1"), event(ClientIP="10.0.0.1"))

    def test_contains(self, matcher):
        assert matcher.matches(cond(FieldKind.SOURCE_IP, Operator.CONTAINS, "192.168"), event(ClientIP="192.168.1.9"))
        assert not matcher.matches(cond(FieldKind.SOURCE_IP, Operator.CONTAINS, ""), event(ClientIP="192.168.1.9"))

    def test_not_equal(self, matcher):
        assert matcher.matches(cond(FieldKind.SOURCE_IP, Operator.NOT_EQUAL, "10.0.0.1"), event(ClientIP="10.0.0.2"))

    def test_missing_ip(self, matcher):
        assert not matcher.matches(cond(FieldKind.SOURCE_IP, Operator.EQUAL, "10.0.0.1"), event())
        assert not matcher.matches(cond(FieldKind.SOURCE_IP, Operator.CONTAINS, "10.0"), event())
        assert matcher.matches(cond(FieldKind.SOURCE_IP, Operator.NOT_EQUAL, "10.0.0.1"), event())


# ---------------------------------------------------------------------------
# POST ID / SITE DOMAIN / POST TYPE / POST STATUS
# ---------------------------------------------------------------------------

class TestPostId:

    def test_equal(self, matcher):
        assert matcher.matches(cond(FieldKind.POST_ID, Operator.EQUAL, "42"), event(PostID=42))

    def test_zero_never_matches(self, matcher):
        assert not matcher.matches(cond(FieldKind.POST_ID, Operator.NOT_EQUAL, "0"), event(PostID=42))

    def test_event_without_post(self, matcher):
        assert not matcher.matches(cond(FieldKind.POST_ID, Operator.EQUAL, "42"), event(2001))
        assert matcher.matches(cond(FieldKind.POST_ID, Operator.NOT_EQUAL, "42"), event(2001))

    def test_not_equal_ignores_post_type_constraint(self, matcher):
        c = cond(FieldKind.POST_ID, Operator.NOT_EQUAL, "42", PostIdExtra(PostTypeConstraint.PAGE_ONLY))
        assert not matcher.matches(c, event(PostID=42, PostType="post"))
        assert matcher.matches(c, event(PostID=43, PostType="post"))

    def test_page_only_constraint(self, matcher):
        c = cond(FieldKind.POST_ID, Operator.EQUAL, "42", PostIdExtra(PostTypeConstraint.PAGE_ONLY))
        assert matcher.matches(c, event(PostID=42, PostType="page"))
        assert not matcher.matches(c, event(PostID=42, PostType="post"))

    def test_custom_post_constraint(self, matcher):
        c = cond(FieldKind.POST_ID, Operator.EQUAL, "42", PostIdExtra(PostTypeConstraint.NOT_POST_OR_PAGE))
        assert matcher.matches(c, event(PostID=42, PostType="product"))
        assert not matcher.matches(c, event(PostID=42, PostType="page"))


class TestSiteDomain:

    def test_event_site(self, matcher):
        assert matcher.matches(cond(FieldKind.SITE_DOMAIN, Operator.EQUAL, "3"), event(SiteID=3))

    def test_defaults_to_configured_site(self, matcher):
        assert matcher.matches(cond(FieldKind.SITE_DOMAIN, Operator.EQUAL, "1"), event())
        assert matcher.matches(cond(FieldKind.SITE_DOMAIN, Operator.NOT_EQUAL, "2"), event())


class TestPostType:

    def test_extra_label(self, matcher):
        c = cond(FieldKind.POST_TYPE, Operator.EQUAL, extra=PostTypeExtra("PAGE"))
        assert matcher.matches(c, event(PostType="page"))

    def test_multisite_uses_free_text(self, users):
        m = ConditionMatcher(users=users, clock=lambda: NOW, config=Settings(MULTISITE=True))
        c = cond(FieldKind.POST_TYPE, Operator.EQUAL, "product", PostTypeExtra("PAGE"))
        assert m.matches(c, event(PostType="product"))

    def test_not_equal(self, matcher):
        c = cond(FieldKind.POST_TYPE, Operator.NOT_EQUAL, extra=PostTypeExtra("PAGE"))
        assert matcher.matches(c, event(PostType="post"))

    def test_missing_post_type(self, matcher):
        c = cond(FieldKind.POST_TYPE, Operator.NOT_EQUAL, extra=PostTypeExtra("PAGE"))
        assert not matcher.matches(c, event())


class TestPostStatus:

    def test_publish_is_published(self, matcher):
        c = cond(FieldKind.POST_STATUS, Operator.EQUAL, extra=PostStatusExtra("PUBLISHED"))
        assert matcher.matches(c, event(PostStatus="publish"))

    def test_lookup_when_event_has_no_status(self, users):
        m = ConditionMatcher(users=users, clock=lambda: NOW, post_status_of=lambda pid: "draft", config=Settings())
        c = cond(FieldKind.POST_STATUS, Operator.EQUAL, extra=PostStatusExtra("DRAFT"))
        assert m.matches(c, event(PostID=9))

    def test_not_equal(self, matcher):
        c = cond(FieldKind.POST_STATUS, Operator.NOT_EQUAL, extra=PostStatusExtra("DRAFT"))
        assert matcher.matches(c, event(PostStatus="publish"))

    def test_normalize(self):
        assert normalize_post_status(" Publish ") == "published"
        assert normalize_post_status("DRAFT") == "draft"


# ---------------------------------------------------------------------------
# OBJECT / TYPE / CUSTOM USER FIELD
# ---------------------------------------------------------------------------

class TestObjectAndEventType:

    def test_object_direct(self, matcher):
        c = cond(FieldKind.OBJECT, Operator.EQUAL, extra=ObjectExtra("PLUGIN"))
        assert matcher.matches(c, event(Object="plugin"))

    def test_object_alternative_key(self, matcher):
        c = cond(FieldKind.OBJECT, Operator.EQUAL, extra=ObjectExtra("ACTIVITY LOG PLUGIN"))
        assert matcher.matches(c, event(Object="wp-activity-log"))

    def test_object_not_equal(self, matcher):
        c = cond(FieldKind.OBJECT, Operator.NOT_EQUAL, extra=ObjectExtra("PLUGIN"))
        assert matcher.matches(c, event(Object="theme"))
        assert not matcher.matches(c, event(Object="plugin"))

    def test_event_type(self, matcher):
        c = cond(FieldKind.EVENT_TYPE, Operator.EQUAL, extra=EventTypeExtra("FAILED LOGIN"))
        assert matcher.matches(c, event(EventType="failed-login"))

    def test_event_type_missing_on_event(self, matcher):
        assert not matcher.matches(cond(FieldKind.EVENT_TYPE, Operator.EQUAL, extra=EventTypeExtra("LOGIN")), event())
        assert matcher.matches(cond(FieldKind.EVENT_TYPE, Operator.NOT_EQUAL, extra=EventTypeExtra("LOGIN")), event())


class TestNotEqualInvertsEqual:

    @pytest.mark.parametrize("kind,value,extra,attributes", [
        (FieldKind.SOURCE_IP, "10.0.0.5", None, {"ClientIP": "10.0.0.5"}),
        (FieldKind.SOURCE_IP, "10.0.0.5", None, {"ClientIP": "10.0.0.6"}),
        (FieldKind.SOURCE_IP, "10.0.0.5", None, {}),
        (FieldKind.POST_ID, "42", None, {"PostID": 42}),
        (FieldKind.POST_ID, "42", None, {"PostID": 7}),
        (FieldKind.POST_ID, "42", None, {}),
        (FieldKind.OBJECT, "", ObjectExtra("PLUGIN"), {"Object": "plugin"}),
        (FieldKind.OBJECT, "", ObjectExtra("ACTIVITY LOG PLUGIN"), {"Object": "wp-activity-log"}),
        (FieldKind.OBJECT, "", ObjectExtra("PLUGIN"), {"Object": "theme"}),
        (FieldKind.OBJECT, "", ObjectExtra("PLUGIN"), {}),
        (FieldKind.EVENT_TYPE, "", EventTypeExtra("FAILED LOGIN"), {"EventType": "failed-login"}),
        (FieldKind.EVENT_TYPE, "", EventTypeExtra("FAILED LOGIN"), {"EventType": "login"}),
        (FieldKind.EVENT_TYPE, "", EventTypeExtra("FAILED LOGIN"), {}),
    ])
    def test_inverse(self, matcher, kind, value, extra, attributes):
        e = event(2001, **attributes)
        equal = matcher.matches(cond(kind, Operator.EQUAL, value, extra), e)
        not_equal = matcher.matches(cond(kind, Operator.NOT_EQUAL, value, extra), e)
        assert not_equal is (not equal)


class TestCustomUserField:

    def test_matches_on_custom_field_events(self, matcher):
        c = cond(FieldKind.CUSTOM_USER_FIELD, Operator.EQUAL, "Department")
        assert matcher.matches(c, event(4015, custom_field_name="Department"))
        assert matcher.matches(c, event(4016, custom_field_name="Department"))

    def test_case_sensitive(self, matcher):
        c = cond(FieldKind.CUSTOM_USER_FIELD, Operator.EQUAL, "Department")
        assert not matcher.matches(c, event(4015, custom_field_name="department"))

    def test_other_events_never_match(self, matcher):
        c = cond(FieldKind.CUSTOM_USER_FIELD, Operator.EQUAL, "Department")
        assert not matcher.matches(c, event(4000, custom_field_name="Department"))

    def test_only_equal_supported(self, matcher):
        c = cond(FieldKind.CUSTOM_USER_FIELD, Operator.NOT_EQUAL, "Department")
        assert not matcher.matches(c, event(4015, custom_field_name="Phone"))
