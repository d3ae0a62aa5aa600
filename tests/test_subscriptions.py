"""Tests for advice subscription matching."""

import pytest

from kbeads.subscriptions import (
    SubscriptionOverrides,
    build_agent_subscriptions,
    matches_subscriptions,
    parse_groups,
    strip_group_prefix,
)


# ============================================================================
# matches_subscriptions
# ============================================================================

@pytest.mark.parametrize(
    "advice_labels, subs, want",
    [
        pytest.param(["global"], ["global", "rig:beads"], True, id="global matches any agent"),
        pytest.param(["rig:beads"], ["global", "rig:beads"], True, id="rig match"),
        pytest.param(["rig:gastown"], ["global", "rig:beads"], False, id="rig mismatch blocks"),
        pytest.param(["agent:arch-eel"], ["global", "agent:arch-eel"], True, id="agent match"),
        pytest.param(["agent:cool-rook"], ["global", "agent:arch-eel"], False, id="agent mismatch blocks"),
        pytest.param(
            ["g0:role:polecat", "g0:rig:beads"], ["global", "rig:beads", "role:polecat"], True,
            id="AND within group",
        ),
        pytest.param(
            ["g0:role:polecat", "g0:rig:beads"], ["global", "role:polecat"], False,
            id="AND partial mismatch",
        ),
        pytest.param(["g0:role:polecat", "g1:role:crew"], ["global", "role:crew"], True, id="OR across groups"),
        pytest.param(
            ["g0:role:polecat", "g1:role:crew"], ["global", "role:witness"], False,
            id="OR across groups neither matches",
        ),
        pytest.param(
            ["rig:gastown", "g0:role:polecat"], ["global", "rig:beads", "role:polecat"], False,
            id="rig required even with group match",
        ),
        pytest.param(["role:polecat", "role:crew"], ["global", "role:crew"], True, id="unprefixed labels are OR"),
        pytest.param([], ["global"], False, id="no labels never match"),
        pytest.param(["security"], ["global", "role:crew"], False, id="free-form label needs subscription"),
    ],
)
def test_matches_subscriptions(advice_labels, subs, want):
    assert matches_subscriptions(advice_labels, subs) is want


def test_grouped_rig_label_is_still_required():
    """A rig label inside a group is checked before any group passes."""
    subs = ["global", "rig:beads", "role:crew"]
    labels = ["g0:rig:gastown", "g0:role:crew", "g1:global"]
    assert matches_subscriptions(labels, subs) is False


def test_unprefixed_and_grouped_labels_mix():
    subs = ["global", "role:crew"]
    # group 0 fails (no polecat) but the plain "global" group matches
    assert matches_subscriptions(["g0:role:crew", "g0:role:polecat", "global"], subs) is True
    assert matches_subscriptions(["g0:role:crew", "g0:role:polecat"], subs) is False


def test_matches_accepts_any_iterable():
    assert matches_subscriptions(("global",), {"global"}) is True


def test_matches_with_real_agent_subscriptions():
    subs = build_agent_subscriptions("beads/polecats/nux")
    assert matches_subscriptions(["g0:role:polecat", "g0:rig:beads"], subs) is True
    assert matches_subscriptions(["g0:role:polecat", "g0:rig:gastown"], subs) is False
    assert matches_subscriptions(["agent:beads/polecats/nux"], subs) is True
    assert matches_subscriptions(["agent:beads/polecats/other"], subs) is False


# ============================================================================
# strip_group_prefix / parse_groups
# ============================================================================

@pytest.mark.parametrize(
    "label, want",
    [
        ("g0:role:polecat", "role:polecat"),
        ("g12:rig:beads", "rig:beads"),
        ("global", "global"),
        ("g:bad", "g:bad"),
        ("gx:role:crew", "gx:role:crew"),
        ("g1", "g1"),
        ("rig:beads", "rig:beads"),
        ("g0:", ""),
    ],
)
def test_strip_group_prefix(label, want):
    assert strip_group_prefix(label) == want


def test_parse_groups_explicit_groups():
    groups = parse_groups(["g0:role:polecat", "g0:rig:beads", "g1:role:crew"])
    assert groups == {0: ["role:polecat", "rig:beads"], 1: ["role:crew"]}


def test_parse_groups_unprefixed_get_own_groups():
    groups = parse_groups(["global", "role:crew", "g:bad"])
    assert groups == {1000: ["global"], 1001: ["role:crew"], 1002: ["g:bad"]}


def test_parse_groups_global_is_not_a_group_prefix():
    # "global" starts with g but has no digits before a colon
    assert parse_groups(["global"]) == {1000: ["global"]}


# ============================================================================
# build_agent_subscriptions
# ============================================================================

class TestBuildAgentSubscriptions:

    def test_full_identity(self):
        subs = build_agent_subscriptions("beads/polecats/nux")
        assert subs == ["global", "agent:beads/polecats/nux", "rig:beads", "role:polecats", "role:polecat"]

    def test_role_without_plural(self):
        subs = build_agent_subscriptions("beads/crew/arch-eel")
        assert "role:crew" in subs
        assert subs.count("role:crew") == 1
        assert len(subs) == 4

    def test_rig_only(self):
        subs = build_agent_subscriptions("beads")
        assert subs == ["global", "agent:beads", "rig:beads"]

    def test_empty_identity(self):
        assert build_agent_subscriptions("") == ["global", "agent:"]

    def test_extra_labels_come_first(self):
        subs = build_agent_subscriptions("beads/crew/x", ["security", "perf"])
        assert subs[:2] == ["security", "perf"]
        assert "global" in subs

    def test_extra_none(self):
        assert build_agent_subscriptions("beads/crew/x", None) == build_agent_subscriptions("beads/crew/x")

    @pytest.mark.parametrize("rig, role, name", [("beads", "crew", "a"), ("gastown", "polecats", "b"), ("r", "ss", "c")])
    def test_always_has_core_labels(self, rig, role, name):
        agent_id = f"{rig}/{role}/{name}"
        subs = build_agent_subscriptions(agent_id)
        assert "global" in subs
        assert f"agent:{agent_id}" in subs
        assert f"rig:{rig}" in subs
        assert f"role:{role}" in subs
        if role.endswith("s"):
            assert f"role:{role[:-1]}" in subs


# ============================================================================
# SubscriptionOverrides
# ============================================================================

class TestSubscriptionOverrides:

    def test_include_adds_labels(self):
        overrides = SubscriptionOverrides(include=["security"])
        subs = overrides.apply(build_agent_subscriptions("beads/crew/x"))
        assert "security" in subs
        assert matches_subscriptions(["security"], subs) is True

    def test_exclude_removes_labels(self):
        overrides = SubscriptionOverrides(exclude=["global"])
        subs = overrides.apply(build_agent_subscriptions("beads/crew/x"))
        assert "global" not in subs
        assert matches_subscriptions(["global"], subs) is False

    def test_exclude_wins_over_include(self):
        overrides = SubscriptionOverrides(include=["perf"], exclude=["perf"])
        assert "perf" not in overrides.apply(["global"])

    def test_no_duplicates(self):
        overrides = SubscriptionOverrides(include=["global", "x"])
        assert overrides.apply(["global", "x"]) == ["global", "x"]


def test_parse_groups_explicit_group_shares_synthetic_id():
    # an explicit g1000: group collides with the first synthetic id; both orders keep every label
    assert parse_groups(["g1000:role:A", "global"]) == {1000: ["role:A", "global"]}
    assert parse_groups(["global", "g1000:role:A"]) == {1000: ["global", "role:A"]}


@pytest.mark.parametrize("labels", [["g1000:role:A", "global"], ["global", "g1000:role:A"]])
def test_match_independent_of_label_order(labels):
    assert matches_subscriptions(labels, ["global"]) is False
    assert matches_subscriptions(labels, ["global", "role:A"]) is True
