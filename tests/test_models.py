"""Tests for groupdesigner/models.py and groupdesigner/roles.py."""

import pytest

from groupdesigner.models import (
    UNKNOWN,
    FormationResult,
    GroupChangePlan,
    GroupMember,
    GroupSpec,
    PeerStatus,
    clean_value,
    names_of,
    same_name,
)
from groupdesigner.roles import RoleKind, parse_role, parse_roles, sorted_roles


def _make_group(*members):
    return GroupSpec.from_dict("Tanks", {"members": list(members)})


# ── Roles ─────────────────────────────────────────────────────────────────────


class TestRoles:
    def test_codes(self):
        assert RoleKind.MAIN_TANK.code == 1
        assert RoleKind.MAIN_ASSIST.code == 2
        assert RoleKind.PULLER.code == 3
        assert RoleKind.MARK_NPC.code == 4
        assert RoleKind.MASTER_LOOTER.code == 5
        assert RoleKind.LEADER.code is None
        assert RoleKind.NONE.code is None

    def test_parse_label_name_and_code(self):
        assert parse_role("Main Tank") is RoleKind.MAIN_TANK
        assert parse_role("main tank") is RoleKind.MAIN_TANK
        assert parse_role("MASTER_LOOTER") is RoleKind.MASTER_LOOTER
        assert parse_role(3) is RoleKind.PULLER
        assert parse_role(RoleKind.LEADER) is RoleKind.LEADER

    def test_parse_empty_is_none(self):
        assert parse_role("") is RoleKind.NONE
        assert parse_role(None) is RoleKind.NONE

    def test_parse_unknown_raises(self):
        with pytest.raises(ValueError):
            parse_role("Healer")
        with pytest.raises(ValueError):
            parse_role(9)

    def test_parse_roles_skips_unknown_and_none(self):
        assert parse_roles(["Puller", "", "Healer", 1]) == {RoleKind.PULLER, RoleKind.MAIN_TANK}

    def test_sorted_roles_presentation_order(self):
        roles = {RoleKind.MASTER_LOOTER, RoleKind.LEADER, RoleKind.PULLER}
        assert sorted_roles(roles) == [RoleKind.LEADER, RoleKind.PULLER, RoleKind.MASTER_LOOTER]


# ── Helpers ───────────────────────────────────────────────────────────────────


def test_clean_value_null_markers():
    assert clean_value(None) is None
    assert clean_value("") is None
    assert clean_value(UNKNOWN) is None
    assert clean_value("NULL") is None
    assert clean_value("  Bob ") == "Bob"
    assert clean_value(60) == "60"


def test_same_name_is_case_insensitive():
    assert same_name("Alice", "aLiCe")
    assert not same_name("Alice", "Alicia")


def test_names_of_mixed():
    assert names_of([GroupMember("Alice"), "Bob"]) == ["Alice", "Bob"]


# ── PeerStatus ────────────────────────────────────────────────────────────────


class TestPeerStatus:
    def test_stub_is_stale_and_unknown(self):
        status = PeerStatus.stub("Bob")
        assert status.stale
        assert not status.is_known
        assert status.display("zone") == UNKNOWN

    def test_wire_uses_unknown_marker(self):
        wire = PeerStatus(name="Bob", char_class="Cleric", level="60").to_wire()
        assert wire == {
            "name": "Bob",
            "class": "Cleric",
            "level": "60",
            "ac": UNKNOWN,
            "maxhp": UNKNOWN,
            "maxmana": UNKNOWN,
            "maxendurance": UNKNOWN,
            "zone": UNKNOWN,
        }

    def test_from_wire_maps_unknown_to_none(self):
        status = PeerStatus.from_wire({"name": "Bob", "class": "Cleric", "zone": UNKNOWN})
        assert status.char_class == "Cleric"
        assert status.zone is None
        assert status.max_hp is None
        assert status.stale is False

    def test_from_wire_without_class_is_stale(self):
        assert PeerStatus.from_wire({"name": "Bob", "class": UNKNOWN}).stale

    def test_copy_is_independent(self):
        original = PeerStatus(name="Bob", level="60")
        copied = original.copy()
        copied.level = "61"
        assert original.level == "60"


# ── GroupMember / GroupSpec ───────────────────────────────────────────────────


class TestGroupMember:
    def test_from_plain_name(self):
        member = GroupMember.from_dict("Bob")
        assert member.name == "Bob"
        assert member.roles == set()

    def test_from_roles_list(self):
        member = GroupMember.from_dict({"name": "Bob", "roles": ["Main Assist", "Puller"]})
        assert member.roles == {RoleKind.MAIN_ASSIST, RoleKind.PULLER}

    def test_from_legacy_single_role(self):
        member = GroupMember.from_dict({"name": "Bob", "role": "Mark NPC"})
        assert member.roles == {RoleKind.MARK_NPC}

    def test_from_roles_mapping(self):
        member = GroupMember.from_dict({"name": "Bob", "roles": {"Puller": True, "Main Tank": False}})
        assert member.roles == {RoleKind.PULLER}

    def test_from_roles_as_single_string(self):
        member = GroupMember.from_dict({"name": "Alice", "roles": "Main Tank"})
        assert member.roles == {RoleKind.MAIN_TANK}

    def test_single_string_role_keeps_leadership(self):
        group = _make_group("Bob", {"name": "Alice", "roles": "Main Tank"})
        assert group.leader.name == "Alice"

    def test_from_roles_as_single_code(self):
        member = GroupMember.from_dict({"name": "Bob", "roles": 3})
        assert member.roles == {RoleKind.PULLER}

    def test_role_codes_skip_leader(self):
        member = GroupMember("Alice", {RoleKind.LEADER, RoleKind.MASTER_LOOTER, RoleKind.MAIN_TANK})
        assert member.role_codes == [1, 5]

    def test_to_dict_uses_labels(self):
        member = GroupMember("Alice", {RoleKind.MAIN_TANK, RoleKind.LEADER})
        assert member.to_dict() == {"name": "Alice", "roles": ["Leader", "Main Tank"]}


class TestGroupSpec:
    def test_leader_prefers_leader_or_main_tank(self):
        group = _make_group("Bob", {"name": "Alice", "roles": ["Main Tank"]})
        assert group.leader.name == "Alice"

    def test_leader_defaults_to_first_member(self):
        assert _make_group("Bob", "Carol").leader.name == "Bob"

    def test_leader_of_empty_group(self):
        assert GroupSpec("Empty").leader is None

    def test_exclusive_role_moves(self):
        group = _make_group({"name": "Alice", "roles": ["Main Tank"]}, "Bob")
        group.assign_role("Bob", RoleKind.MAIN_TANK)
        assert not group.find("Alice").has_role(RoleKind.MAIN_TANK)
        assert group.find("Bob").has_role(RoleKind.MAIN_TANK)

    def test_exclusivity_applied_when_loading(self):
        group = _make_group(
            {"name": "Alice", "roles": ["Puller"]},
            {"name": "Bob", "roles": ["Puller"]},
        )
        holders = [m.name for m in group.members if m.has_role(RoleKind.PULLER)]
        assert holders == ["Bob"]

    def test_assign_role_to_non_member_raises(self):
        with pytest.raises(KeyError):
            _make_group("Alice").assign_role("Zed", RoleKind.PULLER)

    def test_remove_role(self):
        group = _make_group({"name": "Alice", "roles": ["Leader", "Puller"]})
        group.remove_role("alice", RoleKind.PULLER)
        group.remove_role("Zed", RoleKind.PULLER)
        assert group.find("Alice").roles == {RoleKind.LEADER}

    def test_find_is_case_insensitive(self):
        assert _make_group("Alice").find("ALICE").name == "Alice"

    def test_round_trip_dict(self):
        group = _make_group({"name": "Alice", "roles": ["Leader"]}, "Bob")
        again = GroupSpec.from_dict("Tanks", group.to_dict())
        assert again.member_names == ["Alice", "Bob"]
        assert again.find("Alice").has_role(RoleKind.LEADER)


# ── Derived ───────────────────────────────────────────────────────────────────


def test_change_plan_counts():
    plan = GroupChangePlan(to_invite=["Bob"], to_remove=["Dave", "Erin"])
    assert plan.total_changes == 3
    assert not plan.is_noop
    assert GroupChangePlan(already_correct=["Alice"]).is_noop


def test_formation_result_partial():
    result = FormationResult("Tanks", True, "Group formed with 2/3 members (missing: Carol)", ["Carol"])
    assert result.partial
    assert result.to_dict()["missing"] == ["Carol"]
    assert not FormationResult("Tanks", True, "Group formed successfully").partial
