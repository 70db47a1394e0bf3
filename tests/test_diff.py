"""Tests for groupdesigner.diff -- desired members vs. a leader's roster."""

from groupdesigner.diff import diff, roster_names, verify_members
from groupdesigner.models import GroupMember


def _members(*names):
    return [GroupMember(n) for n in names]


# =====================================================================
# diff
# =====================================================================
class TestDiff:
    def test_already_formed_has_no_changes(self):
        plan = diff(_members("Alice", "Bob", "Carol"), ["Alice", "Bob", "Carol"])
        assert plan.total_changes == 0
        assert plan.already_correct == ["Alice", "Bob", "Carol"]

    def test_simple_invite(self):
        plan = diff(_members("Alice", "Bob"), ["Alice"])
        assert plan.to_invite == ["Bob"]
        assert plan.to_remove == []
        assert plan.already_correct == ["Alice"]

    def test_remove_and_invite(self):
        plan = diff(_members("Alice", "Bob", "Carol"), ["Alice", "Dave", "Bob"])
        assert plan.to_invite == ["Carol"]
        assert plan.to_remove == ["Dave"]
        assert plan.already_correct == ["Alice", "Bob"]

    def test_case_insensitive_match(self):
        plan = diff(_members("Alice", "Bob"), ["ALICE", "bob"])
        assert plan.is_noop
        # desired spelling is kept
        assert plan.already_correct == ["Alice", "Bob"]

    def test_removal_keeps_roster_spelling(self):
        plan = diff(_members("Alice"), ["alice", "DAVE"])
        assert plan.to_remove == ["DAVE"]

    def test_empty_roster_invites_everyone(self):
        plan = diff(_members("Alice", "Bob"), [])
        assert plan.to_invite == ["Alice", "Bob"]

    def test_empty_slots_are_skipped(self):
        plan = diff(_members("Alice"), ["Alice", "", None, "---"])
        assert plan.is_noop

    def test_accepts_plain_names(self):
        plan = diff(["Alice", "Bob"], ["Alice"])
        assert plan.to_invite == ["Bob"]

    def test_partition_property(self):
        desired = _members("Alice", "Bob", "Carol", "Dave")
        actual = ["bob", "Erin", "DAVE", "Frank"]
        plan = diff(desired, actual)
        desired_keys = {m.name.casefold() for m in desired}
        actual_keys = {a.casefold() for a in actual}
        invite = {n.casefold() for n in plan.to_invite}
        remove = {n.casefold() for n in plan.to_remove}
        correct = {n.casefold() for n in plan.already_correct}
        assert invite | correct == desired_keys
        assert remove | correct == actual_keys
        assert not invite & correct
        assert not remove & correct
        assert not invite & remove

    def test_idempotent_after_applying_plan(self):
        desired = _members("Alice", "Bob", "Carol")
        plan = diff(desired, ["Alice", "Dave"])
        applied = [n for n in ["Alice", "Dave"] if n not in plan.to_remove] + plan.to_invite
        assert diff(desired, applied).total_changes == 0


# =====================================================================
# verify_members / roster_names
# =====================================================================
class TestVerify:
    def test_all_present(self):
        assert verify_members(_members("Alice", "Bob"), ["bob", "alice"]) == []

    def test_missing_reported_in_desired_order(self):
        assert verify_members(_members("Alice", "Bob", "Carol"), ["Alice"]) == ["Bob", "Carol"]

    def test_extra_members_are_not_a_failure(self):
        assert verify_members(_members("Alice"), ["Alice", "Dave"]) == []

    def test_roster_names_dedupes(self):
        assert roster_names(["Alice", "alice", "", "Bob"]) == ["Alice", "Bob"]
