"""Group formation orchestrator.

Drives one group (or a whole group set) from its current state to the
desired roster::

    ANALYZE -> (no changes: DONE)
            -> REMOVE_UNWANTED -> DISBAND_NEW -> INVITE -> WAIT_FOR_JOIN
            -> VERIFY -> (all present: DONE | RETRY | PARTIAL / FAIL)
            -> ROLE ASSIGNMENT

All waits are multiples of the configured base ``delay`` (milliseconds) and
are cancellable through the process stop flag. Query timeouts never escape:
an unanswered roster query counts as an empty roster during analysis and as
"everyone missing" during verification, which feeds the retry loop.

Example::

    former = GroupFormer(query, dispatcher, FormationSettings(delay_ms=100))
    result = former.form_group(group)
    print(result.message)   # "Group formed with 2/3 members (missing: Carol)"
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from groupdesigner.diff import diff, verify_members
from groupdesigner.dispatch import CommandDispatcher
from groupdesigner.errors import DuplicatePeerError, GroupQueryTimeout
from groupdesigner.models import FormationResult, GroupChangePlan, GroupMember, GroupSpec, same_name
from groupdesigner.query import GroupQuery
from groupdesigner.waiting import pause, wait_until

logger = logging.getLogger("GroupDesigner.Formation")

SUCCESS_MESSAGE = "Group formed successfully"
CANCELLED_MESSAGE = "Group formation cancelled"


@dataclass
class FormationSettings:
    """Tunables for formation, usually read from the ``groupdesigner.yaml`` config.

    Attributes:
        keep_raid:       Skip the raid-disband step.
        delay_ms:        Base delay; every settle wait is a multiple of it.
        max_retries:     Verification attempts per group.
        query_timeout_s: Roster query timeout (default ``delay * 30``).
        join_poll_s:     Interval between verifications while waiting for joins.
    """

    keep_raid: bool = False
    delay_ms: int = 100
    max_retries: int = 3
    query_timeout_s: Optional[float] = None
    join_poll_s: float = 0.5

    def delay(self, multiplier: float) -> float:
        """``delay_ms * multiplier`` in seconds."""
        return self.delay_ms * multiplier / 1000.0

    @property
    def query_timeout(self) -> float:
        if self.query_timeout_s is not None:
            return self.query_timeout_s
        return self.delay(30)


class _Cancelled(Exception):
    pass


def _joined(names: Sequence[str]) -> str:
    return ", ".join(names)


class GroupFormer:
    """Form groups by sending disband/invite/role commands and verifying the result.

    Args:
        query:      Roster query (local or remote).
        dispatcher: Command dispatcher.
        settings:   Formation tunables.
        stop:       Process stop flag; aborts any wait in progress.
    """

    def __init__(
        self,
        query: GroupQuery,
        dispatcher: CommandDispatcher,
        settings: Optional[FormationSettings] = None,
        stop: Optional[threading.Event] = None,
    ) -> None:
        self._query = query
        self._dispatch = dispatcher
        self.settings = settings or FormationSettings()
        self._stop = stop

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _settle(self, multiplier: float) -> None:
        if not pause(self.settings.delay(multiplier), self._stop):
            raise _Cancelled()

    def _check_stop(self) -> None:
        if self._stop is not None and self._stop.is_set():
            raise _Cancelled()

    def current_members(self, leader: str, deadline: Optional[float] = None) -> Optional[List[str]]:
        """Leader's roster, or ``None`` if the query failed.

        With a *deadline* (``time.monotonic()`` value) the query timeout is
        capped at the time left, and nothing is sent once it has passed.
        """
        timeout = self.settings.query_timeout
        if deadline is not None:
            timeout = min(timeout, deadline - time.monotonic())
            if timeout <= 0:
                return None
        try:
            return self._query.query_group_members(leader, timeout)
        except (GroupQueryTimeout, DuplicatePeerError) as exc:
            logger.warning("Group query for %s failed: %s", leader, exc)
            return None

    def _disband(self, names: Sequence[str]) -> None:
        self._check_stop()
        if not self.settings.keep_raid:
            for name in names:
                self._dispatch.raid_disband(name)
        for name in names:
            self._dispatch.disband(name)

    def _invite(self, leader: str, names: Sequence[str]) -> int:
        self._check_stop()
        sent = 0
        for name in names:
            if same_name(name, leader):
                continue
            self._dispatch.invite(leader, name)
            logger.debug("Sent invite to %s", name)
            sent += 1
        return sent

    def _assign_roles(self, group: GroupSpec, leader: str, missing: Sequence[str],
                      multiplier: float) -> int:
        missing_keys = {n.casefold() for n in missing}
        sent = 0
        for member in group.members:
            if member.name.casefold() in missing_keys:
                continue
            for code in member.role_codes:
                self._check_stop()
                self._dispatch.set_role(leader, member.name, code)
                sent += 1
                self._settle(multiplier)
        if sent:
            logger.debug("Set %d role(s) for %s", sent, group.name)
        return sent

    def _result(self, group: GroupSpec, missing: Sequence[str]) -> FormationResult:
        missing_keys = {n.casefold() for n in missing}
        joined = [m.name for m in group.members if m.name.casefold() not in missing_keys]
        total = len(group.members)
        if not missing:
            return FormationResult(group.name, True, SUCCESS_MESSAGE, [], joined)
        if joined:
            message = (
                f"Group formed with {len(joined)}/{total} members "
                f"(missing: {_joined(missing)})"
            )
            return FormationResult(group.name, True, message, list(missing), joined)
        return FormationResult(
            group.name, False, f"Group formation failed - missing: {_joined(missing)}",
            list(missing), [],
        )

    def _cancelled(self, group: GroupSpec) -> FormationResult:
        logger.warning("Formation of %s cancelled", group.name)
        return FormationResult(group.name, False, CANCELLED_MESSAGE, group.member_names, [])

    # ------------------------------------------------------------------
    # Analysis and verification
    # ------------------------------------------------------------------

    def analyze(self, leader: str, members: Sequence[GroupMember]) -> GroupChangePlan:
        """Diff the desired members against the leader's live roster."""
        actual = self.current_members(leader) or []
        plan = diff(members, actual)
        logger.debug(
            "Group analysis for %s: correct=[%s] invite=[%s] remove=[%s]",
            leader,
            _joined(plan.already_correct),
            _joined(plan.to_invite),
            _joined(plan.to_remove),
        )
        return plan

    def verify(
        self, leader: str, members: Sequence[GroupMember], deadline: Optional[float] = None
    ) -> Tuple[bool, List[str]]:
        """Check that every desired member is in the leader's group.

        Extra members are not a failure. Returns ``(ok, missing_names)``.
        """
        actual = self.current_members(leader, deadline)
        if actual is None:
            missing = [m.name for m in members]
        else:
            missing = verify_members(members, actual)
        if missing:
            logger.debug("Group verification failed - missing: %s", _joined(missing))
        else:
            logger.debug("Group verification successful - all %d members present", len(members))
        return not missing, missing

    def _verify_with_retries(self, group: GroupSpec, leader: str, joined_early: bool) -> List[str]:
        missing: List[str] = []
        if joined_early:
            ok, missing = self.verify(leader, group.members)
            if ok:
                logger.debug("Group formation successful (confirmed after join wait)")
                return []
            logger.warning("Join wait reported success but verification failed, retrying...")

        attempts = max(1, self.settings.max_retries)
        for attempt in range(1, attempts + 1):
            self._check_stop()
            ok, missing = self.verify(leader, group.members)
            if ok:
                logger.debug("Group %s formed on attempt %d/%d", group.name, attempt, attempts)
                return []
            logger.debug("Attempt %d/%d failed for %s - missing: %s",
                         attempt, attempts, group.name, _joined(missing))
            if attempt < attempts:
                self._retry_missing(leader, missing)
            else:
                logger.debug("All retry attempts exhausted - continuing with partial group")
        return missing

    def _retry_missing(self, leader: str, missing: Sequence[str]) -> None:
        self._check_stop()
        others = [n for n in missing if not same_name(n, leader)]
        for name in others:
            self._dispatch.disband(name)
        self._settle(10)
        self._invite(leader, others)
        self._settle(20)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def form_group(self, group: GroupSpec) -> FormationResult:
        """Form a single group. Never raises for timeouts or cancellation."""
        if not group.members:
            return FormationResult(group.name, False, "No members in group")
        leader = group.leader.name
        logger.debug("Forming group %s with leader %s (max retries: %d)",
                     group.name, leader, self.settings.max_retries)
        try:
            return self._form_group(group, leader)
        except _Cancelled:
            return self._cancelled(group)

    def _form_group(self, group: GroupSpec, leader: str) -> FormationResult:
        plan = self.analyze(leader, group.members)
        self._check_stop()
        if plan.is_noop:
            logger.info("Group %s is already correctly formed, no changes needed", group.name)
            return self._result(group, [])

        logger.debug("Smart formation: %d changes needed (%d to remove, %d to invite)",
                     plan.total_changes, len(plan.to_remove), len(plan.to_invite))

        if plan.to_remove:
            self._disband(plan.to_remove)
            logger.debug("Waiting for %d members to disband...", len(plan.to_remove))
            self._settle(10)

        if plan.to_invite:
            # They may be sitting in an unrelated group; invites only land on ungrouped characters
            self._disband(plan.to_invite)
            logger.debug("Waiting for %d new members to leave other groups...",
                         len(plan.to_invite))
            self._settle(10)

        joined_early = False
        if plan.to_invite:
            self._invite(leader, plan.to_invite)
            max_wait = self.settings.delay(50)
            deadline = time.monotonic() + max_wait
            joined_early = wait_until(
                lambda: self.verify(leader, group.members, deadline)[0],
                self.settings.join_poll_s,
                max_wait,
                self._stop,
            )
            self._check_stop()
            if not joined_early:
                logger.warning("Timeout waiting for all members to join after %.1fs", max_wait)

        missing = self._verify_with_retries(group, leader, joined_early)
        self._assign_roles(group, leader, missing, multiplier=5)
        result = self._result(group, missing)
        logger.info("%s: %s", group.name, result.message)
        return result

    def form_group_set(self, groups: Sequence[GroupSpec]) -> List[FormationResult]:
        """Form several groups together.

        Disband and invite passes are batched across every group (one settle
        wait for all of them, each character disbanded at most once);
        verification, retries and role assignment then run per group.
        """
        valid = [g for g in groups if g.members]
        if not valid:
            return [FormationResult("N/A", False, "No valid groups found in set")]

        results: List[FormationResult] = []
        try:
            plans = self._batch_changes(valid)
            for group, plan in zip(valid, plans):
                if plan.is_noop:
                    results.append(self._result(group, []))
                    continue
                leader = group.leader.name
                logger.debug("Verifying group %s", group.name)
                missing = self._verify_with_retries(group, leader, False)
                self._assign_roles(group, leader, missing, multiplier=2)
                result = self._result(group, missing)
                logger.info("%s: %s", group.name, result.message)
                results.append(result)
        except _Cancelled:
            results.extend(self._cancelled(g) for g in valid[len(results):])
        return results

    def _batch_changes(self, groups: Sequence[GroupSpec]) -> List[GroupChangePlan]:
        plans = [self.analyze(g.leader.name, g.members) for g in groups]
        self._check_stop()
        total = sum(p.total_changes for p in plans)
        logger.debug("Smart formation analysis: %d total changes across %d groups",
                     total, len(groups))
        if total == 0:
            logger.info("All groups are already correctly formed, no changes needed")
            return plans

        seen: Dict[str, str] = {}
        for plan in plans:
            for name in list(plan.to_remove) + list(plan.to_invite):
                seen.setdefault(name.casefold(), name)
        to_disband = list(seen.values())
        if to_disband:
            logger.debug("Disbanding %d characters that need changes...", len(to_disband))
            self._disband(to_disband)
            self._settle(20)

        invites = 0
        for group, plan in zip(groups, plans):
            if plan.to_invite:
                invites += self._invite(group.leader.name, plan.to_invite)
        if invites:
            logger.debug("Sent %d invitations...", invites)
            self._settle(30)
        return plans
