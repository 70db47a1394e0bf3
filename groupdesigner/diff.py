"""Group diff engine: desired members vs. a leader's actual roster.

Pure and total: never raises, never touches the network. Names compare
case-insensitively; desired names keep their configured spelling, removals
keep the spelling the roster reported.
"""

from __future__ import annotations

from typing import Iterable, List, Sequence, Union

from groupdesigner.models import GroupChangePlan, GroupMember, clean_value, names_of

Desired = Sequence[Union[GroupMember, str]]


def _unique(names: Iterable[str]) -> List[str]:
    seen = set()
    result = []
    for name in names:
        key = name.casefold()
        if key in seen:
            continue
        seen.add(key)
        result.append(name)
    return result


def roster_names(actual: Iterable) -> List[str]:
    """Drop empty slots and null markers from a raw roster, de-duplicated."""
    return _unique(n for n in (clean_value(v) for v in actual) if n is not None)


def diff(desired: Desired, actual: Iterable) -> GroupChangePlan:
    """Compute the invite/remove/no-op plan that turns *actual* into *desired*.

    Args:
        desired: Desired members (``GroupMember`` objects or names).
        actual:  Names currently in the leader's group.

    Returns:
        A :class:`GroupChangePlan` where ``to_invite`` is desired minus actual,
        ``to_remove`` is actual minus desired and ``already_correct`` is their
        intersection.
    """
    wanted = _unique(names_of(desired))
    current = roster_names(actual)
    current_keys = {n.casefold() for n in current}
    wanted_keys = {n.casefold() for n in wanted}

    plan = GroupChangePlan()
    for name in wanted:
        if name.casefold() in current_keys:
            plan.already_correct.append(name)
        else:
            plan.to_invite.append(name)
    plan.to_remove = [n for n in current if n.casefold() not in wanted_keys]
    return plan


def verify_members(desired: Desired, actual: Iterable) -> List[str]:
    """Return desired names missing from *actual*. Extra members are not a failure."""
    current_keys = {n.casefold() for n in roster_names(actual)}
    return [n for n in _unique(names_of(desired)) if n.casefold() not in current_keys]
