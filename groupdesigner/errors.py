"""Exception hierarchy for GroupDesigner.

Only configuration lookups and transport initialisation surface to the
user-facing layer; query timeouts are absorbed by the formation orchestrator
and turned into missing-member lists.
"""

from __future__ import annotations


class GroupDesignerError(Exception):
    """Base class for all GroupDesigner errors."""


class TransportUnavailable(GroupDesignerError):
    """The mailbox could not be registered (transport not ready, duplicate registration)."""


class GroupQueryTimeout(GroupDesignerError, TimeoutError):
    """No GroupData reply arrived for a leader within the query timeout."""

    def __init__(self, leader: str, timeout_s: float):
        self.leader = leader
        self.timeout_s = timeout_s
        super().__init__(f"No group data from {leader} within {timeout_s:.1f}s")


class DuplicatePeerError(GroupDesignerError):
    """Two distinct processes answered under the same character name."""

    def __init__(self, name: str, instances: list[str]):
        self.name = name
        self.instances = list(instances)
        super().__init__(
            f"Character name '{name}' is claimed by {len(self.instances)} processes"
        )


class GroupNotFoundError(GroupDesignerError, KeyError):
    """A named group or group set is absent from the configuration."""

    def __init__(self, kind: str, name: str):
        self.kind = kind
        self.name = name
        super().__init__(f"{kind} not found: {name}")

    def __str__(self) -> str:
        return self.args[0]


class MessageDecodeError(GroupDesignerError, ValueError):
    """An inbound payload is not one of the known message kinds."""
