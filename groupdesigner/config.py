"""GroupDesigner configuration (``groupdesigner.yaml``).

Holds the process settings, the saved groups and the saved group sets::

    identity: Alice
    keep_raid: false
    delay: 100                 # ms
    max_retries: 3
    request_interval: 10       # s
    transport:
      type: mqtt
      broker_host: localhost
      broker_port: 1883
      topic_prefix: groupdesigner
    groups:
      Tanks:
        members:
          - {name: Alice, roles: [Leader, Main Tank]}
          - {name: Bob, role: Main Assist}
    group_sets:
      Raid: [Tanks, Healers]

Group and group-set names are looked up case-insensitively.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import yaml

from groupdesigner.errors import GroupNotFoundError
from groupdesigner.formation import FormationSettings
from groupdesigner.models import GroupMember, GroupSetSpec, GroupSpec

logger = logging.getLogger("GroupDesigner.Config")

DEFAULT_CONFIG_PATH = "groupdesigner.yaml"

DEFAULT_TRANSPORT: Dict[str, Any] = {
    "type": "mqtt",
    "broker_host": "localhost",
    "broker_port": 1883,
    "topic_prefix": "groupdesigner",
}

TRANSPORT_TYPES = ("mqtt", "local")


def default_config_path() -> str:
    return os.getenv("GROUPDESIGNER_CONFIG", DEFAULT_CONFIG_PATH)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _check_int(raw: dict, key: str, errors: List[str], minimum: int = 0) -> None:
    if key not in raw:
        return
    value = raw[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        errors.append(f"'{key}' must be a number")
    elif value < minimum:
        errors.append(f"'{key}' must be >= {minimum}")


def validate_config(raw: Any) -> Tuple[bool, List[str]]:
    """Validate a loaded config mapping.

    Returns:
        A ``(is_valid, errors)`` tuple; ``errors`` holds one human-readable
        line per problem.
    """
    if raw is None:
        return True, []
    if not isinstance(raw, dict):
        return False, ["Config must be a mapping (check YAML syntax)"]

    errors: List[str] = []

    _check_int(raw, "delay", errors)
    _check_int(raw, "max_retries", errors)
    _check_int(raw, "request_interval", errors, minimum=1)
    if "keep_raid" in raw and not isinstance(raw["keep_raid"], bool):
        errors.append("'keep_raid' must be true or false")

    transport = raw.get("transport")
    if transport is not None:
        if not isinstance(transport, dict):
            errors.append("'transport' must be a mapping")
        else:
            kind = transport.get("type", DEFAULT_TRANSPORT["type"])
            if kind not in TRANSPORT_TYPES:
                errors.append(
                    f"'transport.type' must be one of {', '.join(TRANSPORT_TYPES)}, not {kind!r}"
                )
            port = transport.get("broker_port")
            if port is not None and (isinstance(port, bool) or not isinstance(port, int)):
                errors.append("'transport.broker_port' must be an integer")

    groups = raw.get("groups")
    if groups is not None:
        if not isinstance(groups, dict):
            errors.append("'groups' must be a mapping of group name to members")
        else:
            for name, body in groups.items():
                members = body.get("members") if isinstance(body, dict) else body
                if not isinstance(members, list):
                    errors.append(f"group '{name}' needs a 'members' list")
                    continue
                for entry in members:
                    if isinstance(entry, str):
                        continue
                    if not isinstance(entry, dict) or not entry.get("name"):
                        errors.append(f"group '{name}' has a member without a name")
                        continue
                    roles = entry.get("roles")
                    if roles is not None and not isinstance(roles, (str, int, list, dict)):
                        errors.append(
                            f"group '{name}' member '{entry['name']}' has invalid 'roles'"
                        )

    group_sets = raw.get("group_sets")
    if group_sets is not None:
        if not isinstance(group_sets, dict):
            errors.append("'group_sets' must be a mapping of set name to group names")
        else:
            for name, body in group_sets.items():
                if not isinstance(body, list):
                    errors.append(f"group set '{name}' must be a list of group names")

    return len(errors) == 0, errors


# ---------------------------------------------------------------------------
# Config object
# ---------------------------------------------------------------------------


@dataclass
class GroupDesignerConfig:
    """In-memory configuration. Build with :func:`load_config` or :meth:`from_dict`."""

    identity: Optional[str] = None
    keep_raid: bool = False
    delay: int = 100
    max_retries: int = 3
    request_interval: float = 10.0
    transport: Dict[str, Any] = field(default_factory=lambda: dict(DEFAULT_TRANSPORT))
    groups: Dict[str, GroupSpec] = field(default_factory=dict)
    group_sets: Dict[str, List[str]] = field(default_factory=dict)
    path: Optional[str] = None

    # -- serialisation ---------------------------------------------------

    @classmethod
    def from_dict(cls, raw: Optional[dict], path: Optional[str] = None) -> GroupDesignerConfig:
        raw = raw or {}
        transport = dict(DEFAULT_TRANSPORT)
        transport.update(raw.get("transport") or {})
        groups = {
            str(name): GroupSpec.from_dict(str(name), body)
            for name, body in (raw.get("groups") or {}).items()
        }
        group_sets = {
            str(name): [str(g) for g in (body or [])]
            for name, body in (raw.get("group_sets") or {}).items()
        }
        return cls(
            identity=raw.get("identity"),
            keep_raid=bool(raw.get("keep_raid", False)),
            delay=int(raw.get("delay", 100)),
            max_retries=int(raw.get("max_retries", 3)),
            request_interval=float(raw.get("request_interval", 10)),
            transport=transport,
            groups=groups,
            group_sets=group_sets,
            path=path,
        )

    def to_dict(self) -> dict:
        d: Dict[str, Any] = {}
        if self.identity:
            d["identity"] = self.identity
        d.update(
            {
                "keep_raid": self.keep_raid,
                "delay": self.delay,
                "max_retries": self.max_retries,
                "request_interval": self.request_interval,
                "transport": dict(self.transport),
                "groups": {name: g.to_dict() for name, g in self.groups.items()},
                "group_sets": {name: list(gs) for name, gs in self.group_sets.items()},
            }
        )
        return d

    def formation_settings(self) -> FormationSettings:
        return FormationSettings(
            keep_raid=self.keep_raid,
            delay_ms=self.delay,
            max_retries=self.max_retries,
        )

    # -- lookups ---------------------------------------------------------

    def find_group_name(self, name: str) -> Optional[str]:
        """Stored spelling of a group name, matched case-insensitively."""
        return _find(self.groups, name)

    def find_group_set_name(self, name: str) -> Optional[str]:
        return _find(self.group_sets, name)

    def get_group(self, name: str) -> GroupSpec:
        """Raises :class:`GroupNotFoundError` if no such group exists."""
        key = self.find_group_name(name)
        if key is None:
            raise GroupNotFoundError("Group", name)
        return self.groups[key]

    def get_group_set(self, name: str) -> GroupSetSpec:
        """Raises :class:`GroupNotFoundError` if no such group set exists."""
        key = self.find_group_set_name(name)
        if key is None:
            raise GroupNotFoundError("Group set", name)
        return GroupSetSpec(name=key, groups=list(self.group_sets[key]))

    def resolve_group_set(self, name: str) -> List[GroupSpec]:
        """Groups of a set, in order. Names that no longer resolve are skipped."""
        group_set = self.get_group_set(name)
        resolved = []
        for group_name in group_set.groups:
            group_key = self.find_group_name(group_name)
            if group_key is None:
                logger.warning("Group set %s references unknown group %s",
                               group_set.name, group_name)
                continue
            resolved.append(self.groups[group_key])
        return resolved

    # -- edits -----------------------------------------------------------

    def save_group(self, name: str, members: Sequence[GroupMember]) -> Tuple[str, bool]:
        """Store a group, overwriting any group with the same name in any case.

        Returns:
            ``(final_name, overwritten)``; an overwrite keeps the stored spelling.
        """
        existing = self.find_group_name(name)
        final = existing or name
        group = GroupSpec(name=final)
        for member in members:
            group.members.append(GroupMember(name=member.name))
            for role in member.roles:
                group.assign_role(member.name, role)
        self.groups[final] = group
        logger.info("%s group %s (%d members)",
                    "Overwrote" if existing else "Saved", final, len(group.members))
        return final, existing is not None

    def save_group_set(self, name: str, blocks: Sequence[Sequence[GroupMember]]) -> Tuple[str, List[str]]:
        """Store each non-empty block as group ``<set>_<n>`` and the set listing them.

        Returns:
            ``(final_set_name, group_names)``.
        """
        final = self.find_group_set_name(name) or name
        group_names = []
        index = 0
        for block in blocks:
            if not block:
                continue
            index += 1
            group_name, _ = self.save_group(f"{final}_{index}", block)
            group_names.append(group_name)
        self.group_sets[final] = group_names
        logger.info("Saved group set %s with %d groups", final, len(group_names))
        return final, group_names

    def delete_group(self, name: str) -> bool:
        key = self.find_group_name(name)
        if key is None:
            return False
        del self.groups[key]
        return True

    def delete_group_set(self, name: str) -> bool:
        key = self.find_group_set_name(name)
        if key is None:
            return False
        del self.group_sets[key]
        return True


def _find(mapping: Dict[str, Any], name: str) -> Optional[str]:
    if name in mapping:
        return name
    folded = name.casefold()
    for key in mapping:
        if key.casefold() == folded:
            return key
    return None


# ---------------------------------------------------------------------------
# Loading and saving
# ---------------------------------------------------------------------------


def _apply_env(config: GroupDesignerConfig) -> None:
    host = os.getenv("MQTT_BROKER_HOST")
    if host:
        config.transport["broker_host"] = host
    port = os.getenv("MQTT_BROKER_PORT")
    if port:
        try:
            config.transport["broker_port"] = int(port)
        except ValueError:
            logger.warning("Ignoring non-numeric MQTT_BROKER_PORT=%r", port)


def load_config(path: Optional[str] = None) -> GroupDesignerConfig:
    """Load and validate a config file.

    A missing file yields the defaults (no groups). Environment overrides are
    applied on top.

    Raises:
        ValueError: The file exists but fails validation.
    """
    path = path or default_config_path()
    raw: Any = None
    if os.path.exists(path):
        with open(path) as f:
            raw = yaml.safe_load(f)
        ok, errors = validate_config(raw)
        if not ok:
            for msg in errors:
                logger.error("Config validation error: %s", msg)
            raise ValueError(f"Invalid config {path}: " + "; ".join(errors))
        logger.debug("Loaded configuration from %s", path)
    else:
        logger.debug("Config file %s not found, using defaults", path)
    config = GroupDesignerConfig.from_dict(raw, path=path)
    _apply_env(config)
    return config


def save_config(config: GroupDesignerConfig, path: Optional[str] = None) -> str:
    """Write *config* as YAML. Returns the path written."""
    target = Path(path or config.path or default_config_path())
    if target.parent and not target.parent.exists():
        target.parent.mkdir(parents=True, exist_ok=True)
    with open(target, "w") as f:
        yaml.safe_dump(config.to_dict(), f, default_flow_style=False, sort_keys=False)
    config.path = str(target)
    return str(target)
