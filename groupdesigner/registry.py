"""Peer status registry (master-side).

Maps character name → last reported :class:`~groupdesigner.models.PeerStatus`.
Written by the mailbox delivery thread, read by the UI/CLI and the
orchestrator, so every operation is guarded by an RLock and every read
returns copies.

Entries are never expired: a peer that goes silent keeps its last snapshot.
The current contents can be exported as ``{name: wire-record}`` (with
``"---"`` for unknown fields) and persisted to JSON for out-of-band readers.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from groupdesigner.models import PeerStatus

logger = logging.getLogger("GroupDesigner.Registry")

DEFAULT_PEER_FILE = str(Path.home() / ".groupdesigner" / "peers.json")


class PeerRegistry:
    """Thread-safe name → status map with JSON persistence.

    Args:
        persist_path: Default file for :meth:`save` / :meth:`load`.
    """

    def __init__(self, persist_path: Optional[str] = None) -> None:
        self._lock = threading.RLock()
        self._peers: Dict[str, PeerStatus] = {}
        self._instances: Dict[str, str] = {}
        if persist_path is None:
            persist_path = DEFAULT_PEER_FILE
        self._path = persist_path

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _key_for(self, name: str) -> Optional[str]:
        if name in self._peers:
            return name
        folded = name.casefold()
        for key in self._peers:
            if key.casefold() == folded:
                return key
        return None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def add_self(self, status: PeerStatus) -> None:
        """Insert the local character's snapshot (no round trip)."""
        with self._lock:
            key = self._key_for(status.name)
            if key is not None and key != status.name:
                del self._peers[key]
            self._peers[status.name] = status.copy()
        logger.debug("Registered own status for %s", status.name)

    def discover(self, names: Iterable[str]) -> int:
        """Create stale stubs for names not seen before. Returns the count added."""
        added = 0
        with self._lock:
            for name in names:
                if name and self._key_for(name) is None:
                    self._peers[name] = PeerStatus.stub(name)
                    added += 1
        if added:
            logger.debug("Discovered %d new peer(s)", added)
        return added

    def upsert(self, status: PeerStatus, instance: str = "") -> bool:
        """Record a reply. Returns True if the stored entry was replaced.

        A reply with a known class fully overwrites the entry. A reply whose
        class is still unknown only fills an entry that has no good snapshot
        yet, so a loading client never erases a peer's last known data.
        """
        incoming = status.copy()
        incoming.stale = not incoming.is_known
        with self._lock:
            key = self._key_for(incoming.name)
            existing = self._peers.get(key) if key is not None else None
            if existing is not None and existing.is_known and not incoming.is_known:
                return False
            if key is not None and key != incoming.name:
                del self._peers[key]
            self._peers[incoming.name] = incoming

            folded = incoming.name.casefold()
            previous = self._instances.get(folded)
            if instance:
                if previous and previous != instance:
                    logger.warning(
                        "Peer %s now reporting from a different process (%s -> %s)",
                        incoming.name, previous, instance,
                    )
                self._instances[folded] = instance
        return True

    def clear(self) -> None:
        with self._lock:
            self._peers.clear()
            self._instances.clear()

    # ------------------------------------------------------------------
    # Reads (always copies)
    # ------------------------------------------------------------------

    def get(self, name: str) -> Optional[PeerStatus]:
        with self._lock:
            key = self._key_for(name)
            return self._peers[key].copy() if key is not None else None

    def names(self) -> List[str]:
        with self._lock:
            return list(self._peers)

    def snapshot(self) -> Dict[str, PeerStatus]:
        """Point-in-time copy of every entry."""
        with self._lock:
            return {name: status.copy() for name, status in self._peers.items()}

    def export(self) -> Dict[str, Dict[str, str]]:
        """Serializable ``{name: wire-record}`` mapping, ``"---"`` for unknown."""
        with self._lock:
            return {name: status.to_wire() for name, status in self._peers.items()}

    def __len__(self) -> int:
        with self._lock:
            return len(self._peers)

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return self._key_for(name) is not None

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, path: Optional[str] = None) -> None:
        """Write :meth:`export` to a JSON file."""
        target = Path(path or self._path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(json.dumps(self.export(), indent=2, sort_keys=True))

    def load(self, path: Optional[str] = None) -> int:
        """Replace the contents with a file written by :meth:`save`.

        Returns the number of entries loaded; a missing or corrupt file
        leaves the registry empty.
        """
        source = Path(path or self._path)
        peers: Dict[str, PeerStatus] = {}
        if source.exists():
            try:
                data = json.loads(source.read_text())
                for name, record in data.items():
                    record = dict(record)
                    record.setdefault("name", name)
                    peers[name] = PeerStatus.from_wire(record)
            except (json.JSONDecodeError, KeyError, AttributeError, TypeError) as exc:
                logger.warning("Ignoring unreadable peer file %s: %s", source, exc)
                peers = {}
        with self._lock:
            self._peers = peers
            self._instances.clear()
        return len(peers)


def load_peer_file(path: str) -> Dict[str, PeerStatus]:
    """Read a persisted registry without keeping a :class:`PeerRegistry` around."""
    registry = PeerRegistry(persist_path=path)
    registry.load()
    return registry.snapshot()
