"""Identity store.

Stable, append-only mapping between Canvas user ids, display names and
anonymous ids (``<PREFIX>-<NN>``). An anonymous id is assigned the first
time a student is seen and never changes or gets reused; the mapping
file stays in the private data directory.
"""

import logging
import re

from submission_analyzer.storage import load_json, save_json

logger = logging.getLogger(__name__)

_NON_ALPHA = re.compile(r"[^a-z\s]")
_SPACES = re.compile(r"\s+")


def normalize_name(name) -> str:
    """Lowercase, drop punctuation and collapse whitespace."""
    if not name:
        return ""
    name = _NON_ALPHA.sub("", str(name).lower())
    return _SPACES.sub(" ", name).strip()


class IdentityMap:
    """Bidirectional AnonId <-> Canvas user id <-> display name map."""

    def __init__(self, prefix: str, entries: dict = None):
        self.prefix = prefix
        self._entries = {}
        self._by_user = {}
        for anon_id, info in (entries or {}).items():
            self._add(anon_id, info["lmsUserId"], info.get("name", ""))

    def _add(self, anon_id, lms_user_id, name):
        self._entries[anon_id] = {"lmsUserId": lms_user_id, "name": name}
        self._by_user[str(lms_user_id)] = anon_id

    def __len__(self):
        return len(self._entries)

    def __contains__(self, anon_id):
        return anon_id in self._entries

    # ── persistence ───────────────────────────────────────────────────────

    @classmethod
    def load(cls, path, prefix: str) -> "IdentityMap":
        return cls(prefix, load_json(path) or {})

    def save(self, path) -> None:
        save_json(path, self.to_dict())

    def to_dict(self) -> dict:
        return {anon_id: dict(info) for anon_id, info in self._entries.items()}

    # ── roster sync ───────────────────────────────────────────────────────

    def _next_number(self) -> int:
        highest = 0
        pattern = re.compile(rf"^{re.escape(self.prefix)}-(\d+)$")
        for anon_id in self._entries:
            m = pattern.match(anon_id)
            if m:
                highest = max(highest, int(m.group(1)))
        return highest + 1

    def sync_roster(self, roster) -> list:
        """Append unseen students from *roster* and return their new ids.

        *roster* is an iterable of ``{"lmsUserId", "name"}`` dicts.
        Existing ids are kept; only a changed display name is refreshed.
        """
        added = []
        next_number = self._next_number()
        for student in roster:
            user_id = student["lmsUserId"]
            name = student.get("name", "")
            existing = self._by_user.get(str(user_id))
            if existing:
                if name and self._entries[existing]["name"] != name:
                    logger.info("Display name changed for %s", existing)
                    self._entries[existing]["name"] = name
                continue
            anon_id = f"{self.prefix}-{next_number:02d}"
            next_number += 1
            self._add(anon_id, user_id, name)
            added.append(anon_id)
        return added

    # ── lookups ───────────────────────────────────────────────────────────

    def anon_ids(self) -> list:
        return list(self._entries)

    def anon_id_for(self, lms_user_id):
        if lms_user_id is None:
            return None
        return self._by_user.get(str(lms_user_id))

    def lms_user_id(self, anon_id):
        info = self._entries.get(anon_id)
        return info["lmsUserId"] if info else None

    def name(self, anon_id, default=None):
        info = self._entries.get(anon_id)
        if info:
            return info["name"]
        return anon_id if default is None else default

    def sorted_by_name(self) -> list:
        """Anon ids ordered by display name (case-insensitive)."""
        return sorted(
            self._entries,
            key=lambda a: (self._entries[a]["name"].lower(), a),
        )

    def find_by_name(self, target):
        """Resolve a free-typed name to an anon id, or None.

        Exact normalised match first; then substring containment in
        either direction ("Perez, Adrian" vs "Alonso Perez, Adrian").
        Ties resolve to the first entry in insertion order.
        """
        wanted = normalize_name(target)
        if not wanted:
            return None

        normalized = [(a, normalize_name(info["name"])) for a, info in self._entries.items()]
        for anon_id, name in normalized:
            if name == wanted:
                return anon_id
        for anon_id, name in normalized:
            if name and (wanted in name or name in wanted):
                return anon_id
        return None
