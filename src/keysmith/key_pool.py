import random
from datetime import datetime

from keysmith.errors import AlreadyExistsError, NoKeysAvailableError, NotFoundError
from keysmith.models import KEY_ACTIVE, KEY_INACTIVE, KEY_UNKNOWN, Assignment


class KeyPool:
    """
    KeyPool holds the active and retired credentials along with the
    caller -> credential assignment table.

    A credential lives in exactly one of the two sets. Removal moves
    it from active to historical and it can never come back. Callers
    keep their assignment forever once issued, so repeated requests
    from the same caller get the same credential.

    The pool does no locking of its own. ManagerState owns it and
    serializes every call.
    """

    def __init__(self, rng: "random.Random | None" = None) -> "None":
        self._rng = rng or random.Random()
        # credential -> time it was added
        self._active: "dict[str, datetime]" = {}
        self._historical: "dict[str, datetime | None]" = {}
        # caller_id -> Assignment
        self._assignments: "dict[str, Assignment]" = {}

    def add(self, credential: "str", now: "datetime") -> "None":
        if credential in self._active:
            raise AlreadyExistsError("API key already exists")

        if credential in self._historical:
            raise AlreadyExistsError("API key was retired and cannot be re-added")

        self._active[credential] = now

    def remove(self, credential: "str") -> "None":
        if credential not in self._active:
            raise NotFoundError("API key not found")

        self._historical[credential] = self._active.pop(credential)

    def assign(self, caller_id: "str", now: "datetime") -> "str":
        """
        returns the caller's credential, picking one uniformly at
        random from the active set on the caller's first request.
        """
        existing = self._assignments.get(caller_id)
        if existing is not None:
            return existing.credential

        if not self._active:
            raise NoKeysAvailableError("No active API keys available")

        # sorted so a seeded rng gives reproducible picks
        credential = self._rng.choice(sorted(self._active))
        self._assignments[caller_id] = Assignment(
            caller_id=caller_id,
            credential=credential,
            issued_at=now,
        )
        return credential

    def status(self, credential: "str") -> "str":
        if credential in self._active:
            return KEY_ACTIVE
        if credential in self._historical:
            return KEY_INACTIVE
        return KEY_UNKNOWN

    def is_active(self, credential: "str") -> "bool":
        return credential in self._active

    def active(self) -> "list[str]":
        return sorted(self._active)

    def historical(self) -> "list[str]":
        return sorted(self._historical)

    def created_at(self, credential: "str") -> "datetime | None":
        if credential in self._active:
            return self._active[credential]
        return self._historical.get(credential)

    def assignment_for(self, caller_id: "str") -> "Assignment | None":
        return self._assignments.get(caller_id)

    def callers_for(self, credential: "str") -> "list[str]":
        return [
            a.caller_id
            for a in self.assignment_history()
            if a.credential == credential
        ]

    def assignment_history(self) -> "list[Assignment]":
        return sorted(
            self._assignments.values(),
            key=lambda a: (a.issued_at, a.caller_id),
        )

    def restore(
        self,
        active: "dict[str, datetime]",
        historical: "dict[str, datetime | None]",
        assignments: "list[Assignment]",
    ) -> "None":
        """
        replaces the pool contents with previously saved state.
        """
        overlap = set(active) & set(historical)
        if overlap:
            raise ValueError(f"credentials both active and historical: {len(overlap)}")

        self._active = dict(active)
        self._historical = dict(historical)
        self._assignments = {a.caller_id: a for a in assignments}
