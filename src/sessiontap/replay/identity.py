"""
Replay identity mapping.

Tracks which new identifier every original session and window id was given
during a replay run, and which ids stand in for original users.

All methods are synchronous. A check-then-insert therefore always completes
before the replayer can suspend on I/O, so two recordings of the same session
can never allocate diverging ids.
"""

import uuid
from typing import Callable, Dict, Iterator, Optional, Tuple

from ..common.errors import IdentityConsistencyViolation


def new_uuid() -> str:
    return str(uuid.uuid4())


class BiMap:
    """
    Bidirectional original id <-> new id map with get-or-create semantics.

    Each original id maps to exactly one new id and each new id to exactly one
    original id.
    """

    def __init__(self, name: str, factory: Callable[[], str] = new_uuid):
        self.name = name
        self.factory = factory
        self._forward: Dict[str, str] = {}
        self._reverse: Dict[str, str] = {}

    def __contains__(self, original: str) -> bool:
        return original in self._forward

    def __len__(self) -> int:
        return len(self._forward)

    def __iter__(self) -> Iterator[str]:
        return iter(self._forward)

    def items(self) -> Iterator[Tuple[str, str]]:
        return iter(self._forward.items())

    def get(self, original: str) -> Optional[str]:
        return self._forward.get(original)

    def original_of(self, new_id: str) -> Optional[str]:
        return self._reverse.get(new_id)

    def bind(self, original: str, new_id: str) -> str:
        """
        Bind an original id to a specific new id.

        Raises:
            IdentityConsistencyViolation: If either side is already bound elsewhere
        """
        existing = self._forward.get(original)
        if existing is not None:
            if existing != new_id:
                raise IdentityConsistencyViolation(
                    f"{self.name} {original} already maps to {existing}, not {new_id}",
                    original_id=original,
                    new_id=new_id
                )
            return existing

        owner = self._reverse.get(new_id)
        if owner is not None:
            raise IdentityConsistencyViolation(
                f"{self.name} {new_id} already stands for {owner}, cannot also stand for {original}",
                original_id=original,
                new_id=new_id
            )

        self._forward[original] = new_id
        self._reverse[new_id] = original
        return new_id

    def get_or_create(self, original: str, preferred: Optional[str] = None) -> Tuple[str, bool]:
        """
        Resolve an original id, allocating a new id on first sight.

        Args:
            original: Original id from the capture
            preferred: New id to use on first sight if it is still free

        Returns:
            (new id, whether this call created the binding)
        """
        existing = self._forward.get(original)
        if existing is not None:
            return existing, False

        new_id = preferred if preferred and preferred not in self._reverse else self.factory()
        while new_id in self._reverse:
            new_id = self.factory()
        return self.bind(original, new_id), True


class IdentityMapping:
    """
    All identity state of one replay run.

    - sessions: original session id -> replayed session id
    - windows: original window id -> replayed window id
    - anonymous_id: the single distinct id standing in for every anonymous visitor
    - user aliases: original distinct ids -> their stand-in in the replay

    The anonymous id is generated once per run and shared by every recording
    in it.
    """

    def __init__(
        self,
        target_session_id: str,
        target_user_id: str,
        anonymous_id: Optional[str] = None,
        factory: Callable[[], str] = new_uuid
    ):
        self.target_session_id = target_session_id
        self.target_user_id = target_user_id
        self.anonymous_id = anonymous_id or factory()
        self.sessions = BiMap('session', factory)
        self.windows = BiMap('window', factory)
        self._user_aliases: Dict[str, str] = {}

    def session_for(self, original: str) -> Tuple[str, bool]:
        """New session id for an original one; the first session seen gets the target id."""
        return self.sessions.get_or_create(original, preferred=self.target_session_id)

    def window_for(self, original: str) -> str:
        new_id, _ = self.windows.get_or_create(original)
        return new_id

    def user_for(self, identified: bool) -> str:
        """Stand-in distinct id for an event, by its identified flag."""
        return self.target_user_id if identified else self.anonymous_id

    def alias_user(self, original: str, identified: bool) -> str:
        """
        Record the stand-in for an original distinct id.

        An identified alias is never downgraded to the anonymous id.
        """
        stand_in = self.user_for(identified)
        current = self._user_aliases.get(original)
        if current is None or (identified and current != stand_in):
            self._user_aliases[original] = stand_in
        return self._user_aliases[original]

    @property
    def user_aliases(self) -> Dict[str, str]:
        return dict(self._user_aliases)
