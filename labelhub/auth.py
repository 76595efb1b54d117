"""Acting-user identity as supplied by the upstream identity provider."""

from dataclasses import dataclass
from typing import Optional
from uuid import UUID

USER_ROLES = ("admin", "manager", "artist")
STAFF_ROLES = ("admin", "manager")


@dataclass(frozen=True)
class Actor:
    """An already-authenticated user acting on the system.

    ``artist_id`` is set only for users with the ``artist`` role whose account
    is linked to a roster entry.
    """

    user_id: UUID
    role: str
    artist_id: Optional[UUID] = None

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    @property
    def is_artist(self) -> bool:
        return self.role == "artist"

    def owns(self, artist_id: Optional[UUID]) -> bool:
        """True when this actor is the artist identified by ``artist_id``."""
        return self.is_artist and self.artist_id is not None and self.artist_id == artist_id
