"""
Close-friend contact book

Keeps the user's closeFriends list current through a real-time
subscription on their profile document.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from core.interfaces import DocumentStore, Subscription
from models.sos import CloseFriendContact, UserProfile


USERS = "users"


class ContactBook:
    """Read side of the user's closeFriends, plus a save for the manage flow"""

    def __init__(self, store: DocumentStore, user_id: str):
        self.logger = logging.getLogger(__name__)
        self.store = store
        self.user_id = user_id
        self._profile = UserProfile(user_id=user_id)
        self._subscription: Optional[Subscription] = None

    @property
    def contacts(self) -> List[CloseFriendContact]:
        return list(self._profile.close_friends)

    @property
    def profile(self) -> UserProfile:
        return self._profile

    @property
    def listening(self) -> bool:
        return self._subscription is not None and self._subscription.active

    async def start(self):
        """Subscribe to the profile document; the first snapshot arrives immediately"""
        if self.listening:
            return
        self._subscription = self.store.subscribe(USERS, self.user_id, self._on_snapshot)
        self.logger.debug(f"Listening for closeFriends on user {self.user_id}")

    def stop(self):
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    async def refresh(self) -> List[CloseFriendContact]:
        """Re-read the profile document, keeping the last good list on failure"""
        try:
            data = await self.store.get(USERS, self.user_id)
        except Exception as e:
            self.logger.error(f"Error fetching user profile {self.user_id}: {e}")
            return self.contacts

        self._profile = UserProfile.from_document(self.user_id, data)
        return self.contacts

    async def save(self, contacts: Sequence[CloseFriendContact]):
        """Replace the closeFriends list on the profile document"""
        payload: Dict[str, Any] = {'closeFriends': [c.to_dict() for c in contacts]}
        existing = await self.store.get(USERS, self.user_id)
        if existing is None:
            await self.store.set(USERS, self.user_id, payload)
        else:
            await self.store.update(USERS, self.user_id, payload)
        self.logger.info(f"Saved {len(contacts)} close friend(s) for user {self.user_id}")

    def _on_snapshot(self, data: Optional[Dict[str, Any]]):
        if data is None:
            self.logger.info(f"User document {self.user_id} does not exist")
        self._profile = UserProfile.from_document(self.user_id, data)
