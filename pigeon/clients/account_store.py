"""
Chain account store: the per-chain registry of onboarded users.

Records are keyed by normalized phone number. Mutations are admin-gated in
the real backends; callers of this interface are trusted server code.
"""

import logging
import time
from abc import ABC, abstractmethod
from typing import Dict, Optional

from pigeon.models.internal_models import UserAccount

logger = logging.getLogger(__name__)


class AccountStoreError(Exception):
    """Raised when the account store cannot be read or written."""
    pass


class AccountExistsError(AccountStoreError):
    """Raised when inserting a phone that is already registered."""
    pass


class AccountNotFoundError(AccountStoreError):
    """Raised when updating or deleting a phone that is not registered."""
    pass


class ChainAccountStore(ABC):
    """Lookup and admin mutation of user records for one chain."""

    @abstractmethod
    async def find_user(self, phone: str) -> Optional[UserAccount]:
        """Return the record for ``phone`` or None if not registered."""

    @abstractmethod
    async def insert_user(
        self,
        phone: str,
        address: str,
        encrypted_secret: str,
        created_at: Optional[int] = None
    ) -> UserAccount:
        """Register a new user. Raises AccountExistsError if already present."""

    @abstractmethod
    async def update_user(self, phone: str, address: str, encrypted_secret: str) -> UserAccount:
        """Replace address and secret, keeping ``created_at``."""

    @abstractmethod
    async def delete_user(self, phone: str) -> bool:
        """Remove a user. Returns False if no record existed."""

    async def user_exists(self, phone: str) -> bool:
        return await self.find_user(phone) is not None

    async def health_check(self) -> bool:
        return True


class InMemoryAccountStore(ChainAccountStore):
    """Dictionary-backed store for development and tests."""

    def __init__(self, chain_name: str = "memory"):
        self.chain_name = chain_name
        self._users: Dict[str, UserAccount] = {}

    async def find_user(self, phone: str) -> Optional[UserAccount]:
        return self._users.get(phone)

    async def insert_user(
        self,
        phone: str,
        address: str,
        encrypted_secret: str,
        created_at: Optional[int] = None
    ) -> UserAccount:
        if phone in self._users:
            raise AccountExistsError(f"User {phone} already onboarded")

        user = UserAccount(
            phone=phone,
            address=address,
            encrypted_secret=encrypted_secret,
            created_at=created_at if created_at is not None else int(time.time())
        )
        self._users[phone] = user
        logger.info(f"Stored {self.chain_name} account for {phone}")
        return user

    async def update_user(self, phone: str, address: str, encrypted_secret: str) -> UserAccount:
        existing = self._users.get(phone)
        if existing is None:
            raise AccountNotFoundError(f"User {phone} not found")

        updated = UserAccount(
            phone=phone,
            address=address,
            encrypted_secret=encrypted_secret,
            created_at=existing.created_at
        )
        self._users[phone] = updated
        logger.info(f"Updated {self.chain_name} account for {phone}")
        return updated

    async def delete_user(self, phone: str) -> bool:
        return self._users.pop(phone, None) is not None
