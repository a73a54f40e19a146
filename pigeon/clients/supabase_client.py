"""Supabase-backed chain account store."""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Optional

from postgrest.exceptions import APIError
from supabase import create_client, Client

from pigeon.config import settings
from pigeon.models.internal_models import UserAccount
from pigeon.clients.account_store import (
    AccountExistsError,
    AccountNotFoundError,
    AccountStoreError,
    ChainAccountStore
)

logger = logging.getLogger(__name__)

ACCOUNTS_TABLE = "wallet_accounts"


class SupabaseClient:
    """Client for Supabase database operations."""

    def __init__(self, url: Optional[str] = None, key: Optional[str] = None):
        """Initialize Supabase client with configuration."""
        self._client: Optional[Client] = None
        self._url = url or settings.supabase_url
        self._key = key or settings.supabase_key

    @property
    def client(self) -> Client:
        """Get or create Supabase client instance."""
        if self._client is None:
            if not self._url or not self._key:
                raise AccountStoreError("SUPABASE_URL and SUPABASE_KEY must be set for the supabase account store")
            self._client = create_client(self._url, self._key)
        return self._client

    async def health_check(self) -> bool:
        """Check if database connection is healthy."""
        try:
            await asyncio.to_thread(
                lambda: self.client.table(ACCOUNTS_TABLE).select("phone", count="exact").limit(0).execute()
            )
            return True
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False


class SupabaseAccountStore(ChainAccountStore):
    """
    Account store for one chain in a shared ``wallet_accounts`` table.

    Rows are unique on (chain, phone). The service-role key is the admin
    credential that gates mutation.
    """

    def __init__(self, supabase_client: SupabaseClient, chain: str, max_retries: int = 3, base_delay: float = 0.5):
        """Initialize repository with Supabase client."""
        self.client = supabase_client
        self.chain = chain
        self.max_retries = max_retries
        self.base_delay = base_delay

    def _table(self):
        return self.client.client.table(ACCOUNTS_TABLE)

    @staticmethod
    def _row_to_account(row: dict) -> UserAccount:
        created_at = row.get("created_at")
        if isinstance(created_at, str):
            created_at = int(datetime.fromisoformat(created_at.replace('Z', '+00:00')).timestamp())
        return UserAccount(
            phone=row["phone"],
            address=row.get("address") or None,
            encrypted_secret=row.get("encrypted_secret") or None,
            created_at=int(created_at or 0)
        )

    async def retry_operation(self, operation):
        """Retry read operations with exponential backoff."""
        last_exception = None

        for attempt in range(self.max_retries):
            try:
                return await asyncio.to_thread(operation)
            except Exception as e:
                last_exception = e
                if attempt < self.max_retries - 1:
                    delay = self.base_delay * (2 ** attempt)
                    logger.warning(f"Account store read failed (attempt {attempt + 1}/{self.max_retries}), retrying in {delay}s: {e}")
                    await asyncio.sleep(delay)
                else:
                    logger.error(f"Account store read failed after {self.max_retries} attempts: {e}")

        raise AccountStoreError(f"Account lookup failed: {last_exception}")

    async def find_user(self, phone: str) -> Optional[UserAccount]:
        """Retrieve user by phone number."""
        result = await self.retry_operation(
            lambda: self._table().select("*").eq("chain", self.chain).eq("phone", phone).limit(1).execute()
        )
        if not result.data:
            return None
        return self._row_to_account(result.data[0])

    async def insert_user(
        self,
        phone: str,
        address: str,
        encrypted_secret: str,
        created_at: Optional[int] = None
    ) -> UserAccount:
        """Create a new user record."""
        created_at = created_at if created_at is not None else int(time.time())
        row = {
            "chain": self.chain,
            "phone": phone,
            "address": address,
            "encrypted_secret": encrypted_secret,
            "created_at": datetime.fromtimestamp(created_at, tz=timezone.utc).isoformat()
        }

        try:
            result = await asyncio.to_thread(lambda: self._table().insert(row).execute())
        except APIError as e:
            # 23505 = unique_violation
            if getattr(e, "code", None) == "23505":
                raise AccountExistsError(f"User {phone} already onboarded on {self.chain}")
            logger.error(f"Database error creating {self.chain} account for {phone}: {e}")
            raise AccountStoreError(f"Failed to store account: {e}")
        except Exception as e:
            logger.error(f"Unexpected error creating {self.chain} account for {phone}: {e}")
            raise AccountStoreError(f"Failed to store account: {e}")

        if not result.data:
            raise AccountStoreError("Failed to store account: no row returned")

        logger.info(f"Successfully stored {self.chain} account for {phone}")
        return self._row_to_account(result.data[0])

    async def update_user(self, phone: str, address: str, encrypted_secret: str) -> UserAccount:
        """Replace address and encrypted secret; created_at is left untouched."""
        try:
            result = await asyncio.to_thread(
                lambda: self._table()
                .update({"address": address, "encrypted_secret": encrypted_secret})
                .eq("chain", self.chain)
                .eq("phone", phone)
                .execute()
            )
        except Exception as e:
            logger.error(f"Database error updating {self.chain} account for {phone}: {e}")
            raise AccountStoreError(f"Failed to update account: {e}")

        if not result.data:
            raise AccountNotFoundError(f"User {phone} not found on {self.chain}")

        logger.info(f"Successfully updated {self.chain} account for {phone}")
        return self._row_to_account(result.data[0])

    async def delete_user(self, phone: str) -> bool:
        """Delete user by phone number."""
        try:
            result = await asyncio.to_thread(
                lambda: self._table().delete().eq("chain", self.chain).eq("phone", phone).execute()
            )
        except Exception as e:
            logger.error(f"Database error deleting {self.chain} account for {phone}: {e}")
            raise AccountStoreError(f"Failed to delete account: {e}")

        success = len(result.data) > 0
        if success:
            logger.info(f"Successfully deleted {self.chain} account for {phone}")
        else:
            logger.warning(f"{self.chain} account for {phone} not found for deletion")
        return success

    async def health_check(self) -> bool:
        return await self.client.health_check()
