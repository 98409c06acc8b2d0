import asyncio
import functools
from typing import List, Optional

from sqlalchemy import not_
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from keydoor import keydoor_logging
from keydoor.common.exception import InvalidIdentityKey, StoreError
from keydoor.db.allowlist_db import AllowListEntry, Base
from keydoor.db.keydoor_db import SessionManager

logger = keydoor_logging.init_logging("allowlist_store")

NPUB_PREFIX = "npub1"
NPUB_LENGTH = 63


def validate_npub(npub: str) -> str:
    """Check the canonical bech32 encoding of a Nostr public key.

    Only the prefix and length are checked; the checksum is left to the
    identity bridge.
    """
    npub = npub.strip()
    if not npub.startswith(NPUB_PREFIX) or len(npub) != NPUB_LENGTH:
        raise InvalidIdentityKey()
    return npub


class AllowListStore:
    """Read access to the allow list for the authorization loop.

    A key that is not in the list and a key that is disabled are both
    reported as not enabled. Only failures of the database itself raise
    StoreError.

    The record helpers (add_key, toggle_key, ...) are synchronous; they are
    meant for operators and tests, not for the event loop.
    """

    engine: Engine

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._session_manager = SessionManager()

    def create_schema(self) -> None:
        Base.metadata.create_all(self.engine, checkfirst=True)

    async def is_enabled(self, npub: str) -> bool:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(self._lookup, npub))

    def _lookup(self, npub: str) -> bool:
        try:
            with self._session_manager.session_context(self.engine) as session:
                row = session.query(AllowListEntry.status).filter(AllowListEntry.npub == npub).one_or_none()
        except SQLAlchemyError as e:
            logger.error("SQLAlchemy Error while looking up %s: %s", npub, e)
            raise StoreError(f"Allow list lookup failed: {e}") from e

        if row is None:
            logger.debug("Key %s is not in the allow list", npub)
            return False
        return bool(row.status)

    def add_key(self, npub: str, nip05: Optional[str] = None, profile_name: Optional[str] = None) -> AllowListEntry:
        """Add an enabled key. Raises StoreError if the key already exists."""
        npub = validate_npub(npub)
        entry = AllowListEntry(npub=npub, nip05=nip05, profile_name=profile_name, status=True)
        try:
            with self._session_manager.session_context(self.engine) as session:
                session.add(entry)
        except IntegrityError as e:
            raise StoreError(f"Failed to add key {npub}. It may already exist.") from e
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to add key {npub}: {e}") from e
        logger.info("Added key %s to the allow list", npub)
        return entry

    def list_keys(self) -> List[AllowListEntry]:
        try:
            with self._session_manager.session_context(self.engine) as session:
                return session.query(AllowListEntry).order_by(AllowListEntry.created_at.desc()).all()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to load keys: {e}") from e

    def toggle_key(self, key_id: str) -> None:
        try:
            with self._session_manager.session_context(self.engine) as session:
                session.query(AllowListEntry).filter(AllowListEntry.id == key_id).update(
                    {AllowListEntry.status: not_(AllowListEntry.status)}, synchronize_session=False
                )
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to toggle key status: {e}") from e

    def delete_key(self, key_id: str) -> None:
        try:
            with self._session_manager.session_context(self.engine) as session:
                session.query(AllowListEntry).filter(AllowListEntry.id == key_id).delete(synchronize_session=False)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to delete key: {e}") from e
