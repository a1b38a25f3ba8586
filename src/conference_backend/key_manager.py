import hashlib
import hmac
import secrets
from typing import List, Optional, Tuple

from sqlalchemy import select

from .database import AdminKeyRow, ConferenceStore
from .models import AdminIdentity, AdminKeyRecord, AdminRole


class AdminKeyManager:
    """
    Manages admin API keys in the conference database.

    Keys are stored as SHA-256 hashes; the raw key is only returned once, at
    creation time. The configured master key authenticates as a super admin
    and is never stored.
    """

    def __init__(self, store: ConferenceStore, master_key: str = ""):
        self.store = store
        self.master_key = master_key

    def _hash_key(self, key: str) -> str:
        """SHA-256 hash of the API key."""
        return hashlib.sha256(key.encode()).hexdigest()

    def create_key(self, owner: str, role: AdminRole = AdminRole.ADMIN) -> Tuple[str, AdminKeyRecord]:
        """
        Generate a new API key.

        Returns:
            Tuple[str, AdminKeyRecord]: (raw_api_key, key_record)
            WARNING: raw_api_key is shown ONLY ONCE here.
        """
        raw_key = f"cfk_{secrets.token_urlsafe(32)}"
        with self.store.session_scope() as session:
            row = AdminKeyRow(
                key_hash=self._hash_key(raw_key),
                prefix=raw_key[:8],
                owner=owner,
                role=AdminRole(role).value,
                is_active=True,
            )
            session.add(row)
            session.flush()
            record = AdminKeyRecord.model_validate(row, from_attributes=True)
        return raw_key, record

    def validate_key(self, key: str) -> Optional[AdminKeyRecord]:
        """Return the active key record matching ``key``, if any."""
        if not key:
            return None

        with self.store.session_scope() as session:
            row = session.execute(
                select(AdminKeyRow).where(
                    AdminKeyRow.key_hash == self._hash_key(key),
                    AdminKeyRow.is_active.is_(True),
                )
            ).scalar_one_or_none()
            if row is None:
                return None
            return AdminKeyRecord.model_validate(row, from_attributes=True)

    def list_keys(self) -> List[AdminKeyRecord]:
        with self.store.session_scope() as session:
            rows = session.scalars(select(AdminKeyRow).order_by(AdminKeyRow.created_at.desc()))
            return [AdminKeyRecord.model_validate(row, from_attributes=True) for row in rows]

    def revoke_key(self, key_id: str) -> bool:
        """Revoke a key by ID."""
        with self.store.session_scope() as session:
            row = session.get(AdminKeyRow, key_id)
            if row is None or not row.is_active:
                return False
            row.is_active = False
            return True

    def authenticate(self, key: str) -> Optional[AdminIdentity]:
        """Resolve an ``X-API-Key`` value to the caller's identity."""
        if not key:
            return None
        if self.master_key and hmac.compare_digest(key.encode(), self.master_key.encode()):
            return AdminIdentity(owner="master", role=AdminRole.SUPER_ADMIN)
        record = self.validate_key(key)
        if record is None:
            return None
        return AdminIdentity(owner=record.owner, role=record.role, key_id=record.id)
