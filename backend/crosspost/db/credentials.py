"""Credential store: persistence for SocialConnection rows.

All token values are encrypted before they reach the database. Only the
token manager should call the mutating helpers here.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from crosspost.db.session import SessionLocal
from crosspost.models.social_connection import SocialConnection
from crosspost.services.oauth.types import CredentialRef, Identity, TokenSet
from crosspost.utils.encryption import decrypt, encrypt

logger = logging.getLogger(__name__)


def _expiry(seconds: Optional[int], now: datetime) -> Optional[datetime]:
    if not seconds:
        return None
    return now + timedelta(seconds=int(seconds))


def _identity_query(db: Session, user_id: str, platform: str, account_id: Optional[str]):
    query = db.query(SocialConnection).filter(
        SocialConnection.user_id == str(user_id),
        SocialConnection.platform == str(platform),
    )
    if account_id is None:
        return query.filter(SocialConnection.platform_account_id.is_(None))
    return query.filter(SocialConnection.platform_account_id == str(account_id))


def find_connection(ref: CredentialRef, db: Session = None, active_only: bool = True) -> Optional[SocialConnection]:
    """Look up the credential for a ref.

    Without an account id, the newest active connection for the user and
    platform is returned.
    """
    should_close = False
    if db is None:
        db = SessionLocal()
        should_close = True

    try:
        query = db.query(SocialConnection).filter(
            SocialConnection.user_id == str(ref.user_id),
            SocialConnection.platform == str(ref.platform),
        )
        if ref.platform_account_id is not None:
            query = query.filter(SocialConnection.platform_account_id == str(ref.platform_account_id))
        if active_only:
            query = query.filter(SocialConnection.is_active.is_(True))
        return query.order_by(SocialConnection.created_at.desc(), SocialConnection.id.desc()).first()
    finally:
        if should_close:
            db.close()


def get_connection_by_id(connection_id: int, db: Session) -> Optional[SocialConnection]:
    return db.query(SocialConnection).filter(SocialConnection.id == connection_id).first()


def list_connections(user_id: str, db: Session, include_inactive: bool = False) -> List[SocialConnection]:
    query = db.query(SocialConnection).filter(SocialConnection.user_id == str(user_id))
    if not include_inactive:
        query = query.filter(SocialConnection.is_active.is_(True))
    return query.order_by(SocialConnection.platform, SocialConnection.created_at).all()


def _apply_tokens(connection: SocialConnection, tokens: TokenSet, now: datetime):
    connection.access_token = encrypt(tokens.access_token)
    # Most providers only send a refresh token on first consent
    if tokens.refresh_token:
        connection.refresh_token = encrypt(tokens.refresh_token)
    connection.expires_at = _expiry(tokens.expires_in, now)
    if tokens.refresh_expires_in:
        connection.refresh_expires_at = _expiry(tokens.refresh_expires_in, now)


def upsert_connection(user_id: str, platform: str, tokens: TokenSet, identity: Identity,
                      db: Session) -> SocialConnection:
    """Create or re-activate the credential for (user, platform, account).

    Re-authentication reuses the existing row, keeps its refresh token when
    the provider omitted one and merges platform metadata.
    """
    now = datetime.now(timezone.utc)
    for attempt in range(2):
        connection = _identity_query(db, user_id, platform, identity.account_id).first()
        if connection is None:
            connection = SocialConnection(
                user_id=str(user_id),
                platform=str(platform),
                platform_account_id=identity.account_id,
                extra_data={},
            )
            db.add(connection)

        _apply_tokens(connection, tokens, now)
        connection.platform_account_name = identity.account_name
        connection.display_name = identity.display_name or identity.account_name
        if tokens.scopes:
            connection.scopes = list(tokens.scopes)
        connection.extra_data = {**(connection.extra_data or {}), **(identity.metadata or {})}
        connection.is_active = True
        connection.updated_at = now

        try:
            db.commit()
        except IntegrityError:
            # Lost an insert race for the same identity; retry as an update
            db.rollback()
            if attempt:
                raise
            logger.info(f"Concurrent insert for {platform}:{identity.account_id}, retrying as update")
            continue
        db.refresh(connection)
        return connection


def update_tokens_if_active(connection_id: int, tokens: TokenSet, db: Session) -> bool:
    """Write refreshed tokens only while the connection is still active.

    Returns False when the row was revoked (or purged) meanwhile, so a late
    refresh can never bring a revoked credential back.
    """
    now = datetime.now(timezone.utc)
    values = {
        SocialConnection.access_token: encrypt(tokens.access_token),
        SocialConnection.expires_at: _expiry(tokens.expires_in, now),
        SocialConnection.updated_at: now,
    }
    if tokens.refresh_token:
        values[SocialConnection.refresh_token] = encrypt(tokens.refresh_token)
    if tokens.refresh_expires_in:
        values[SocialConnection.refresh_expires_at] = _expiry(tokens.refresh_expires_in, now)
    if tokens.scopes:
        values[SocialConnection.scopes] = list(tokens.scopes)

    updated = db.query(SocialConnection).filter(
        SocialConnection.id == connection_id,
        SocialConnection.is_active.is_(True),
    ).update(values, synchronize_session=False)
    db.commit()
    return updated == 1


def deactivate_connections(ref: CredentialRef, db: Session, all_accounts: bool = False) -> int:
    """Soft delete: mark matching connections inactive"""
    query = db.query(SocialConnection).filter(
        SocialConnection.user_id == str(ref.user_id),
        SocialConnection.platform == str(ref.platform),
        SocialConnection.is_active.is_(True),
    )
    if not all_accounts and ref.platform_account_id is not None:
        query = query.filter(SocialConnection.platform_account_id == str(ref.platform_account_id))
    elif not all_accounts:
        target = find_connection(ref, db=db)
        if target is None:
            return 0
        query = query.filter(SocialConnection.id == target.id)

    count = query.update(
        {SocialConnection.is_active: False, SocialConnection.updated_at: datetime.now(timezone.utc)},
        synchronize_session=False,
    )
    db.commit()
    return count


def delete_connections(ref: CredentialRef, db: Session, all_accounts: bool = False) -> int:
    """Hard delete, including inactive rows"""
    query = db.query(SocialConnection).filter(
        SocialConnection.user_id == str(ref.user_id),
        SocialConnection.platform == str(ref.platform),
    )
    if not all_accounts:
        target = find_connection(ref, db=db, active_only=False)
        if target is None:
            return 0
        query = query.filter(SocialConnection.id == target.id)
    count = query.delete(synchronize_session=False)
    db.commit()
    return count


def get_access_token(connection: SocialConnection) -> Optional[str]:
    return decrypt(connection.access_token)


def get_refresh_token(connection: SocialConnection) -> Optional[str]:
    return decrypt(connection.refresh_token) if connection.refresh_token else None
