"""
Encryption utilities for provider token storage.

Handles cross-database encryption (PostgreSQL pgcrypto, SQLite plaintext for testing).
"""

from typing import Optional

from sqlalchemy import text
from sqlalchemy.orm import Session

from ..config import get_config


def _key(tenant_id: str, key_suffix: str) -> str:
    prefix = get_config().security.encryption_key
    parts = [p for p in (prefix, tenant_id, key_suffix) if p]
    return "_".join(parts)


def encrypt_value(session: Session, value: str, tenant_id: str, key_suffix: str = "") -> bytes:
    """
    Encrypt a value using database-specific encryption.

    Args:
        session: Database session
        value: Value to encrypt
        tenant_id: Tenant ID for key isolation
        key_suffix: Additional key suffix for different data types

    Returns:
        Encrypted bytes
    """
    if session.bind.dialect.name == "postgresql":
        return session.execute(
            text("SELECT pgp_sym_encrypt(:data, :key)"),
            {"data": value, "key": _key(tenant_id, key_suffix)},
        ).scalar()
    # SQLite for testing - return as-is
    return value.encode() if isinstance(value, str) else value


def decrypt_value(
    session: Session, encrypted_value: Optional[bytes], tenant_id: str, key_suffix: str = ""
) -> Optional[str]:
    """
    Decrypt a value using database-specific decryption.

    Returns:
        Decrypted string or None
    """
    if not encrypted_value:
        return None

    if session.bind.dialect.name == "postgresql":
        return session.execute(
            text("SELECT pgp_sym_decrypt(:data, :key)"),
            {"data": encrypted_value, "key": _key(tenant_id, key_suffix)},
        ).scalar()
    if isinstance(encrypted_value, bytes):
        return encrypted_value.decode()
    return encrypted_value


def encrypt_token(
    session: Session, token: Optional[str], tenant_id: str, provider_name: str
) -> Optional[bytes]:
    """Encrypt a provider token with tenant and provider isolation."""
    if token is None:
        return None
    return encrypt_value(session, token, tenant_id, f"token_{provider_name}")


def decrypt_token(
    session: Session, encrypted: Optional[bytes], tenant_id: str, provider_name: str
) -> Optional[str]:
    """Decrypt a provider token."""
    return decrypt_value(session, encrypted, tenant_id, f"token_{provider_name}")
