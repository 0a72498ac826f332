"""
Secrets at rest.

Two kinds of secret are stored encrypted with the one ENCRYPTION_KEY:
the iCafeCloud API key of each cafe location and the QuickBooks
access/refresh token pair of each connected account. Rotating the key
makes every stored secret unreadable; cafes must re-enter their API key
and accounts must reconnect QuickBooks.
"""
from cryptography.fernet import Fernet, InvalidToken

from ledgersync.config import settings


def get_fernet() -> Fernet:
    """Fernet cipher for ENCRYPTION_KEY"""
    if not settings.ENCRYPTION_KEY:
        raise ValueError("ENCRYPTION_KEY not set in environment variables")
    return Fernet(settings.ENCRYPTION_KEY.encode())


def encrypt_secret(secret: str) -> str:
    """
    Encrypt a cafe API key or ledger token for storage

    Args:
        secret: Plain text secret

    Returns:
        Fernet token as text, safe for a String column
    """
    return get_fernet().encrypt(secret.encode()).decode()


def decrypt_secret(stored: str) -> str:
    """
    Decrypt a value written by encrypt_secret

    Raises:
        ValueError: the value was not encrypted with the current ENCRYPTION_KEY
    """
    try:
        return get_fernet().decrypt(stored.encode()).decode()
    except InvalidToken as e:
        raise ValueError("Stored secret cannot be decrypted with the current ENCRYPTION_KEY") from e
