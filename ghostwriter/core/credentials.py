"""
Access token decryption for connected accounts.

Tokens are stored Fernet-encrypted. A token that is missing, or that cannot
be decrypted with the configured key, is treated as "no usable credential".
"""
import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from ghostwriter.core.config import get_settings

logger = logging.getLogger(__name__)


class TokenCipher:
    """Fernet wrapper for connected-account access tokens"""

    def __init__(self, key: Optional[str] = None):
        key = key or get_settings().token_encryption_key
        self._fernet = Fernet(key.encode() if isinstance(key, str) else key) if key else None

    @property
    def is_configured(self) -> bool:
        return self._fernet is not None

    def encrypt(self, token: str) -> str:
        if not self._fernet:
            raise RuntimeError("TOKEN_ENCRYPTION_KEY is not configured")
        return self._fernet.encrypt(token.encode()).decode()

    def decrypt(self, encrypted_token: Optional[str]) -> Optional[str]:
        """Return the plaintext token, or None when it is absent or unreadable"""
        if not encrypted_token:
            return None
        if not self._fernet:
            logger.warning("Token encryption key not configured; stored token is unusable")
            return None
        try:
            return self._fernet.decrypt(encrypted_token.encode()).decode()
        except InvalidToken:
            logger.warning("Stored access token could not be decrypted")
            return None


_token_cipher: Optional[TokenCipher] = None


def get_token_cipher() -> TokenCipher:
    global _token_cipher
    if _token_cipher is None:
        _token_cipher = TokenCipher()
    return _token_cipher


def set_token_cipher(cipher: Optional[TokenCipher]):
    global _token_cipher
    _token_cipher = cipher
