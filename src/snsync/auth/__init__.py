"""Authentication module for sn-sync."""

from .oauth_handler import OAuthHandler
from .token_cache import CryptoError, TokenCache, TokenStore, encrypt_data, decrypt_data

__all__ = ["OAuthHandler", "CryptoError", "TokenCache", "TokenStore", "encrypt_data", "decrypt_data"]
