from .event_guard import CacheEventGuard
from .verifier import ProviderSignatureVerifier

__all__ = ["CacheEventGuard", "ProviderSignatureVerifier"]
