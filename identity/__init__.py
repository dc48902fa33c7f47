"""Anonymous fingerprints, the explicit session context and account migration."""

from .fingerprint import FingerprintSignals, derive_fingerprint, fingerprint_from_request
from .session import Identity, SessionContext

__all__ = [
    "FingerprintSignals",
    "Identity",
    "SessionContext",
    "derive_fingerprint",
    "fingerprint_from_request",
]
