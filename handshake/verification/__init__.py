"""
Handshake verification package.

Issuance, verification, identity matching and the expiry/rate-limit policy.
"""

from handshake.verification.codes import build_share_message, generate_code
from handshake.verification.errors import CodeGenerationError, ServiceUnavailableError
from handshake.verification.issuance import CodeIssuanceService
from handshake.verification.matching import (
    names_match,
    normalize_name,
    normalize_phone,
    phones_match,
)
from handshake.verification.policy import RateLimiter, is_expired
from handshake.verification.verifier import VerificationService

__all__ = [
    "CodeGenerationError",
    "CodeIssuanceService",
    "RateLimiter",
    "ServiceUnavailableError",
    "VerificationService",
    "build_share_message",
    "generate_code",
    "is_expired",
    "names_match",
    "normalize_name",
    "normalize_phone",
    "phones_match",
]
