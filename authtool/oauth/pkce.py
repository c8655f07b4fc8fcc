"""PKCE (Proof Key for Code Exchange) implementation per RFC 7636.

The verifier is drawn from the operating system CSPRNG and rendered as
lowercase hex, so it only ever contains unreserved URI characters.
"""

import base64
import hashlib
import secrets
from dataclasses import dataclass


# Verifier bounds from RFC 7636 section 4.1
MIN_VERIFIER_LENGTH = 43
MAX_VERIFIER_LENGTH = 128
DEFAULT_VERIFIER_LENGTH = 128

CODE_CHALLENGE_METHOD = "S256"


@dataclass(frozen=True)
class PKCEPair:
    """Verifier and S256 challenge for one authorization attempt.

    The verifier is sent in the token request, the challenge (SHA256 of
    the verifier) in the authorization request.
    """

    verifier: str
    challenge: str
    method: str = CODE_CHALLENGE_METHOD


def generate_code_verifier(length: int = DEFAULT_VERIFIER_LENGTH) -> str:
    """Generate a cryptographically random hex code verifier.

    Each random byte yields two hex characters, so ``length`` must be even
    and between 43 and 128 characters.

    Args:
        length: Length of the verifier (default 128, i.e. 64 random bytes)

    Returns:
        Random lowercase hex string of the requested length

    Raises:
        ValueError: If length is outside the allowed range or odd
    """
    if not MIN_VERIFIER_LENGTH <= length <= MAX_VERIFIER_LENGTH:
        raise ValueError(f"Verifier length must be between 43 and 128 characters, got {length}")
    if length % 2:
        raise ValueError(f"Code verifier length must be even, got {length}")

    return secrets.token_hex(length // 2)


def generate_code_challenge(verifier: str) -> str:
    """Generate the S256 code challenge for a verifier.

    code_challenge = BASE64URL(SHA256(UTF8(code_verifier))), unpadded.

    Args:
        verifier: The code verifier string

    Returns:
        43-character base64url string without padding
    """
    digest = hashlib.sha256(verifier.encode("utf-8")).digest()

    # The urlsafe alphabet already maps "+" to "-" and "/" to "_"
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def generate_pkce_pair() -> PKCEPair:
    """Generate a complete PKCE pair (verifier + challenge)."""
    verifier = generate_code_verifier()
    challenge = generate_code_challenge(verifier)

    return PKCEPair(verifier=verifier, challenge=challenge, method=CODE_CHALLENGE_METHOD)


def generate_state() -> str:
    """Generate a fresh, unpredictable state parameter for one attempt.

    Returns:
        32-character random hex string
    """
    return secrets.token_hex(16)
