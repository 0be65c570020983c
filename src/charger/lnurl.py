"""LNURL helpers: bech32 encoding, nonces and key-ownership proofs.

LNURL-auth wallets sign the raw 32-byte ``k1`` with their linking key and send
the DER encoded signature plus the compressed secp256k1 public key, both hex.
"""

import logging
import secrets

from bech32 import bech32_encode, convertbits
from ecdsa import BadDigestError, BadSignatureError, SECP256k1, VerifyingKey
from ecdsa.der import UnexpectedDER
from ecdsa.errors import MalformedPointError
from ecdsa.util import sigdecode_der

logger = logging.getLogger(__name__)

LNURL_HRP = "lnurl"
NONCE_BYTES = 32


def new_nonce() -> str:
    """Generate a random 32-byte challenge, hex encoded."""
    return secrets.token_hex(NONCE_BYTES)


def encode(url: str) -> str:
    """Encode a URL as an uppercase bech32 LNURL string.

    Args:
        url: Full https (or onion http) URL

    Returns:
        ``LNURL1...`` string suitable for QR codes
    """
    data = convertbits(url.encode("utf-8"), 8, 5)
    if data is None:
        raise ValueError(f"Cannot encode url as lnurl: {url}")
    return bech32_encode(LNURL_HRP, data).upper()


def verify_signature(k1: str, sig: str, key: str) -> bool:
    """Check that ``sig`` is a valid signature by ``key`` over ``k1``.

    Args:
        k1: Hex challenge that was signed
        sig: Hex DER encoded ECDSA signature
        key: Hex secp256k1 public key (compressed or uncompressed)

    Returns:
        True only if every field decodes and the signature verifies
    """
    try:
        digest = bytes.fromhex(k1)
        signature = bytes.fromhex(sig)
        verifying_key = VerifyingKey.from_string(bytes.fromhex(key), curve=SECP256k1)
        return verifying_key.verify_digest(signature, digest, sigdecode=sigdecode_der)
    except (ValueError, MalformedPointError, UnexpectedDER, BadDigestError) as e:
        logger.debug(f"Malformed signature input for key {key[:16]}: {e}")
        return False
    except BadSignatureError:
        return False
