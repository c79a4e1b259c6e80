"""
drainpay: Canonical JSON Encoding: RFC 8785 (JCS)

Used for the ledger snapshot digest. The digest is computed over the
canonical form of the snapshot body, so key order and whitespace in the
file on disk never affect it.

RFC 8785: https://www.rfc-editor.org/rfc/rfc8785
"""

import hashlib

import jcs


def canonicalize(obj: dict) -> bytes:
    """
    Encode a dict to RFC 8785 canonical JSON bytes.

    All values must be JSON-primitive. Large integers must already be
    strings: JCS serializes numbers as IEEE-754 doubles.
    """
    return jcs.canonicalize(obj)


def canonical_hash(obj: dict) -> str:
    """
    SHA-256 of the RFC 8785 canonical form.

    Returns:
        Lowercase hex-encoded SHA-256 digest (64 characters).
    """
    return hashlib.sha256(canonicalize(obj)).hexdigest()
