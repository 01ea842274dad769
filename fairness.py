"""Provably fair randomness.

The server commits to a secret by publishing ``SHA-256(server_secret)`` before
any round is played. Each round draws its randomness from

    HMAC-SHA256(key=server_secret, msg=f"{client_value}:{counter}")

and keeps the first 8 bytes (16 hex chars) as an unsigned 64-bit integer,
divided by ``2**64 - 1``. Once the seed is rotated the secret is revealed
and anyone can recompute every round it produced.
"""
import hashlib
import hmac
import secrets

SECRET_BYTES = 32
FRACTION_HEX_CHARS = 16
FRACTION_DENOMINATOR = 0xFFFFFFFFFFFFFFFF  # 2**64 - 1


def generate_server_secret() -> str:
    """Generate a new random server secret (hex of 32 random bytes)"""
    return secrets.token_hex(SECRET_BYTES)


def hash_server_secret(server_secret: str) -> str:
    """Get the hash of the server secret for pre-commitment"""
    return hashlib.sha256(server_secret.encode()).hexdigest()


def derive_digest(server_secret: str, client_value: str, counter: int) -> str:
    message = f"{client_value}:{counter}"
    return hmac.new(server_secret.encode(), message.encode(), hashlib.sha256).hexdigest()


def derive(server_secret: str, client_value: str, counter: int) -> float:
    """Derive the round fraction for a seed pair and counter."""
    digest = derive_digest(server_secret, client_value, counter)
    return int(digest[:FRACTION_HEX_CHARS], 16) / FRACTION_DENOMINATOR


def verify_commitment(server_secret: str, server_secret_hash: str) -> bool:
    """True when a revealed secret matches the hash published before play."""
    return hmac.compare_digest(hash_server_secret(server_secret), server_secret_hash)
