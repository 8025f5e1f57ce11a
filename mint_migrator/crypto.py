import hashlib

from coincurve import PublicKey

DOMAIN_SEPARATOR = b"Secp256k1_HashToCurve_Cashu_"
COMPRESSED_KEY_LENGTH = 33


def hash_to_curve(message: bytes) -> bytes:
    """
    Map a message to a secp256k1 point and return it in compressed form.

    The message is hashed once with the domain separator, then rehashed with
    a little-endian counter until the result is the x coordinate of a valid
    point with even y.
    """
    msg_to_hash = hashlib.sha256(DOMAIN_SEPARATOR + message).digest()
    for counter in range(2 ** 16):
        candidate = hashlib.sha256(msg_to_hash + counter.to_bytes(4, "little")).digest()
        try:
            return PublicKey(b"\x02" + candidate).format(compressed=True)
        except ValueError:
            continue
    raise ValueError("No valid point found for message")


def parse_public_key(data: bytes) -> bytes:
    """Validate a compressed public key and return its canonical bytes."""
    if len(data) != COMPRESSED_KEY_LENGTH:
        raise ValueError(f"Expected {COMPRESSED_KEY_LENGTH} bytes, got {len(data)}")
    return PublicKey(bytes(data)).format(compressed=True)
