"""Minimal DER codec for ECDSA signatures: SEQUENCE { INTEGER r, INTEGER s }.

Authenticators return P-256 signatures in this form while the on-chain
verifier expects the raw r and s words.
"""
from aa_sdk.exceptions import SigningError, SigningExceptionCode

SEQUENCE_TAG = 0x30
INTEGER_TAG = 0x02
# a P-256 scalar is at most 32 bytes, 33 with the sign padding byte
MAX_INTEGER_LENGTH = 33
MAX_SCALAR_LENGTH = 32


def _malformed(message: str) -> SigningError:
    return SigningError(SigningExceptionCode.MalformedSignature, message)


def _read_integer(der: bytes, offset: int, name: str) -> tuple[int, int]:
    if offset + 2 > len(der):
        raise _malformed(f"Truncated signature before {name}")
    if der[offset] != INTEGER_TAG:
        raise _malformed(f"Invalid {name} marker")
    length = der[offset + 1]
    offset += 2
    if length == 0 or length > MAX_INTEGER_LENGTH:
        raise _malformed(f"Invalid {name} length {length}")
    if offset + length > len(der):
        raise _malformed(f"{name} length {length} overruns the signature")

    value = der[offset:offset + length]
    if value[0] & 0x80:
        raise _malformed(f"Negative {name} value")
    if value[0] == 0x00:
        if length == 1 or not value[1] & 0x80:
            raise _malformed(f"Non minimal {name} encoding")
        value = value[1:]
    if len(value) > MAX_SCALAR_LENGTH:
        raise _malformed(f"{name} is longer than {MAX_SCALAR_LENGTH} bytes")

    return int.from_bytes(value, "big"), offset + length


def parse_der_signature(der: bytes) -> tuple[int, int]:
    if len(der) < 8:
        raise _malformed("Invalid signature length")
    if der[0] != SEQUENCE_TAG:
        raise _malformed("Invalid signature format")
    length = der[1]
    if length & 0x80 or length + 2 != len(der):
        raise _malformed("Invalid signature length")

    r, offset = _read_integer(der, 2, "r")
    s, offset = _read_integer(der, offset, "s")
    if offset != len(der):
        raise _malformed("Trailing bytes after s")
    return r, s


def _encode_integer(value: int) -> bytes:
    if value <= 0:
        raise ValueError("DER signature integers must be positive")
    raw = value.to_bytes((value.bit_length() + 7) // 8, "big")
    if raw[0] & 0x80:
        raw = b"\x00" + raw
    return bytes([INTEGER_TAG, len(raw)]) + raw


def encode_der_signature(r: int, s: int) -> bytes:
    body = _encode_integer(r) + _encode_integer(s)
    return bytes([SEQUENCE_TAG, len(body)]) + body
