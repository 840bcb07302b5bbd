import pytest

from aa_sdk.exceptions import SigningError, SigningExceptionCode
from aa_sdk.signature.der import encode_der_signature, parse_der_signature

R_HIGH_BIT = int(
    "f3ac8061b514795b8843e3d6629527ed2afd6b1f6a555a7acabb5e6f79c8c2ac", 16)
S_SHORT = int(
    "008f1e3a4b5c6d7e8f90a1b2c3d4e5f60718293a4b5c6d7e8f90a1b2c3d4e5f6", 16)


def test_parse_minimal_signature():
    assert parse_der_signature(bytes.fromhex("3006020101020102")) == (1, 2)


def test_sign_padding_byte_is_stripped():
    der = encode_der_signature(R_HIGH_BIT, 5)
    # 0x00 padding keeps the high bit r positive
    assert der[3] == 33
    assert der[4] == 0x00
    assert parse_der_signature(der) == (R_HIGH_BIT, 5)


def test_parse_then_encode_yields_identical_bytes():
    for r, s in [(R_HIGH_BIT, S_SHORT), (S_SHORT, R_HIGH_BIT), (1, 2)]:
        der = encode_der_signature(r, s)
        parsed_r, parsed_s = parse_der_signature(der)
        assert parsed_r.to_bytes(32, "big") == r.to_bytes(32, "big")
        assert parsed_s.to_bytes(32, "big") == s.to_bytes(32, "big")
        assert encode_der_signature(parsed_r, parsed_s) == der


@pytest.mark.parametrize(
    "der_hex",
    [
        # wrong sequence tag
        "3106020101020102",
        # sequence length doesn't match the envelope
        "3007020101020102",
        # r overruns the envelope
        "3006020501020102",
        # s marker missing
        "3006020101030102",
        # trailing bytes inside the sequence
        "300702010102010200",
        # negative r
        "3006020181020102",
        # non minimal r
        "300702020001020102",
        # zero length r
        "3006020002020102",
        # too short
        "300302010100",
    ],
)
def test_malformed_signatures_are_rejected(der_hex):
    with pytest.raises(SigningError) as excinfo:
        parse_der_signature(bytes.fromhex(der_hex))
    assert excinfo.value.exception_code == SigningExceptionCode.MalformedSignature


def test_oversized_scalar_is_rejected():
    r = b"\x01" * 33
    der = bytes([0x30, 2 + 33 + 3, 0x02, 33]) + r + bytes([0x02, 0x01, 0x01])
    with pytest.raises(SigningError):
        parse_der_signature(der)


def test_encode_rejects_non_positive_integers():
    with pytest.raises(ValueError):
        encode_der_signature(0, 1)
