from enum import Enum


class SignatureMode(Enum):
    EOA = "EOA"
    PASSKEY = "PASSKEY"


# r,s,v for EOA; abi encoded WebAuthn assertion struct for PASSKEY
SIGNATURE_SIZES = {
    SignatureMode.EOA: 65,
    SignatureMode.PASSKEY: 536,
}


def get_dummy_signature(signature_mode: SignatureMode) -> bytes:
    return b"\x01" * SIGNATURE_SIZES[signature_mode]
