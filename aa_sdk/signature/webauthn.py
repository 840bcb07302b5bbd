import base64
import io
import logging
from dataclasses import dataclass
from typing import Any, Protocol

import cbor2

from aa_sdk.exceptions import SigningError, SigningExceptionCode
from aa_sdk.typing import CredentialId

COORDINATE_SIZE = 32
RP_ID_HASH_SIZE = 32
SIGN_COUNT_SIZE = 4
AAGUID_SIZE = 16
ATTESTED_CREDENTIAL_DATA_FLAG = 0x40

COSE_KEY_X = -2
COSE_KEY_Y = -3

ES256_ALGORITHM = -7
DEFAULT_TIMEOUT_MS = 60_000
RESPONSE_TYPE_FIELD = '"type":"webauthn.get"'


def base64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def base64url_decode(data: str) -> bytes:
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


def _left_pad(coordinate: bytes) -> bytes:
    if len(coordinate) > COORDINATE_SIZE:
        raise ValueError(
            f"Public key coordinate longer than {COORDINATE_SIZE} bytes")
    return coordinate.rjust(COORDINATE_SIZE, b"\x00")


@dataclass
class WebAuthnAssertion:
    authenticator_data: bytes
    client_data_json: bytes
    # DER encoded ECDSA signature
    signature: bytes
    user_handle: bytes | None = None


class CredentialInterface(Protocol):
    """Host supplied access to the platform authenticator.

    Browsers expose this as navigator.credentials, native hosts and tests
    provide their own conforming object.
    """

    async def create(self, options: dict[str, Any]) -> dict[str, Any]:
        ...

    async def get(self, options: dict[str, Any]) -> WebAuthnAssertion:
        ...


class WebAuthnPublicKey:
    x: bytes
    y: bytes

    def __init__(self, x: bytes, y: bytes) -> None:
        self.x = _left_pad(x)
        self.y = _left_pad(y)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, WebAuthnPublicKey):
            return NotImplemented
        return self.x == other.x and self.y == other.y

    def __hash__(self) -> int:
        return hash((self.x, self.y))

    def __repr__(self) -> str:
        return f"WebAuthnPublicKey(x=0x{self.x.hex()}, y=0x{self.y.hex()})"

    def __str__(self) -> str:
        return f"{base64url_encode(self.x)}.{base64url_encode(self.y)}"

    @classmethod
    def parse(cls, public_key: str) -> "WebAuthnPublicKey":
        x, y = public_key.split(".")
        return cls(base64url_decode(x), base64url_decode(y))

    @classmethod
    def from_coordinates(cls, x: str, y: str) -> "WebAuthnPublicKey":
        if x[:2] == "0x":
            x = x[2:]
        if y[:2] == "0x":
            y = y[2:]
        return cls(bytes.fromhex(x), bytes.fromhex(y))

    @classmethod
    def from_attestation_object(
        cls, attestation_object: bytes | str
    ) -> "WebAuthnPublicKey":
        if isinstance(attestation_object, str):
            attestation_object = base64url_decode(attestation_object)

        try:
            decoded_attestation = cbor2.loads(attestation_object)
            auth_data = bytes(decoded_attestation["authData"])
        except (cbor2.CBORDecodeError, KeyError, TypeError) as excp:
            raise SigningError(
                SigningExceptionCode.InvalidAttestation,
                f"Invalid attestation object: {excp}",
            ) from excp

        return cls.from_authenticator_data(auth_data)

    @classmethod
    def from_authenticator_data(cls, auth_data: bytes) -> "WebAuthnPublicKey":
        pointer = RP_ID_HASH_SIZE
        if len(auth_data) < pointer + 1:
            raise SigningError(
                SigningExceptionCode.InvalidAttestation,
                "Authenticator data is too short.",
            )
        flags = auth_data[pointer]
        pointer += 1

        if not flags & ATTESTED_CREDENTIAL_DATA_FLAG:
            raise SigningError(
                SigningExceptionCode.InvalidAttestation,
                "Attested credential data flag is missing.",
            )

        pointer += SIGN_COUNT_SIZE + AAGUID_SIZE
        if len(auth_data) < pointer + 2:
            raise SigningError(
                SigningExceptionCode.InvalidAttestation,
                "Authenticator data is too short.",
            )
        credential_id_length = int.from_bytes(
            auth_data[pointer:pointer + 2], "big")
        pointer += 2 + credential_id_length

        # the COSE key may be followed by extension data, decode one item only
        try:
            public_key_object = cbor2.CBORDecoder(
                io.BytesIO(auth_data[pointer:])).decode()
        except cbor2.CBORDecodeError as excp:
            raise SigningError(
                SigningExceptionCode.InvalidAttestation,
                f"Invalid COSE public key: {excp}",
            ) from excp

        if not isinstance(public_key_object, dict):
            raise SigningError(
                SigningExceptionCode.InvalidAttestation,
                "Invalid COSE public key.",
            )
        x = public_key_object.get(COSE_KEY_X)
        y = public_key_object.get(COSE_KEY_Y)
        if not x or not y:
            raise SigningError(
                SigningExceptionCode.InvalidAttestation,
                "Public key coordinates are missing.",
            )
        if not isinstance(x, bytes) or not isinstance(y, bytes):
            raise SigningError(
                SigningExceptionCode.InvalidAttestation,
                "Public key coordinates must be byte strings.",
            )
        try:
            return cls(bytes(x), bytes(y))
        except ValueError as excp:
            raise SigningError(
                SigningExceptionCode.InvalidAttestation, str(excp)
            ) from excp

    def to_cose(self) -> bytes:
        return cbor2.dumps({
            1: 2,  # kty: EC2
            3: ES256_ALGORITHM,
            -1: 1,  # crv: P-256
            COSE_KEY_X: self.x,
            COSE_KEY_Y: self.y,
        })

    @property
    def x_int(self) -> int:
        return int.from_bytes(self.x, "big")

    @property
    def y_int(self) -> int:
        return int.from_bytes(self.y, "big")


def locate_client_data_fields(
    client_data_json: bytes, challenge: bytes
) -> tuple[int, int]:
    """Byte offsets of the challenge and type members of clientDataJSON.

    The on-chain verifier reads the challenge back at these offsets instead of
    parsing JSON, so both members must be present verbatim.
    """
    challenge_field = f'"challenge":"{base64url_encode(challenge)}"'
    challenge_location = client_data_json.find(challenge_field.encode())
    if challenge_location < 0:
        raise SigningError(
            SigningExceptionCode.MissingClientDataField,
            "Challenge not found in clientDataJSON",
        )
    response_type_location = client_data_json.find(
        RESPONSE_TYPE_FIELD.encode())
    if response_type_location < 0:
        raise SigningError(
            SigningExceptionCode.MissingClientDataField,
            "Response type webauthn.get not found in clientDataJSON",
        )
    return challenge_location, response_type_location


@dataclass
class PasskeyRegistration:
    credential_id: CredentialId
    public_key: WebAuthnPublicKey
    raw_credential: dict[str, Any]


async def register_passkey(
    credential_interface: CredentialInterface,
    passkey_name: str,
    challenge: bytes,
    user_id: bytes,
    rp_id: str,
    rp_name: str,
) -> PasskeyRegistration:
    options = {
        "publicKey": {
            "challenge": challenge,
            "rp": {"name": rp_name, "id": rp_id},
            "user": {
                "id": user_id,
                "name": passkey_name,
                "displayName": passkey_name,
            },
            "pubKeyCredParams": [
                {"alg": ES256_ALGORITHM, "type": "public-key"}],
            "authenticatorSelection": {
                "authenticatorAttachment": "platform",
                "userVerification": "required",
            },
            "timeout": DEFAULT_TIMEOUT_MS,
            "attestation": "direct",
        }
    }
    try:
        credential = await credential_interface.create(options)
    except Exception as excp:
        raise SigningError(
            SigningExceptionCode.CredentialRejected,
            f"Failed to create credentials: {excp}",
        ) from excp

    if not credential or "attestationObject" not in credential:
        raise SigningError(
            SigningExceptionCode.CredentialRejected,
            "Failed to create credentials",
        )

    public_key = WebAuthnPublicKey.from_attestation_object(
        credential["attestationObject"])
    logging.info(f"Registered passkey {passkey_name} for rp {rp_id}")
    return PasskeyRegistration(
        credential_id=CredentialId(credential["id"]),
        public_key=public_key,
        raw_credential=credential,
    )
