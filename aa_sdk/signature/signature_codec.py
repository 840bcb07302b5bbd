from abc import ABC, abstractmethod
import logging

from eth_abi import decode, encode
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount

from aa_sdk.account.identity import (AccountIdentity, ConventionalKey,
                                     PasskeyKey)
from aa_sdk.exceptions import SigningError, SigningExceptionCode
from aa_sdk.signature.der import parse_der_signature
from aa_sdk.signature.signature_mode import SignatureMode, get_dummy_signature
from aa_sdk.signature.webauthn import (DEFAULT_TIMEOUT_MS, CredentialInterface,
                                       WebAuthnPublicKey, base64url_decode,
                                       locate_client_data_fields)
from aa_sdk.typing import CredentialId

EOA_MODE_TAG = 0x00
PASSKEY_SIGNATURE_ABI = (
    "(bytes,string,uint256,uint256,uint256,uint256,uint256,uint256)")


class SignatureCodec(ABC):
    signature_mode: SignatureMode

    def dummy_signature(self) -> bytes:
        return get_dummy_signature(self.signature_mode)

    @abstractmethod
    async def sign(self, user_operation_hash: bytes) -> bytes:
        pass


class EoaSignatureCodec(SignatureCodec):
    account: LocalAccount
    wallet_id: int | None
    version_tag: bool

    def __init__(
        self,
        account: LocalAccount,
        wallet_id: int | None = None,
        version_tag: bool = False,
    ):
        if wallet_id is not None and not 0 <= wallet_id <= 0xFFFF:
            raise ValueError(f"wallet id {wallet_id} doesn't fit in 2 bytes")
        self.signature_mode = SignatureMode.EOA
        self.account = account
        self.wallet_id = wallet_id
        self.version_tag = version_tag

    async def sign(self, user_operation_hash: bytes) -> bytes:
        message = encode_defunct(primitive=user_operation_hash)
        signed_message = Account.sign_message(
            message, private_key=self.account.key)
        signature = bytes(signed_message.signature)
        if self.wallet_id is None:
            if self.version_tag:
                return bytes([EOA_MODE_TAG]) + signature
            return signature
        return (
            bytes([EOA_MODE_TAG]) +
            self.wallet_id.to_bytes(2, "big") +
            signature
        )


class PasskeySignatureCodec(SignatureCodec):
    credential_id: CredentialId
    public_key: WebAuthnPublicKey
    credential_interface: CredentialInterface
    rp_id: str | None

    def __init__(
        self,
        credential_id: CredentialId,
        public_key: WebAuthnPublicKey,
        credential_interface: CredentialInterface,
        rp_id: str | None = None,
    ):
        self.signature_mode = SignatureMode.PASSKEY
        self.credential_id = credential_id
        self.public_key = public_key
        self.credential_interface = credential_interface
        self.rp_id = rp_id

    def get_request_options(self, challenge: bytes) -> dict:
        public_key_options = {
            "challenge": challenge,
            "userVerification": "required",
            "allowCredentials": [{
                "id": base64url_decode(self.credential_id),
                "type": "public-key",
            }],
            "timeout": DEFAULT_TIMEOUT_MS,
        }
        if self.rp_id is not None:
            public_key_options["rpId"] = self.rp_id
        return {"publicKey": public_key_options}

    async def sign(self, user_operation_hash: bytes) -> bytes:
        challenge = user_operation_hash
        try:
            request_options = self.get_request_options(challenge)
        except ValueError as excp:
            raise SigningError(
                SigningExceptionCode.CredentialRejected,
                f"Invalid credential id {self.credential_id}: {excp}",
            ) from excp
        try:
            assertion = await self.credential_interface.get(request_options)
        except SigningError:
            raise
        except Exception as excp:
            logging.error(f"Passkey assertion failed: {excp}")
            raise SigningError(
                SigningExceptionCode.CredentialRejected,
                f"Passkey signMessage failed: {excp}",
            ) from excp

        if assertion is None:
            raise SigningError(
                SigningExceptionCode.CredentialRejected,
                "Failed to get credentials",
            )

        r, s = parse_der_signature(assertion.signature)
        challenge_location, response_type_location = (
            locate_client_data_fields(assertion.client_data_json, challenge))

        try:
            client_data_string = assertion.client_data_json.decode("utf-8")
        except UnicodeDecodeError as excp:
            raise SigningError(
                SigningExceptionCode.MalformedSignature,
                "clientDataJSON is not valid utf-8",
            ) from excp

        return encode(
            [PASSKEY_SIGNATURE_ABI],
            [(
                assertion.authenticator_data,
                client_data_string,
                challenge_location,
                response_type_location,
                r,
                s,
                self.public_key.x_int,
                self.public_key.y_int,
            )],
        )


def decode_passkey_signature(signature: bytes) -> dict:
    (
        authenticator_data,
        client_data_json,
        challenge_location,
        response_type_location,
        r,
        s,
        public_key_x,
        public_key_y,
    ) = decode([PASSKEY_SIGNATURE_ABI], signature)[0]
    return {
        "authenticatorData": authenticator_data,
        "clientDataJSON": client_data_json,
        "challengeLocation": challenge_location,
        "responseTypeLocation": response_type_location,
        "r": r,
        "s": s,
        "publicKeyX": public_key_x,
        "publicKeyY": public_key_y,
    }


def create_signature_codec(
    identity: AccountIdentity,
    credential_interface: CredentialInterface | None = None,
    wallet_id: int | None = None,
    rp_id: str | None = None,
    version_tag: bool = False,
) -> SignatureCodec:
    if isinstance(identity, ConventionalKey):
        return EoaSignatureCodec(identity.account, wallet_id, version_tag)
    elif isinstance(identity, PasskeyKey):
        if credential_interface is None:
            raise ValueError(
                "A credential interface is required for passkey accounts")
        return PasskeySignatureCodec(
            identity.credential_id,
            identity.public_key,
            credential_interface,
            rp_id,
        )
    raise TypeError(f"Unsupported account identity {identity!r}")
