from dataclasses import dataclass

from eth_account.signers.local import LocalAccount

from aa_sdk.signature.signature_mode import SignatureMode
from aa_sdk.signature.webauthn import WebAuthnPublicKey
from aa_sdk.typing import Address, CredentialId


@dataclass(frozen=True)
class ConventionalKey:
    account: LocalAccount

    @property
    def owner_address(self) -> Address:
        return Address(self.account.address)

    @property
    def signature_mode(self) -> SignatureMode:
        return SignatureMode.EOA


@dataclass(frozen=True)
class PasskeyKey:
    credential_id: CredentialId
    public_key: WebAuthnPublicKey

    @property
    def signature_mode(self) -> SignatureMode:
        return SignatureMode.PASSKEY


AccountIdentity = ConventionalKey | PasskeyKey
