from typing import NewType

UserOperationHash = NewType('UserOperationHash', str)
Address = NewType('Address', str)
# 32 bytes 0x hex CREATE2 salt
Salt = NewType('Salt', str)
# base64url WebAuthn credential id
CredentialId = NewType('CredentialId', str)
