from aa_sdk.user_operation.user_operation import (UserOperation,
                                                  verify_and_get_bytes)


class PaymasterAPI:
    """Supplies paymasterAndData for an operation.

    The default implementation returns a fixed value set by the caller, which
    covers verifying paymasters that accept any operation. Subclass it to
    fetch sponsorship data from a paymaster service.
    """

    paymaster_and_data: bytes

    def __init__(self, paymaster_and_data: str | bytes = b""):
        self.paymaster_and_data = verify_and_get_bytes(
            "paymasterAndData", paymaster_and_data)

    async def get_paymaster_and_data(
        self, user_operation: UserOperation
    ) -> bytes | None:
        """
        user_operation is partially filled: no signature, and its
        preVerificationGas doesn't account for the returned value yet.
        """
        if len(self.paymaster_and_data) == 0:
            return None
        return self.paymaster_and_data
