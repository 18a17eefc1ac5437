"""Error taxonomy shared by the device client, the state store and the loop"""


class BridgeError(Exception):
    """Base class for all bridge errors"""


class DeviceError(BridgeError):
    """
    Transient failure talking to the device API.

    Never fatal: the reconcile loop logs it and marks the device offline.

    Attributes:
        code: Vendor error code, when the API returned one.
    """

    def __init__(self, message: str, code: int | None = None):
        super().__init__(message)
        self.code = code


class AuthError(DeviceError):
    """The vendor API rejected our credentials or access token"""


class ConfigError(BridgeError):
    """Missing or malformed configuration (credentials or schedule)"""


class StoreError(BridgeError):
    """A read or write against the state store failed or timed out"""
