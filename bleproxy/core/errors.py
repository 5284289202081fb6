"""Exception types shared across the bridge.

Frame-level errors are aggregated by the caller, envelope and body errors
abort a request, publish errors stop at the scheduler.
"""


class BridgeError(Exception):
    pass


class FrameDecodeError(BridgeError):
    pass


class FrameTooShort(FrameDecodeError):
    def __init__(self, length: int):
        super().__init__(f"frame must be at least 8 bytes (advertising type + MAC + RSSI), got {length}")
        self.length = length


class EnvelopeMalformed(BridgeError):
    pass


class BodyDecodeError(BridgeError):
    pass


class PublishError(BridgeError):
    pass


class ConfigError(BridgeError):
    pass
