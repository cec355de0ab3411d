__all__ = [
    "RkflashError",
    "TransportError",
    "ProtocolError",
    "StatusFailedError",
    "FormatError",
    "PartitionNotFoundError",
    "PartitionSyntaxError",
    "TransferIOError",
    "InvalidUsageError",
    "DeviceNotFoundError",
]


class RkflashError(RuntimeError):
    """Base exception for every failure surfaced by rkflash."""


class TransportError(RkflashError):
    """The bulk channel failed to send or receive."""


class ProtocolError(RkflashError):
    pass


class StatusFailedError(ProtocolError):
    """The status packet following a command was missing or malformed."""


class FormatError(RkflashError):
    """Binary data (container, parameter block, device reply) does not have the expected layout."""


class PartitionNotFoundError(RkflashError):
    pass


class PartitionSyntaxError(RkflashError):
    pass


class TransferIOError(RkflashError):
    """The sink or source of a block transfer failed."""


class InvalidUsageError(RkflashError):
    pass


class DeviceNotFoundError(RkflashError):
    pass
