# protocol_errors.py
"""
Error taxonomy for the fleet transport.

ProtocolError   - bad datagram; dropped by the receive loop, never surfaced.
TransportError  - socket-level failure; fatal to the sender/receiver that owns it.
ConfigError     - invalid arguments to a send call.
"""


class FleetLinkError(Exception):
    pass


# --- Protocol errors (recovered locally) ---
class ProtocolError(FleetLinkError):
    pass


class InvalidMagic(ProtocolError):
    pass


class UnsupportedVersion(ProtocolError):
    pass


class ChecksumMismatch(ProtocolError):
    pass


class TruncatedMessage(ProtocolError):
    pass


class UnknownMessageType(ProtocolError):
    pass


class PayloadLengthMismatch(ProtocolError):
    """Datagram carries more bytes than the header's payload_len."""


# --- Transport errors (fatal to the owning instance) ---
class TransportError(FleetLinkError):
    pass


class SocketBindFailed(TransportError):
    pass


class MulticastJoinFailed(TransportError):
    pass


class SendFailed(TransportError):
    pass


class ReceiveFailed(TransportError):
    pass


# --- Config errors (raised by the call that triggered them) ---
class ConfigError(FleetLinkError, ValueError):
    pass


class PayloadTooLarge(ConfigError):
    pass
