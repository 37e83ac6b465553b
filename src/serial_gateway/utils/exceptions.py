# src/serial_gateway/utils/exceptions.py

class GatewayError(Exception):
    """Base exception class for the serial gateway"""
    pass

class ConfigurationError(GatewayError):
    """Raised when there are issues with configuration"""
    pass

class InitializationError(GatewayError):
    """Raised when component initialization fails"""
    pass

class CommunicationError(GatewayError):
    """Raised when communication with external services fails"""
    pass

class PortUnavailableError(GatewayError):
    """Raised when no serial port candidate could be opened and validated"""
    pass

class HandshakeTimeoutError(PortUnavailableError):
    """Raised when a device did not answer the challenge in time"""
    pass

class WriteFailure(CommunicationError):
    """Raised when a buffer could not be written to the serial port"""
    pass

class PublishError(CommunicationError):
    """Raised when a record could not be handed to a publish sink"""
    pass

class FieldDecodeError(GatewayError):
    """A single token of a frame was rejected by its field parser"""

    def __init__(self, short_name: str, raw: str, reason: str):
        super().__init__(f"{short_name}: {reason}")
        self.short_name = short_name
        self.raw = raw
        self.reason = reason
