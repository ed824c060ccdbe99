"""
Rover Ground Station Errors
Exception hierarchy for display, radio and link protocol failures
"""


class GroundStationError(Exception):
    """Base exception for ground station errors."""

    def __init__(self, message: str, suggestion: str = None):
        self.message = message
        self.suggestion = suggestion
        super().__init__(self.message)

    def __str__(self):
        if self.suggestion:
            return f"{self.message}\n\nSuggestion: {self.suggestion}"
        return self.message


class DisplayError(GroundStationError):
    """OLED display could not be set up or written."""

    def __str__(self):
        return f"display error: '{super().__str__()}'"


class RadioError(GroundStationError):
    """Radio could not be set up or failed at the hardware level."""

    def __str__(self):
        return f"radio error: '{super().__str__()}'"


class ProtocolError(GroundStationError, ValueError):
    """Message could not be encoded or decoded."""

    pass


class SendError(GroundStationError):
    """Send protocol failure."""

    def __str__(self):
        return f"send protocol error: '{super().__str__()}'"


class ReceiveError(GroundStationError):
    """Receive protocol failure."""

    def __init__(self, message: str, received=None, suggestion: str = None):
        # The decoded message, when one arrived but was not what we waited for
        self.received = received
        super().__init__(message, suggestion)

    def __str__(self):
        return f"receive protocol error: '{super().__str__()}'"


class ConfigError(GroundStationError):
    """Invalid configuration value."""

    pass
