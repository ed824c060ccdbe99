# Rover Ground Station Common Package
# Wire protocol and helpers shared with the rover link

from .constants import *
from .protocol import *
from .errors import (
    GroundStationError, DisplayError, RadioError, ProtocolError,
    SendError, ReceiveError, ConfigError
)
