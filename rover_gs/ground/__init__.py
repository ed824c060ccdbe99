# Rover Ground Station
# Raspberry Pi side: radio link, telemetry, command uplink, display, web UI
