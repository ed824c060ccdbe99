# Rover Ground Station
# Raspberry Pi + RFM69HCW bonnet ground station for the rover

__version__ = "0.1.0"
