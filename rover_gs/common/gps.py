"""
Rover Ground Station GPS Module
Serial NMEA GPS for the station's own position

The station position turns rover telemetry into distance / bearing /
elevation for pointing a directional antenna or walking out to the rover.
"""

import math
import time
import logging
import threading
from dataclasses import dataclass
from typing import Optional, List, Callable

import pynmea2
import serial

from .constants import GPS_BAUDRATE

logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6371000


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate distance between two points using Haversine formula

    Args:
        lat1, lon1: First point (degrees)
        lat2, lon2: Second point (degrees)

    Returns:
        Distance in meters
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = math.sin(delta_phi / 2) ** 2 + \
        math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_M * c


def calculate_bearing(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate initial bearing from point 1 to point 2

    Returns:
        Bearing in degrees (0-360, where 0=North, 90=East)
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_lambda = math.radians(lon2 - lon1)

    x = math.sin(delta_lambda) * math.cos(phi2)
    y = math.cos(phi1) * math.sin(phi2) - \
        math.sin(phi1) * math.cos(phi2) * math.cos(delta_lambda)

    bearing = math.degrees(math.atan2(x, y))
    return (bearing + 360) % 360


def calculate_elevation_angle(ground_lat: float, ground_lon: float, ground_alt: float,
                              target_lat: float, target_lon: float, target_alt: float) -> float:
    """
    Calculate elevation angle from ground to target

    Returns:
        Elevation angle in degrees (0=horizon, 90=overhead)
    """
    horizontal_distance = haversine_distance(ground_lat, ground_lon, target_lat, target_lon)
    altitude_diff = target_alt - ground_alt

    if horizontal_distance < 1:  # Avoid division by zero
        return 90.0 if altitude_diff > 0 else -90.0 if altitude_diff < 0 else 0.0

    return math.degrees(math.atan2(altitude_diff, horizontal_distance))


@dataclass
class GPSData:
    """GPS position data"""
    latitude: float = 0.0           # degrees
    longitude: float = 0.0          # degrees
    altitude: float = 0.0           # meters MSL
    speed: float = 0.0              # m/s ground speed
    heading: float = 0.0            # degrees true
    satellites: int = 0
    fix_quality: int = 0            # GGA quality, 0 = invalid
    hdop: float = 99.9
    position_valid: bool = False
    last_update: float = 0.0        # time.time() of last update

    def age(self) -> float:
        """Get age of position in seconds"""
        return time.time() - self.last_update if self.last_update > 0 else float('inf')


class GPS:
    """Serial NMEA GPS reader"""

    def __init__(
        self,
        device: str = "/dev/serial0",
        baudrate: int = GPS_BAUDRATE,
        simulate: bool = False,
        callback: Callable[[GPSData], None] = None,
        sim_position: tuple = (40.0, -105.0, 1600.0),
    ):
        """
        Initialize GPS interface

        Args:
            device: Serial device path
            baudrate: Serial baudrate
            simulate: Enable simulation mode (fixed position)
            callback: Optional callback for GPS updates
            sim_position: (lat, lon, alt) reported in simulation mode
        """
        self.device = device
        self.baudrate = baudrate
        self.simulate = simulate
        self.sim_position = sim_position

        self._serial: Optional[serial.Serial] = None
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._data = GPSData()
        self._data_lock = threading.Lock()
        self._callbacks: List[Callable[[GPSData], None]] = []
        if callback is not None:
            self._callbacks.append(callback)

        self._buffer = ""

    def init(self) -> bool:
        """
        Open the serial port

        Returns:
            True on success
        """
        logger.info(f"GPS init: device={self.device}, baudrate={self.baudrate}, "
                    f"simulate={self.simulate}")

        if self.simulate:
            return True

        try:
            self._serial = serial.Serial(
                port=self.device,
                baudrate=self.baudrate,
                timeout=1.0
            )
        except serial.SerialException as e:
            logger.error(f"Failed to open GPS on {self.device}: {e}")
            return False

        self._serial.reset_input_buffer()
        logger.info(f"GPS connected on {self.device}")
        return True

    def start(self):
        """Start GPS reading thread"""
        if self._running:
            return

        self._running = True
        self._thread = threading.Thread(target=self._read_loop, name="GPSReader", daemon=True)
        self._thread.start()
        logger.info("GPS reader started")

    def stop(self):
        """Stop GPS reading thread"""
        self._running = False
        if self._thread:
            self._thread.join(timeout=2.0)
            self._thread = None

        if self._serial:
            self._serial.close()
            self._serial = None

        logger.info("GPS reader stopped")

    def _read_loop(self):
        """Main GPS reading loop"""
        while self._running:
            if self.simulate:
                self._update_simulation()
                time.sleep(1.0)
                continue

            try:
                if self._serial.in_waiting > 0:
                    self.feed(self._serial.read(self._serial.in_waiting))
                else:
                    time.sleep(0.05)
            except serial.SerialException as e:
                logger.error(f"GPS serial error: {e}")
                time.sleep(1.0)

    def feed(self, data: bytes):
        """Process raw serial bytes, parsing each complete NMEA line"""
        self._buffer += data.decode('ascii', errors='ignore')

        while '\n' in self._buffer:
            line, self._buffer = self._buffer.split('\n', 1)
            line = line.strip()
            if line.startswith('$'):
                self.handle_sentence(line)

        # Garbage without newlines
        if len(self._buffer) > 256:
            self._buffer = ""

    def handle_sentence(self, sentence: str):
        """Parse one NMEA sentence and update position"""
        try:
            msg = pynmea2.parse(sentence, check=True)
        except pynmea2.ParseError as e:
            logger.debug(f"NMEA parse error: {e}")
            return

        if isinstance(msg, pynmea2.GGA):
            self._handle_gga(msg)
        elif isinstance(msg, pynmea2.RMC):
            self._handle_rmc(msg)

    def _handle_gga(self, msg: 'pynmea2.GGA'):
        fix = int(msg.gps_qual) if msg.gps_qual else 0

        with self._data_lock:
            self._data.fix_quality = fix
            self._data.satellites = int(msg.num_sats) if msg.num_sats else 0
            self._data.hdop = float(msg.horizontal_dil) if msg.horizontal_dil else 99.9
            self._data.position_valid = fix >= 1 and bool(msg.lat and msg.lon)
            if self._data.position_valid:
                self._data.latitude = msg.latitude
                self._data.longitude = msg.longitude
                self._data.altitude = float(msg.altitude) if msg.altitude is not None else 0.0
            self._data.last_update = time.time()

        self._notify_callbacks()

    def _handle_rmc(self, msg: 'pynmea2.RMC'):
        with self._data_lock:
            if msg.spd_over_grnd is not None:
                self._data.speed = float(msg.spd_over_grnd) * 0.514444  # knots
            if msg.true_course is not None:
                self._data.heading = float(msg.true_course)

    def _update_simulation(self):
        """Fixed simulated station position"""
        lat, lon, alt = self.sim_position
        with self._data_lock:
            self._data.latitude = lat
            self._data.longitude = lon
            self._data.altitude = alt
            self._data.satellites = 9
            self._data.fix_quality = 1
            self._data.hdop = 1.0
            self._data.position_valid = True
            self._data.last_update = time.time()

        self._notify_callbacks()

    def add_callback(self, callback: Callable[[GPSData], None]):
        """Add callback for GPS data updates"""
        self._callbacks.append(callback)

    def _notify_callbacks(self):
        data = self.get_data()
        for callback in self._callbacks:
            try:
                callback(data)
            except Exception as e:
                logger.error(f"GPS callback error: {e}")

    def get_data(self) -> GPSData:
        """Get current GPS data (thread-safe copy)"""
        with self._data_lock:
            return GPSData(**vars(self._data))
