"""
Rover Ground Station - Station Controller

Coordinates all subsystems: radio link, telemetry processing, command
uplink, OLED display, station GPS and web interface.
"""

import logging
import os
import threading
import time
from datetime import datetime
from typing import Optional

from rover_gs.common.constants import RH_PREFIX_SIZE
from rover_gs.common.errors import DisplayError, RadioError, ReceiveError, SendError
from rover_gs.common.gps import (
    GPS, GPSData, haversine_distance, calculate_bearing, calculate_elevation_angle,
)
from rover_gs.common.protocol import (
    CommandMessage, CommandReady, RoverMessage, TelemetryMessage, max_string_length,
)
from rover_gs.ground.commands import CommandQueue, CommandSequence, CommandUplink
from rover_gs.ground.config import GroundConfig
from rover_gs.ground.display import Display, NullDisplay, OledDisplay, banner_text, format_status
from rover_gs.ground.link import RoverLink
from rover_gs.ground.radio import Radio, RFM69Radio, SimulatedRadio
from rover_gs.ground.telemetry import TelemetryProcessor, TelemetryPoint
from rover_gs.ground.web import WebServer

logger = logging.getLogger(__name__)


class GroundStation:
    """
    Main ground station controller

    The radio loop runs on the calling thread; GPS and web run in
    background threads.
    """

    def __init__(
        self,
        config: GroundConfig,
        simulate: bool = False,
        radio: Optional[Radio] = None,
        display: Optional[Display] = None,
    ):
        """
        Initialize ground station

        Args:
            config: Ground station configuration
            simulate: Enable simulation mode (no real hardware)
            radio: Radio to use instead of building one from config
            display: Display to use instead of building one from config
        """
        self.config = config
        self.simulate = simulate

        self._radio = radio
        self._display = display
        self._link: Optional[RoverLink] = None
        self._telemetry: Optional[TelemetryProcessor] = None
        self._queue: Optional[CommandQueue] = None
        self._uplink: Optional[CommandUplink] = None
        self._gps: Optional[GPS] = None
        self._web: Optional[WebServer] = None

        self._ground_gps: Optional[GPSData] = None
        self._ground_gps_lock = threading.Lock()

        self._running = False
        self._shutdown_event = threading.Event()
        self._start_time: float = 0
        self._last_status: float = 0
        self.session_id = datetime.now().strftime("%Y%m%d_%H%M%S")

    # === Lifecycle ===

    def start(self):
        """Run the ground station until shutdown"""
        logger.info("=" * 60)
        logger.info("Rover Ground Station Starting")
        logger.info(f"Callsign: {self.config.callsign}")
        logger.info(f"Frequency: {self.config.frequency_mhz} MHz")
        logger.info(f"Simulation mode: {self.simulate}")
        logger.info("=" * 60)

        try:
            self.initialize()
            self.start_components()
            self.run()
        except KeyboardInterrupt:
            logger.info("Keyboard interrupt received")
        except RadioError as e:
            logger.critical(f"{e}")
        except Exception as e:
            logger.critical(f"Fatal error: {e}", exc_info=True)
        finally:
            self.cleanup()

    def initialize(self):
        """Initialize all components"""
        logger.info("Initializing components...")
        self._start_time = time.time()

        os.makedirs(self.config.data_path, exist_ok=True)
        os.makedirs(self.config.log_path, exist_ok=True)

        # Display first so it can show the banner while the rest comes up
        if self._display is None:
            self._display = self._create_display()
        self._show(banner_text())

        logger.info("Initializing telemetry processor...")
        self._telemetry = TelemetryProcessor(
            db_path=self.config.telemetry_db_path,
            buffer_size=self.config.telemetry_buffer_size,
            on_telemetry=self._on_telemetry,
            on_alert=self._on_alert,
            session_id=self.session_id,
        )
        self._telemetry.alert_weak_signal_dbm = self.config.alert_weak_signal_dbm
        self._telemetry.alert_low_memory_bytes = self.config.alert_low_memory_bytes
        self._telemetry.alert_min_satellites = self.config.alert_min_satellites
        self._telemetry.database.start_session(self.session_id, self.config.callsign)
        logger.info(f"Session ID: {self.session_id}")

        logger.info("Initializing radio...")
        if self._radio is None:
            if self.simulate:
                self._radio = SimulatedRadio(
                    telemetry_interval_sec=self.config.simulated_telemetry_interval_sec,
                    frequency_mhz=self.config.frequency_mhz,
                )
            else:
                self._radio = RFM69Radio(self.config)
        self._radio.init()

        self._link = RoverLink(
            self._radio,
            self.config,
            command_waiting=self._command_waiting,
            on_message=self._on_rover_message,
        )

        self._queue = CommandQueue(
            max_command_length=min(
                max_string_length(CommandMessage, self.config.use_encryption),
                self._link.max_frame_size - RH_PREFIX_SIZE - CommandMessage.MIN_SIZE - 1,
            )
        )
        self._uplink = CommandUplink(
            self._link,
            self._queue,
            max_retries=self.config.command_retry_count,
            on_update=self._on_command_update,
        )

        if self.config.gps_enabled:
            logger.info("Initializing ground station GPS...")
            self._gps = GPS(
                device=self.config.gps_device,
                baudrate=self.config.gps_baudrate,
                simulate=self.simulate,
                callback=self._on_ground_gps_update,
            )
            if not self._gps.init():
                logger.warning("Ground GPS initialization failed")
                self._gps = None
        else:
            logger.info("Ground station GPS disabled")

        if self.config.enable_web:
            logger.info("Initializing web interface...")
            self._web = WebServer(self.config, self)

        self._show("Waiting for rover")
        logger.info("All components initialized")

    def _create_display(self) -> Display:
        if not self.config.display_enabled or self.simulate:
            return NullDisplay()
        oled = OledDisplay(
            width=self.config.display_width,
            height=self.config.display_height,
            address=self.config.display_address,
        )
        try:
            oled.init()
        except DisplayError as e:
            logger.error(f"{e}")
            return NullDisplay()
        return oled

    def start_components(self):
        if self._gps:
            self._gps.start()
        if self._web:
            self._web.start()
        self._running = True

    def run(self):
        """Radio loop"""
        logger.info("Entering radio loop")
        self._running = True
        self._last_status = time.time()

        while self._running and not self._shutdown_event.is_set():
            self.poll_once()

            now = time.time()
            if now - self._last_status >= self.config.status_interval_sec:
                self._log_status()
                self._last_status = now

        logger.info("Exiting radio loop")

    def poll_once(self) -> Optional[RoverMessage]:
        """
        One exchange with the rover

        Waits for telemetry (or an unsolicited CommandReady). If the ACK for
        the telemetry told the rover commands are waiting, waits for its
        CommandReady and runs the uplink.

        Returns:
            The message received, or None on timeout / error
        """
        try:
            message = self._link.receive((TelemetryMessage, CommandReady), self.config.telemetry_timeout_sec)
        except ReceiveError as e:
            logger.warning(f"{e.message}")
            return None
        except SendError as e:
            logger.error(f"{e.message}")
            return None

        if isinstance(message, TelemetryMessage):
            self._refresh_display()
            ack = self._link.last_telemetry_ack
            if ack is not None and ack.command_waiting:
                self._await_command_ready()
        elif isinstance(message, CommandReady):
            self._run_uplink(message)

        return message

    def _await_command_ready(self):
        try:
            ready = self._link.receive(CommandReady, self.config.ack_timeout_sec)
        except ReceiveError as e:
            logger.warning(f"Rover did not answer command_waiting: {e.message}")
            return
        except SendError as e:
            logger.error(f"{e.message}")
            return
        self._run_uplink(ready)

    def _run_uplink(self, ready: CommandReady):
        self._show("Sending commands")
        self._uplink.handle_ready(ready)
        self._refresh_display()

    def cleanup(self):
        """Cleanup resources"""
        logger.info("Cleaning up...")

        if self._web:
            self._web.stop()

        if self._gps:
            self._gps.stop()

        if self._radio:
            try:
                self._radio.close()
            except RadioError as e:
                logger.warning(f"{e}")

        if self._telemetry:
            self._telemetry.database.end_session()
            self._telemetry.close()

        if self._display:
            try:
                self._display.clear()
            except DisplayError as e:
                logger.warning(f"{e}")
            self._display.close()

        logger.info("Cleanup complete")

    def request_shutdown(self):
        """Request graceful shutdown"""
        logger.info("Shutdown requested")
        self._running = False
        self._shutdown_event.set()

    # === Callbacks ===

    def _command_waiting(self) -> bool:
        return self._queue is not None and self._queue.has_pending()

    def _on_rover_message(self, message: RoverMessage, rssi: int):
        if isinstance(message, TelemetryMessage):
            self._telemetry.process_message(message, rssi)

    def _on_telemetry(self, point: TelemetryPoint):
        logger.info(
            f"Telemetry {point.rover_time}: {point.latitude:.6f},{point.longitude:.6f} "
            f"sats={point.satellites} mem={point.free_memory} status='{point.status}'"
        )
        if self._web:
            self._web.emit_telemetry(point.to_dict())

    def _on_alert(self, alert_type: str, message: str, data):
        if self._web:
            self._web.emit_alert(alert_type, message, data)

    def _on_command_update(self, sequence: CommandSequence):
        if self._web:
            self._web.emit_command(sequence.to_dict())

    def command_updated(self, sequence: CommandSequence):
        """Called by the web interface after queueing or cancelling a sequence"""
        self._on_command_update(sequence)
        self._refresh_display()

    def _on_ground_gps_update(self, gps_data: GPSData):
        with self._ground_gps_lock:
            self._ground_gps = gps_data

    # === Display ===

    def _show(self, text: str):
        """Show text; display trouble never stops the station"""
        if self._display is None:
            return
        try:
            self._display.show(text)
        except DisplayError as e:
            logger.error(f"{e}")

    def _refresh_display(self):
        self._show(format_status(
            self._telemetry.get_latest() if self._telemetry else None,
            self._link.get_stats() if self._link else None,
            self._queue.size() if self._queue else 0,
        ))

    # === Accessors for the web interface ===

    @property
    def telemetry(self) -> Optional[TelemetryProcessor]:
        return self._telemetry

    @property
    def commands(self) -> Optional[CommandQueue]:
        return self._queue

    @property
    def link(self) -> Optional[RoverLink]:
        return self._link

    @property
    def uplink(self) -> Optional[CommandUplink]:
        return self._uplink

    @property
    def display(self) -> Optional[Display]:
        return self._display

    def get_ground_position(self) -> Optional[GPSData]:
        with self._ground_gps_lock:
            return self._ground_gps

    def get_tracking_info(self) -> Optional[dict]:
        """
        Distance, bearing and elevation from the station to the rover

        Returns:
            Dict or None without a station GPS fix or rover position
        """
        with self._ground_gps_lock:
            ground = self._ground_gps

        if ground is None or not ground.position_valid:
            return None

        if self._telemetry is None:
            return None

        rover = self._telemetry.get_latest()
        if rover is None or (rover.latitude == 0 and rover.longitude == 0):
            return None

        distance = haversine_distance(ground.latitude, ground.longitude, rover.latitude, rover.longitude)
        bearing = calculate_bearing(ground.latitude, ground.longitude, rover.latitude, rover.longitude)
        elevation = calculate_elevation_angle(
            ground.latitude, ground.longitude, ground.altitude,
            rover.latitude, rover.longitude, rover.altitude
        )

        return {
            'distance_m': distance,
            'distance_km': distance / 1000,
            'bearing_deg': bearing,
            'elevation_deg': elevation,
            'ground_lat': ground.latitude,
            'ground_lon': ground.longitude,
            'ground_alt': ground.altitude,
            'ground_sats': ground.satellites,
        }

    def get_status(self) -> dict:
        """Current status as dictionary"""
        status = {
            'time': time.time(),
            'uptime': time.time() - self._start_time if self._start_time else 0,
            'callsign': self.config.callsign,
            'session_id': self.session_id,
            'frequency_mhz': self._radio.frequency_mhz if self._radio else self.config.frequency_mhz,
            'encryption': self.config.use_encryption,
            'simulate': self.simulate,
            'link': self._link.get_stats() if self._link else {},
            'telemetry': self._telemetry.get_session_stats() if self._telemetry else {},
            'commands': self._uplink.get_stats() if self._uplink else {},
        }
        tracking = self.get_tracking_info()
        if tracking:
            status['tracking'] = tracking
        return status

    def _log_status(self):
        uptime = time.time() - self._start_time

        stats = []
        if self._link:
            link_stats = self._link.get_stats()
            stats.append(f"RX:{link_stats['packets_valid']}/{link_stats['packets_received']}")
            stats.append(f"RSSI:{link_stats['last_rssi']}")
            stats.append(f"Timeouts:{link_stats['timeouts']}")

        if self._telemetry:
            latest = self._telemetry.get_latest()
            if latest:
                stats.append(f"Sats:{latest.satellites}")
                stats.append(f"Mem:{latest.free_memory}")

        if self._queue:
            stats.append(f"CMD:{self._queue.size()}")

        logger.info(f"Status [{uptime:.0f}s] " + " | ".join(stats))
        if self._web:
            self._web.emit_status(self.get_status())
