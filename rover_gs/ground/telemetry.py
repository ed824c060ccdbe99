"""
Rover Ground Station - Telemetry Processor
Processes, stores, and provides access to received rover telemetry
"""

import csv
import logging
import time
import sqlite3
import os
from dataclasses import dataclass, asdict
from typing import Dict, List, Optional, Callable, Any
from threading import Lock
from collections import deque

from rover_gs.common.protocol import TelemetryMessage

logger = logging.getLogger(__name__)


@dataclass
class TelemetryPoint:
    """A single telemetry data point"""
    # Reception info
    received_at: float
    rssi: int                   # as measured by the station
    rover_time: str             # HH:MM:SS from the rover's clock

    # GPS / compass
    latitude: float
    longitude: float
    altitude: float
    speed: float
    satellites: int
    heading: int

    # System
    signal_strength: int        # as reported by the rover
    free_memory: int
    status: str

    def to_dict(self) -> Dict:
        """Convert to dictionary"""
        return asdict(self)

    @classmethod
    def from_message(
        cls,
        message: TelemetryMessage,
        received_at: float,
        rssi: int
    ) -> 'TelemetryPoint':
        """Create from TelemetryMessage"""
        loc = message.location
        return cls(
            received_at=received_at,
            rssi=rssi,
            rover_time=str(message.timestamp),
            latitude=loc.gps_lat,
            longitude=loc.gps_long,
            altitude=loc.gps_alt,
            speed=loc.gps_speed,
            satellites=loc.gps_sats,
            heading=loc.mag_hdg,
            signal_strength=message.signal_strength,
            free_memory=message.free_memory,
            status=message.status,
        )


class TelemetryBuffer:
    """In-memory circular buffer for recent telemetry"""

    def __init__(self, max_size: int = 1000):
        self._buffer: deque = deque(maxlen=max_size)
        self._lock = Lock()

    def add(self, point: TelemetryPoint):
        with self._lock:
            self._buffer.append(point)

    def get_latest(self, count: int = 1) -> List[TelemetryPoint]:
        """Get the most recent points"""
        with self._lock:
            if count >= len(self._buffer):
                return list(self._buffer)
            return list(self._buffer)[-count:]

    def get_all(self) -> List[TelemetryPoint]:
        with self._lock:
            return list(self._buffer)

    def get_since(self, timestamp: float) -> List[TelemetryPoint]:
        """Get points since a timestamp"""
        with self._lock:
            return [p for p in self._buffer if p.received_at >= timestamp]

    def clear(self):
        with self._lock:
            self._buffer.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffer)


_COLUMNS = (
    'received_at', 'rssi', 'rover_time',
    'latitude', 'longitude', 'altitude', 'speed', 'satellites', 'heading',
    'signal_strength', 'free_memory', 'status',
)


class TelemetryDatabase:
    """SQLite database for persistent telemetry storage"""

    def __init__(self, db_path: str, session_id: str = None):
        """
        Initialize database

        Args:
            db_path: Path to SQLite database file
            session_id: Current session identifier
        """
        self.db_path = db_path
        self.session_id = session_id
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = Lock()

        self._init_db()

    def _init_db(self):
        """Initialize database schema"""
        db_dir = os.path.dirname(self.db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

        with self._get_conn() as conn:
            conn.execute('''
                CREATE TABLE IF NOT EXISTS telemetry (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    received_at REAL NOT NULL,
                    rssi INTEGER,
                    rover_time TEXT,
                    latitude REAL,
                    longitude REAL,
                    altitude REAL,
                    speed REAL,
                    satellites INTEGER,
                    heading INTEGER,
                    signal_strength INTEGER,
                    free_memory INTEGER,
                    status TEXT,
                    session_id TEXT
                )
            ''')

            conn.execute('''
                CREATE INDEX IF NOT EXISTS idx_telemetry_received_at
                ON telemetry(received_at)
            ''')

            conn.execute('''
                CREATE INDEX IF NOT EXISTS idx_telemetry_session
                ON telemetry(session_id)
            ''')

            conn.execute('''
                CREATE TABLE IF NOT EXISTS sessions (
                    session_id TEXT PRIMARY KEY,
                    start_time REAL NOT NULL,
                    end_time REAL,
                    callsign TEXT
                )
            ''')

            conn.commit()

        logger.info(f"Telemetry database initialized: {self.db_path}")

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def start_session(self, session_id: str, callsign: str = None):
        """Record the start of a station session"""
        self.session_id = session_id
        with self._lock:
            with self._get_conn() as conn:
                conn.execute(
                    "INSERT OR IGNORE INTO sessions (session_id, start_time, callsign) VALUES (?, ?, ?)",
                    (session_id, time.time(), callsign)
                )
                conn.commit()

    def end_session(self):
        """Record the end of the current session"""
        if not self.session_id:
            return
        with self._lock:
            with self._get_conn() as conn:
                conn.execute(
                    "UPDATE sessions SET end_time = ? WHERE session_id = ?",
                    (time.time(), self.session_id)
                )
                conn.commit()

    def insert(self, point: TelemetryPoint, session_id: str = None) -> int:
        """Insert a telemetry point"""
        sid = session_id or self.session_id
        values = [getattr(point, c) for c in _COLUMNS] + [sid]
        with self._lock:
            with self._get_conn() as conn:
                cursor = conn.execute(
                    f"INSERT INTO telemetry ({', '.join(_COLUMNS)}, session_id) "
                    f"VALUES ({', '.join('?' * (len(_COLUMNS) + 1))})",
                    values
                )
                conn.commit()
                return cursor.lastrowid

    def query(
        self,
        start_time: Optional[float] = None,
        end_time: Optional[float] = None,
        limit: int = 1000
    ) -> List[TelemetryPoint]:
        """Query telemetry points, newest first"""
        with self._lock:
            query = "SELECT * FROM telemetry WHERE 1=1"
            params = []

            if start_time is not None:
                query += " AND received_at >= ?"
                params.append(start_time)

            if end_time is not None:
                query += " AND received_at <= ?"
                params.append(end_time)

            query += " ORDER BY received_at DESC, id DESC LIMIT ?"
            params.append(limit)

            with self._get_conn() as conn:
                rows = conn.execute(query, params).fetchall()

            return [self._row_to_point(row) for row in rows]

    def get_track(
        self,
        start_time: Optional[float] = None,
        end_time: Optional[float] = None,
        min_interval_sec: float = 1.0,
        session_id: str = None
    ) -> List[Dict]:
        """
        Get rover GPS track for mapping

        Args:
            start_time: Start of time range
            end_time: End of time range
            min_interval_sec: Minimum interval between points (for thinning)
            session_id: Filter by session (None = all, 'current' = current session)

        Returns:
            List of {lat, lon, alt, time} dicts
        """
        with self._lock:
            query = """
                SELECT latitude, longitude, altitude, rover_time, received_at
                FROM telemetry
                WHERE latitude != 0 AND longitude != 0
            """
            params = []

            if session_id == 'current' and self.session_id:
                query += " AND session_id = ?"
                params.append(self.session_id)
            elif session_id and session_id not in ('all', 'current'):
                query += " AND session_id = ?"
                params.append(session_id)

            if start_time is not None:
                query += " AND received_at >= ?"
                params.append(start_time)

            if end_time is not None:
                query += " AND received_at <= ?"
                params.append(end_time)

            query += " ORDER BY received_at ASC, id ASC"

            with self._get_conn() as conn:
                rows = conn.execute(query, params).fetchall()

            # Thin the track
            track = []
            last_time = None

            for row in rows:
                if last_time is None or row['received_at'] - last_time >= min_interval_sec:
                    track.append({
                        'lat': row['latitude'],
                        'lon': row['longitude'],
                        'alt': row['altitude'],
                        'time': row['rover_time'],
                    })
                    last_time = row['received_at']

            return track

    def clear_track(self, session_id: str = None) -> int:
        """
        Delete telemetry of a session

        Returns:
            Number of points deleted
        """
        sid = session_id or self.session_id
        if not sid:
            return 0

        with self._lock:
            with self._get_conn() as conn:
                cursor = conn.execute("DELETE FROM telemetry WHERE session_id = ?", (sid,))
                conn.commit()
                return cursor.rowcount

    def get_sessions(self) -> List[Dict]:
        """Get list of all sessions with telemetry data"""
        with self._lock:
            with self._get_conn() as conn:
                rows = conn.execute('''
                    SELECT session_id,
                           COUNT(*) as point_count,
                           MIN(received_at) as start_time,
                           MAX(received_at) as end_time
                    FROM telemetry
                    WHERE session_id IS NOT NULL
                    GROUP BY session_id
                    ORDER BY start_time DESC
                ''').fetchall()

                return [dict(row) for row in rows]

    def get_stats(self) -> Dict:
        """Get database statistics"""
        with self._lock:
            with self._get_conn() as conn:
                row = conn.execute('''
                    SELECT COUNT(*) as total_points,
                           MIN(received_at) as first_received,
                           MAX(received_at) as last_received,
                           MIN(rssi) as min_rssi,
                           MAX(rssi) as max_rssi
                    FROM telemetry
                ''').fetchone()
                return dict(row)

    def _row_to_point(self, row: sqlite3.Row) -> TelemetryPoint:
        return TelemetryPoint(**{c: row[c] for c in _COLUMNS})

    def close(self):
        if self._conn:
            self._conn.close()
            self._conn = None


class TelemetryProcessor:
    """
    Main telemetry processing class

    Handles incoming telemetry, stores it, and raises alerts
    """

    def __init__(
        self,
        db_path: str,
        buffer_size: int = 1000,
        on_telemetry: Optional[Callable[[TelemetryPoint], None]] = None,
        on_alert: Optional[Callable[[str, str, Any], None]] = None,
        session_id: str = None
    ):
        """
        Initialize telemetry processor

        Args:
            db_path: Path to telemetry database
            buffer_size: Size of in-memory buffer
            on_telemetry: Callback for new telemetry
            on_alert: Callback for alerts (type, message, data)
            session_id: Current session identifier
        """
        self.session_id = session_id
        self.buffer = TelemetryBuffer(buffer_size)
        self.database = TelemetryDatabase(db_path, session_id=session_id)
        self.on_telemetry = on_telemetry
        self.on_alert = on_alert

        self._latest: Optional[TelemetryPoint] = None
        self._lock = Lock()

        # Alert thresholds
        self.alert_weak_signal_dbm = -95
        self.alert_low_memory_bytes = 256
        self.alert_min_satellites = 4

        self.stats = {
            'packets_received': 0,
            'alerts_triggered': 0,
        }

        # Previous values for transition alerts
        self._prev_gps_ok: Optional[bool] = None
        self._prev_status: Optional[str] = None

    def set_session_id(self, session_id: str):
        """Update session ID"""
        self.session_id = session_id
        self.database.session_id = session_id

    def process_message(self, message: TelemetryMessage, rssi: int) -> TelemetryPoint:
        """
        Process a received TelemetryMessage

        Args:
            message: Decoded telemetry message
            rssi: Received signal strength at the station

        Returns:
            Processed telemetry point
        """
        point = TelemetryPoint.from_message(message, time.time(), rssi)

        with self._lock:
            self._latest = point
            self.stats['packets_received'] += 1

        self.buffer.add(point)
        self.database.insert(point)

        self._check_alerts(point)

        if self.on_telemetry:
            try:
                self.on_telemetry(point)
            except Exception as e:
                logger.error(f"Telemetry callback error: {e}")

        return point

    def _check_alerts(self, point: TelemetryPoint):
        """Check for alert conditions"""
        alerts = []

        if point.signal_strength < self.alert_weak_signal_dbm:
            alerts.append((
                'weak_signal',
                f"Weak signal at rover: {point.signal_strength} dBm",
                point.signal_strength
            ))

        if point.free_memory < self.alert_low_memory_bytes:
            alerts.append(('low_memory', f"Rover low on memory: {point.free_memory} bytes", point.free_memory))

        # GPS lost only on the transition, not every packet
        gps_ok = point.satellites >= self.alert_min_satellites
        if not gps_ok and self._prev_gps_ok is not False:
            alerts.append(('gps_lost', f"Rover GPS lost: {point.satellites} satellites", point.satellites))
        self._prev_gps_ok = gps_ok

        if self._prev_status is not None and point.status != self._prev_status:
            alerts.append(('rover_status', f"Rover status: {point.status}", point.status))
        self._prev_status = point.status

        for alert_type, message, data in alerts:
            self.stats['alerts_triggered'] += 1
            logger.warning(f"ALERT: {message}")
            if self.on_alert:
                try:
                    self.on_alert(alert_type, message, data)
                except Exception as e:
                    logger.error(f"Alert callback error: {e}")

    def get_latest(self) -> Optional[TelemetryPoint]:
        """Get the most recent telemetry point"""
        with self._lock:
            return self._latest

    def get_current_position(self) -> Optional[Dict]:
        """Get current rover position for mapping"""
        with self._lock:
            if self._latest is None:
                return None
            return {
                'lat': self._latest.latitude,
                'lon': self._latest.longitude,
                'alt': self._latest.altitude,
                'heading': self._latest.heading,
                'speed': self._latest.speed,
                'time': self._latest.rover_time,
            }

    def get_session_stats(self) -> Dict:
        """Get current session statistics"""
        db_stats = self.database.get_stats()

        with self._lock:
            latest = self._latest

        stats = {
            'total_packets': self.stats['packets_received'],
            'alerts': self.stats['alerts_triggered'],
            **db_stats,
        }

        if latest:
            stats.update({
                'current_status': latest.status,
                'current_satellites': latest.satellites,
                'current_free_memory': latest.free_memory,
                'last_rssi': latest.rssi,
            })

        return stats

    def export_csv(self, filepath: str, start_time: Optional[float] = None):
        """Export telemetry to CSV"""
        points = self.database.query(start_time=start_time, limit=100000)

        with open(filepath, 'w', newline='') as f:
            self.write_csv(f, points)

        logger.info(f"Exported {len(points)} telemetry points to {filepath}")

    @staticmethod
    def write_csv(f, points: List[TelemetryPoint]):
        """Write points (newest first, as queried) in chronological order"""
        writer = csv.writer(f)
        writer.writerow(_COLUMNS)
        for p in reversed(points):
            writer.writerow([getattr(p, c) for c in _COLUMNS])

    def export_kml(self, filepath: str, start_time: Optional[float] = None):
        """Export rover track to KML"""
        track = self.database.get_track(start_time=start_time)

        kml_content = '''<?xml version="1.0" encoding="UTF-8"?>
<kml xmlns="http://www.opengis.net/kml/2.2">
<Document>
    <name>Rover Track</name>
    <Style id="roverPath">
        <LineStyle>
            <color>ff00ff00</color>
            <width>3</width>
        </LineStyle>
    </Style>
    <Placemark>
        <name>Rover Path</name>
        <styleUrl>#roverPath</styleUrl>
        <LineString>
            <altitudeMode>clampToGround</altitudeMode>
            <coordinates>
'''

        for point in track:
            kml_content += f"                {point['lon']},{point['lat']},{point['alt']}\n"

        kml_content += '''            </coordinates>
        </LineString>
    </Placemark>
</Document>
</kml>'''

        with open(filepath, 'w') as f:
            f.write(kml_content)

        logger.info(f"Exported KML track to {filepath}")

    def close(self):
        self.database.close()
