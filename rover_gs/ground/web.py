"""
Rover Ground Station - Web Interface
Flask-based web UI with WebSocket for real-time updates
"""

import io
import logging
import time
import os
from typing import Any, Optional, TYPE_CHECKING
from threading import Thread

from flask import Flask, render_template, jsonify, request, Response
from flask_socketio import SocketIO, emit

from rover_gs import __version__
from rover_gs.ground.telemetry import TelemetryProcessor

if TYPE_CHECKING:
    from rover_gs.ground.config import GroundConfig
    from rover_gs.ground.station import GroundStation

logger = logging.getLogger(__name__)


def create_app(
    config: 'GroundConfig',
    ground_station: Optional['GroundStation'] = None,
) -> tuple:
    """
    Create Flask application

    Args:
        config: Ground station configuration
        ground_station: Initialized ground station (components are looked
                        up through it on every request)

    Returns:
        Tuple of (Flask app, SocketIO instance)
    """
    template_dir = os.path.join(os.path.dirname(__file__), 'templates')

    app = Flask(__name__, template_folder=template_dir)
    app.config['SECRET_KEY'] = 'rover-ground-station'

    @app.after_request
    def add_cors_headers(response):
        response.headers['Access-Control-Allow-Origin'] = '*'
        response.headers['Access-Control-Allow-Methods'] = 'GET, POST, OPTIONS'
        response.headers['Access-Control-Allow-Headers'] = 'Content-Type, Accept'
        return response

    socketio = SocketIO(app, cors_allowed_origins="*", async_mode='threading')

    app.config['ground_config'] = config
    app.config['ground_station'] = ground_station

    def telemetry():
        return ground_station.telemetry if ground_station else None

    def commands():
        return ground_station.commands if ground_station else None

    def unavailable(what: str):
        return jsonify({'error': f'{what} not available'}), 503

    # === Routes ===

    @app.route('/')
    def index():
        """Main dashboard"""
        return render_template('index.html', config=config, version=__version__)

    # === API Endpoints ===

    @app.route('/api/status')
    def api_status():
        """Get system status"""
        if not ground_station:
            return unavailable('Ground station')
        return jsonify(ground_station.get_status())

    @app.route('/api/tracking')
    def api_tracking():
        """Get tracking info (distance/bearing to the rover)"""
        if not ground_station:
            return unavailable('Ground station')

        tracking = ground_station.get_tracking_info()
        if tracking:
            return jsonify(tracking)
        return jsonify({'error': 'Tracking not available (no GPS fix or no rover telemetry)'}), 503

    @app.route('/api/ground_gps')
    def api_ground_gps():
        """Get ground station GPS position"""
        if not ground_station:
            return unavailable('Ground station')

        gps = ground_station.get_ground_position()
        if gps and gps.position_valid:
            return jsonify({
                'latitude': gps.latitude,
                'longitude': gps.longitude,
                'altitude': gps.altitude,
                'satellites': gps.satellites,
                'fix_quality': gps.fix_quality,
                'valid': True
            })
        return jsonify({'valid': False, 'error': 'No GPS fix'})

    @app.route('/api/telemetry/latest')
    def api_telemetry_latest():
        """Get latest telemetry"""
        if not telemetry():
            return unavailable('Telemetry')

        point = telemetry().get_latest()
        if point:
            return jsonify(point.to_dict())
        return jsonify({})

    @app.route('/api/telemetry/recent')
    def api_telemetry_recent():
        """Get recent telemetry points"""
        if not telemetry():
            return unavailable('Telemetry')

        count = request.args.get('count', 100, type=int)
        if count is None or count < 1:
            return jsonify({'error': 'count must be a positive integer'}), 400
        points = telemetry().buffer.get_latest(count)
        return jsonify([p.to_dict() for p in points])

    @app.route('/api/telemetry/track')
    def api_telemetry_track():
        """Get rover track for mapping"""
        if not telemetry():
            return unavailable('Telemetry')

        start = request.args.get('start', type=float)
        end = request.args.get('end', type=float)
        interval = request.args.get('interval', 1.0, type=float)
        session = request.args.get('session', 'current')  # 'current', 'all', or a session_id

        track = telemetry().database.get_track(start, end, interval, session_id=session)
        return jsonify(track)

    @app.route('/api/telemetry/sessions')
    def api_telemetry_sessions():
        """Get list of telemetry sessions"""
        if not telemetry():
            return unavailable('Telemetry')
        return jsonify(telemetry().database.get_sessions())

    @app.route('/api/telemetry/export.csv')
    def api_telemetry_export_csv():
        """Download telemetry as CSV"""
        if not telemetry():
            return unavailable('Telemetry')

        start = request.args.get('start', type=float)
        points = telemetry().database.query(start_time=start, limit=100000)
        buf = io.StringIO()
        TelemetryProcessor.write_csv(buf, points)
        return Response(
            buf.getvalue(),
            mimetype='text/csv',
            headers={'Content-Disposition': 'attachment; filename=telemetry.csv'}
        )

    @app.route('/api/commands', methods=['GET'])
    def api_commands():
        """List command sequences"""
        if not commands():
            return unavailable('Command queue')
        return jsonify({
            'sequences': [s.to_dict() for s in commands().list()],
            'max_command_length': commands().max_command_length,
            'stats': commands().get_stats(),
        })

    @app.route('/api/commands', methods=['POST'])
    def api_commands_send():
        """
        Queue a command sequence

        Body: {"commands": ["FWD 10", "LEFT 90"]} or {"command": "STOP"}
        """
        if not commands():
            return unavailable('Command queue')

        data = request.get_json(silent=True) or {}
        cmds = data.get('commands')
        if cmds is None and 'command' in data:
            cmds = [data['command']]
        if not isinstance(cmds, list):
            return jsonify({'error': "Expected 'commands' list or 'command' string"}), 400

        try:
            sequence = commands().enqueue(cmds)
        except ValueError as e:
            return jsonify({'error': str(e)}), 400

        if ground_station:
            ground_station.command_updated(sequence)
        return jsonify(sequence.to_dict()), 201

    @app.route('/api/commands/<int:sequence_id>')
    def api_command(sequence_id: int):
        """Get one command sequence"""
        if not commands():
            return unavailable('Command queue')

        sequence = commands().get(sequence_id)
        if sequence is None:
            return jsonify({'error': 'Command sequence not found'}), 404
        return jsonify(sequence.to_dict())

    @app.route('/api/commands/<int:sequence_id>/cancel', methods=['POST'])
    def api_command_cancel(sequence_id: int):
        """Cancel a queued command sequence"""
        if not commands():
            return unavailable('Command queue')

        sequence = commands().get(sequence_id)
        if sequence is None:
            return jsonify({'error': 'Command sequence not found'}), 404
        if not commands().cancel(sequence_id):
            return jsonify({'error': f'Command sequence is {sequence.status.name}'}), 400

        if ground_station:
            ground_station.command_updated(sequence)
        return jsonify(sequence.to_dict())

    # === SocketIO Events ===

    @socketio.on('connect')
    def handle_connect():
        logger.debug("Client connected")
        if ground_station:
            emit('status', ground_station.get_status())

    @socketio.on('disconnect')
    def handle_disconnect():
        logger.debug("Client disconnected")

    return app, socketio


class WebServer:
    """Web server wrapper with background thread"""

    def __init__(self, config: 'GroundConfig', ground_station: Optional['GroundStation'] = None):
        self.config = config
        self._app, self._socketio = create_app(config, ground_station)
        self._thread: Optional[Thread] = None
        self._running = False

    @property
    def app(self) -> Flask:
        return self._app

    def start(self):
        """Start web server in background thread"""
        if self._running:
            return

        self._running = True
        self._thread = Thread(target=self._run_server, name="WebServer", daemon=True)
        self._thread.start()
        logger.info(f"Web server starting on {self.config.web_host}:{self.config.web_port}")

    def stop(self):
        self._running = False
        logger.info("Web server stopped")

    def _run_server(self):
        try:
            self._socketio.run(
                self._app,
                host=self.config.web_host,
                port=self.config.web_port,
                debug=False,
                use_reloader=False,
                log_output=False,
                allow_unsafe_werkzeug=True
            )
        except OSError as e:
            logger.error(f"Web server error: {e}")

    def emit_telemetry(self, data: dict):
        """Emit telemetry update to all clients"""
        self._socketio.emit('telemetry', data)

    def emit_status(self, data: dict):
        """Emit status update to all clients"""
        self._socketio.emit('status', data)

    def emit_command(self, data: dict):
        """Emit command sequence update to all clients"""
        self._socketio.emit('command', data)

    def emit_alert(self, alert_type: str, message: str, data: Any = None):
        """Emit alert to all clients"""
        self._socketio.emit('alert', {
            'type': alert_type,
            'message': message,
            'data': data,
            'time': time.time()
        })
