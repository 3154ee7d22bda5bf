"""
Flask application for HTTP API.

Provides:
- GET /health: Device health and sync state
- GET /status: Current display status
- POST /admin/<command>: Queue enroll / sync / erase for the control loop
"""

from typing import Any, Callable, Dict

from flask import Flask, jsonify, request
from flask_cors import CORS

from .config import Config
from .logging_config import get_logger
from .status import ADMIN_COMMANDS, StatusBoard

logger = get_logger(__name__)


def create_app(
    config: Config,
    board: StatusBoard,
    snapshot: Callable[[], Dict[str, Any]]
) -> Flask:
    """
    Create and configure Flask application.

    Args:
        config: Device configuration
        board: Status board shared with the control loop
        snapshot: Returns the loop's current health figures

    Returns:
        Configured Flask app
    """
    app = Flask(__name__)
    CORS(app)

    @app.route('/health')
    def health():
        """Health check endpoint."""
        return jsonify({
            'status': 'ok',
            'deviceId': config.device_id,
            **snapshot(),
        })

    @app.route('/status')
    def status():
        """Current status shown on the device."""
        return jsonify(board.get_status())

    @app.route('/admin/<command>', methods=['POST'])
    def admin(command: str):
        """Queue an admin action; the control loop executes it."""
        if config.admin_token and request.headers.get('x-admin-token') != config.admin_token:
            logger.warning(f'Rejected admin command {command}: bad token')
            return jsonify({'error': 'unauthorized'}), 401

        if command not in ADMIN_COMMANDS:
            return jsonify({'error': f'unknown command {command}'}), 404

        board.submit_command(command)
        return jsonify({'queued': command}), 202

    return app
