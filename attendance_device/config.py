"""
Configuration module for the Attendance Device.

Loads configuration from environment variables with sensible defaults.
All settings are immutable after initialization.
"""

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Config:
    """
    Immutable configuration for the Attendance Device.

    Backend Integration:
        backend_url: Base URL of the remote authority (e.g., http://backend:3000)
        device_token: Optional token sent as x-device-token on every request
        request_timeout_seconds: Timeout for a single HTTP request

    Connectivity:
        connectivity_timeout_seconds: Timeout of the TCP reachability probe
        connectivity_ttl_seconds: How long a probe answer is reused

    Device Identity:
        device_id: Logical identifier for this device (for logging/monitoring)
        status_port: Port for the Flask status server
        enable_status_server: Start the status server alongside the loop
        admin_token: Optional token required by the admin endpoints

    Storage:
        data_dir: Directory holding the persisted mapping and attendance log
        mapping_file: File name of the mapping table (JSON record array)
        attendance_log_file: File name of the line-delimited attendance log

    Biometrics:
        slot_capacity: Number of template slots on the capture device
        templates_per_user: Maximum templates enrolled per identity
        min_match_confidence: Matches below this score count as no match

    Scheduling:
        sync_interval_seconds: Seconds between periodic sync cycles
        loop_delay_seconds: Sleep between control loop ticks
        debug_mode: Enable debug logging
    """

    # Backend
    backend_url: str
    device_token: str
    request_timeout_seconds: float

    # Connectivity
    connectivity_timeout_seconds: float
    connectivity_ttl_seconds: float

    # Device
    device_id: str
    status_port: int
    enable_status_server: bool
    admin_token: str

    # Storage
    data_dir: str
    mapping_file: str
    attendance_log_file: str

    # Biometrics
    slot_capacity: int
    templates_per_user: int
    min_match_confidence: int

    # Scheduling
    sync_interval_seconds: int
    loop_delay_seconds: float
    debug_mode: bool

    @property
    def mapping_path(self) -> str:
        return os.path.join(self.data_dir, self.mapping_file)

    @property
    def attendance_log_path(self) -> str:
        return os.path.join(self.data_dir, self.attendance_log_file)


def load_config() -> Config:
    """
    Load configuration from environment variables.

    Returns:
        Config: Immutable configuration object
    """
    return Config(
        # Backend
        backend_url=os.getenv('BACKEND_URL', 'http://localhost:3000').rstrip('/'),
        device_token=os.getenv('DEVICE_TOKEN', ''),
        request_timeout_seconds=float(os.getenv('REQUEST_TIMEOUT', '5')),

        # Connectivity
        connectivity_timeout_seconds=float(os.getenv('CONNECTIVITY_TIMEOUT', '2')),
        connectivity_ttl_seconds=float(os.getenv('CONNECTIVITY_TTL', '5')),

        # Device
        device_id=os.getenv('DEVICE_ID', 'device-1'),
        status_port=int(os.getenv('STATUS_PORT', '5001')),
        enable_status_server=os.getenv('ENABLE_STATUS_SERVER', 'true').lower() == 'true',
        admin_token=os.getenv('ADMIN_TOKEN', ''),

        # Storage
        data_dir=os.getenv('DATA_DIR', 'data'),
        mapping_file=os.getenv('MAPPING_FILE', 'mapping.json'),
        attendance_log_file=os.getenv('ATTENDANCE_LOG', 'attendance.log'),

        # Biometrics
        slot_capacity=int(os.getenv('SLOT_CAPACITY', '128')),
        templates_per_user=int(os.getenv('TEMPLATES_PER_USER', '3')),
        min_match_confidence=int(os.getenv('MIN_CONFIDENCE', '50')),

        # Scheduling
        sync_interval_seconds=int(os.getenv('SYNC_INTERVAL', '3600')),
        loop_delay_seconds=float(os.getenv('LOOP_DELAY', '0.05')),
        debug_mode=os.getenv('DEBUG', 'false').lower() == 'true',
    )
