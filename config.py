# QR Attendance Session System Configuration

import os
import tempfile
from pathlib import Path

# Base directory
BASE_DIR = Path(__file__).parent.absolute()


def _env_flag(name, default='False'):
    return os.environ.get(name, default).lower() in ['true', 'on', '1']


class Config:
    """Base configuration class"""

    # Flask Configuration
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'qr-attendance-secret-key-2025'

    # Database Configuration
    DATABASE_PATH = BASE_DIR / 'database' / 'attendance.db'

    # Sections created on first start
    DEFAULT_SECTIONS = ['BSIT 3A', 'BSIT 3B', 'BSCS 2A']

    # Attendance Session Configuration
    ATTENDANCE_COOLDOWN_MINUTES = int(os.environ.get('ATTENDANCE_COOLDOWN_MINUTES') or 5)
    ATTENDANCE_MIN_HOLD_SECONDS = int(os.environ.get('ATTENDANCE_MIN_HOLD_SECONDS') or 60)
    # Rescanning in another section times out the open record there
    ATTENDANCE_AUTO_TIMEOUT_ON_RESCAN = _env_flag('AUTO_TIMEOUT_ON_RESCAN')

    # QR Code Configuration
    QR_CODE_SIZE = 10
    QR_CODE_BORDER = 4
    QR_CODE_ERROR_CORRECT = 'M'  # Medium error correction

    # Logging Configuration
    LOG_LEVEL = os.environ.get('LOG_LEVEL') or 'INFO'
    LOG_FILE = BASE_DIR / 'logs' / 'attendance.log'
    LOG_MAX_BYTES = 10 * 1024 * 1024  # 10MB
    LOG_BACKUP_COUNT = 5

    # Development Configuration
    DEBUG = _env_flag('DEBUG')
    TESTING = False

    @staticmethod
    def init_app(app):
        """Initialize application configuration"""
        for directory in (Config.LOG_FILE.parent,):
            directory.mkdir(parents=True, exist_ok=True)


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    TESTING = False

    DATABASE_PATH = BASE_DIR / 'database' / 'attendance_dev.db'

    # More verbose logging
    LOG_LEVEL = 'DEBUG'


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    DEBUG = True

    # Each testing app gets its own temporary database file, see init_app
    DATABASE_PATH = None

    DEFAULT_SECTIONS = ['BSIT 3A']
    ATTENDANCE_COOLDOWN_MINUTES = 5
    ATTENDANCE_MIN_HOLD_SECONDS = 60
    ATTENDANCE_AUTO_TIMEOUT_ON_RESCAN = False

    @staticmethod
    def init_app(app):
        fd, path = tempfile.mkstemp(prefix='qr_attendance_', suffix='.db')
        os.close(fd)
        app.config['DATABASE_PATH'] = path


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    TESTING = False

    DATABASE_PATH = BASE_DIR / 'database' / 'attendance_prod.db'

    # Production logging
    LOG_LEVEL = 'WARNING'

    @classmethod
    def init_app(cls, app):
        Config.init_app(app)

        # Production-specific initialization
        import logging
        from logging.handlers import RotatingFileHandler

        # Setup file logging
        if not app.debug:
            file_handler = RotatingFileHandler(
                cls.LOG_FILE,
                maxBytes=cls.LOG_MAX_BYTES,
                backupCount=cls.LOG_BACKUP_COUNT
            )
            file_handler.setFormatter(logging.Formatter(
                '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
            ))
            file_handler.setLevel(logging.INFO)
            app.logger.addHandler(file_handler)

            app.logger.setLevel(logging.INFO)
            app.logger.info('QR Attendance startup')


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}


class QRCodeConfig:
    """QR code specific configuration"""

    VERSION = 1  # Grows automatically to fit the payload
    FILL_COLOR = "black"
    BACK_COLOR = "white"


class DatabaseConfig:
    """Database specific configuration"""

    # Connection settings
    TIMEOUT = 30.0


# Environment-specific configurations
def get_config(config_name=None):
    """Get configuration based on name or the FLASK_ENV environment variable"""
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'default')
    return config.get(config_name, DevelopmentConfig)


# Validation functions
def validate_config(config_class):
    """Validate configuration settings"""
    errors = []

    if config_class.ATTENDANCE_COOLDOWN_MINUTES < 0:
        errors.append("ATTENDANCE_COOLDOWN_MINUTES must not be negative")

    if config_class.ATTENDANCE_MIN_HOLD_SECONDS < 0:
        errors.append("ATTENDANCE_MIN_HOLD_SECONDS must not be negative")

    if config_class.QR_CODE_ERROR_CORRECT not in ('L', 'M', 'Q', 'H'):
        errors.append(f"Unknown QR error correction level: {config_class.QR_CODE_ERROR_CORRECT}")

    return errors


# Initialize configuration
def init_config(app, config_name=None):
    """Initialize application with configuration"""
    config_class = get_config(config_name)
    app.config.from_object(config_class)
    config_class.init_app(app)

    # Validate configuration
    errors = validate_config(config_class)
    if errors:
        for error in errors:
            app.logger.error(f"Configuration error: {error}")
        raise RuntimeError("Configuration validation failed")

    return config_class
