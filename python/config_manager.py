"""
Configuration for the reconciliation service

config.yaml holds four sections (database, import, logging, api), each parsed
into a dataclass. Missing files fall back to defaults; malformed files raise
ConfigurationError.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
VALID_PLATFORM_TYPES = ("DIGITAL_WALLET", "BANK")


@dataclass
class DatabaseConfig:
    """Database configuration"""
    host: str = "localhost"
    port: int = 5432
    user: str = "recon_user"
    password: str = "recon_password"
    name: str = "recon_database"
    url: Optional[str] = None
    pool_size: int = 5
    max_overflow: int = 10
    echo: bool = False


@dataclass
class ImportConfig:
    """CSV import configuration"""
    sample_csv_path: str = "data.csv"
    max_upload_size_mb: int = 10
    default_platform_type: str = "DIGITAL_WALLET"


@dataclass
class LoggingConfig:
    """Logging configuration"""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass
class ApiConfig:
    """HTTP API configuration"""
    host: str = "127.0.0.1"
    port: int = 3000
    cors_origins: str = ""


class ConfigurationError(Exception):
    """Raised when configuration is invalid"""
    pass


class ConfigManager:
    """Loaded configuration, one attribute per config.yaml section"""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration manager

        Args:
            config_path: Path to config.yaml file
        """
        self.config_path = Path(config_path) if config_path else self._find_config()
        self._raw_config: Dict[str, Any] = {}
        self.database: DatabaseConfig = DatabaseConfig()
        self.data_import: ImportConfig = ImportConfig()
        self.logging: LoggingConfig = LoggingConfig()
        self.api: ApiConfig = ApiConfig()

        if self.config_path and self.config_path.exists():
            self.load()
        else:
            logger.warning(f"Config file not found at {self.config_path}, using defaults")

    @classmethod
    def create(cls, config_path: Optional[str] = None) -> 'ConfigManager':
        """Factory for an independent configuration instance"""
        return cls(config_path)

    def _find_config(self) -> Path:
        """Find config.yaml in common locations"""
        search_paths = [
            Path.cwd() / "config.yaml",
            Path(__file__).parent / "config.yaml",
            Path.cwd() / "python" / "config.yaml",
        ]

        for path in search_paths:
            if path.exists():
                return path

        return search_paths[0]

    def resolve_sample_csv_path(self) -> Path:
        """Sample CSV location; relative paths are taken from the config file's directory"""
        sample = Path(self.data_import.sample_csv_path)
        if not sample.is_absolute() and self.config_path is not None:
            sample = self.config_path.parent / sample
        return sample

    def load(self) -> None:
        """Load configuration from YAML file"""
        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                self._raw_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")
        except FileNotFoundError:
            raise ConfigurationError(f"Config file not found: {self.config_path}")

        if not isinstance(self._raw_config, dict):
            raise ConfigurationError("Config file must contain a mapping at the top level")

        try:
            self._parse_database()
            self._parse_import()
            self._parse_logging()
            self._parse_api()
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid value in config file: {e}")
        self._validate()

    def _section(self, name: str) -> Dict[str, Any]:
        cfg = self._raw_config.get(name) or {}
        if not isinstance(cfg, dict):
            raise ConfigurationError(f"Config section '{name}' must be a mapping")
        return cfg

    def _parse_database(self) -> None:
        """Parse database configuration"""
        cfg = self._section('database')
        self.database = DatabaseConfig(
            host=cfg.get('host', self.database.host),
            port=int(cfg.get('port', self.database.port)),
            user=cfg.get('user', self.database.user),
            password=cfg.get('password', self.database.password),
            name=cfg.get('name', self.database.name),
            url=cfg.get('url', self.database.url),
            pool_size=int(cfg.get('pool_size', self.database.pool_size)),
            max_overflow=int(cfg.get('max_overflow', self.database.max_overflow)),
            echo=bool(cfg.get('echo', self.database.echo))
        )

    def _parse_import(self) -> None:
        """Parse CSV import configuration"""
        cfg = self._section('import')
        self.data_import = ImportConfig(
            sample_csv_path=cfg.get('sample_csv_path', self.data_import.sample_csv_path),
            max_upload_size_mb=int(cfg.get('max_upload_size_mb', self.data_import.max_upload_size_mb)),
            default_platform_type=str(
                cfg.get('default_platform_type', self.data_import.default_platform_type)
            ).upper()
        )

    def _parse_logging(self) -> None:
        """Parse logging configuration"""
        cfg = self._section('logging')
        self.logging = LoggingConfig(
            level=str(cfg.get('level', 'INFO')).upper(),
            format=cfg.get('format', self.logging.format)
        )

    def _parse_api(self) -> None:
        """Parse API configuration"""
        cfg = self._section('api')
        self.api = ApiConfig(
            host=cfg.get('host', self.api.host),
            port=int(cfg.get('port', self.api.port)),
            cors_origins=cfg.get('cors_origins', self.api.cors_origins)
        )

    def _validate(self) -> None:
        """Validate configuration values"""
        if self.logging.level not in VALID_LOG_LEVELS:
            raise ConfigurationError(
                f"Invalid logging level '{self.logging.level}'. Expected one of {VALID_LOG_LEVELS}"
            )
        if self.data_import.default_platform_type not in VALID_PLATFORM_TYPES:
            raise ConfigurationError(
                f"Invalid default_platform_type '{self.data_import.default_platform_type}'. "
                f"Expected one of {VALID_PLATFORM_TYPES}"
            )
        if self.data_import.max_upload_size_mb <= 0:
            raise ConfigurationError("max_upload_size_mb must be positive")
        if not 0 < self.database.port < 65536:
            raise ConfigurationError(f"Invalid database port: {self.database.port}")

    def configure_logging(self) -> None:
        """Apply the logging section to the root logger"""
        logging.basicConfig(level=self.logging.level, format=self.logging.format)

    def to_dict(self) -> Dict[str, Any]:
        """Export configuration as dictionary (password masked)"""
        return {
            'database': {
                'host': self.database.host,
                'port': self.database.port,
                'user': self.database.user,
                'password': '***',
                'name': self.database.name,
                'pool_size': self.database.pool_size,
                'max_overflow': self.database.max_overflow
            },
            'import': {
                'sample_csv_path': self.data_import.sample_csv_path,
                'max_upload_size_mb': self.data_import.max_upload_size_mb,
                'default_platform_type': self.data_import.default_platform_type
            },
            'logging': {
                'level': self.logging.level,
                'format': self.logging.format
            },
            'api': {
                'host': self.api.host,
                'port': self.api.port,
                'cors_origins': self.api.cors_origins
            }
        }
