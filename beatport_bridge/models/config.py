"""
Pydantic model for application configuration.
Provides robust validation for all settings.
"""

from pydantic import BaseModel, Field, field_validator

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 1337
FALLBACK_PORTS = [8337, 1338, 1339, 7777]

# Download formats accepted by the service, with display metadata
QUALITY_MAP = {
    "flac": {"name": "FLAC Lossless", "short": "FLAC", "color": "green"},
    "wav": {"name": "WAV Uncompressed", "short": "WAV", "color": "cyan"},
    "aiff": {"name": "AIFF Uncompressed", "short": "AIFF", "color": "cyan"},
    "mp3": {"name": "MP3 320kbps", "short": "MP3 320", "color": "yellow"},
    "aac": {"name": "AAC 256kbps", "short": "AAC 256", "color": "yellow"},
}


def get_quality_info(quality: str) -> dict[str, str]:
    """Gets display information for a quality code from the central map."""
    return QUALITY_MAP.get(
        quality, {"name": "Unknown", "short": quality or "?", "color": "white"}
    )


def _validate_port(v: int) -> int:
    if v < 1 or v > 65535:
        raise ValueError(f"Port must be between 1 and 65535, but got: {v}")
    return v


class BridgeConfig(BaseModel):
    """A validated configuration model for the application."""

    # Service discovery
    service_host: str = DEFAULT_HOST
    service_port: int = DEFAULT_PORT
    fallback_ports: list[int] = Field(default_factory=lambda: list(FALLBACK_PORTS))

    # Download settings
    download_quality: str = "flac"
    notifications_enabled: bool = True

    # Diagnostics
    event_log: bool = False

    # Internal fields not loaded from INI file
    config_path: str = Field("", repr=False)

    class Config:
        """Pydantic model configuration."""

        validate_assignment = True
        str_strip_whitespace = True

    @field_validator("service_host")
    @classmethod
    def validate_host(cls, v: str) -> str:
        """Rejects empty hosts and hosts given as URLs."""
        if not v:
            raise ValueError("Service host cannot be empty.")
        if "://" in v or "/" in v:
            raise ValueError(
                f"Service host must be a bare host name, not a URL: {v!r}"
            )
        return v

    @field_validator("service_port")
    @classmethod
    def validate_service_port(cls, v: int) -> int:
        return _validate_port(v)

    @field_validator("fallback_ports")
    @classmethod
    def validate_fallback_ports(cls, v: list[int]) -> list[int]:
        """Validates each candidate port and drops duplicates, keeping order."""
        seen: list[int] = []
        for port in v:
            _validate_port(port)
            if port not in seen:
                seen.append(port)
        return seen

    @field_validator("download_quality")
    @classmethod
    def validate_quality(cls, v: str) -> str:
        v = v.lower()
        if v not in QUALITY_MAP:
            raise ValueError(
                f"Quality must be one of {', '.join(QUALITY_MAP)}, but got: {v!r}"
            )
        return v

    @property
    def base_url(self) -> str:
        return f"http://{self.service_host}:{self.service_port}"

    @classmethod
    def get_ini_keys(cls) -> set[str]:
        """Returns a set of all keys that are expected in the INI file."""
        internal_fields = {"config_path"}
        return {key for key in cls.model_fields if key not in internal_fields}
