"""
Pydantic model for application configuration.
Provides robust validation for all settings.
"""

from pydantic import BaseModel, Field, field_validator

MAX_DOWNLOAD_THREADS = 10
MIN_SILENCE_THRESHOLD_DB = 10
MAX_SILENCE_THRESHOLD_DB = 80

# Audio formats yt-dlp can extract to, mapped to display metadata
AUDIO_FORMATS = {
    "m4a": {"name": "AAC (M4A)", "color": "cyan"},
    "mp3": {"name": "MP3", "color": "yellow"},
    "opus": {"name": "Opus", "color": "magenta"},
    "flac": {"name": "FLAC", "color": "green"},
    "wav": {"name": "WAV", "color": "white"},
    "vorbis": {"name": "Ogg Vorbis", "color": "blue"},
}


def clamp_threshold_db(value: int | float) -> int:
    """Clamps a silence threshold into the supported dB range."""
    return int(min(MAX_SILENCE_THRESHOLD_DB, max(MIN_SILENCE_THRESHOLD_DB, value)))


class DownloadConfig(BaseModel):
    """A validated configuration model for the application."""

    # Catalog API
    spotify_client_id: str = ""
    spotify_client_secret: str = ""

    # Download Settings
    downloads_path: str
    download_threads: int = 3
    audio_format: str = "m4a"
    normalize_volume: bool = False
    ytdlp_paths: list[str] = Field(default_factory=list)
    ffmpeg_location: str = ""
    verify_downloads: bool = True

    # Link Resolution
    duration_tolerance_seconds: int = 20
    skip_manual_link_prompt: bool = False

    # Library
    playlists_path: str = ""
    silence_trim_threshold_db: int = 35

    # Internal fields not loaded from INI file
    config_path: str = Field(..., repr=False)
    source_urls: list[str] = Field(default_factory=list, repr=False)

    class Config:
        """Pydantic model configuration."""

        validate_assignment = True
        str_strip_whitespace = True

    @field_validator("download_threads")
    @classmethod
    def validate_threads(cls, v: int) -> int:
        """Ensures a reasonable number of download threads."""
        if v < 1 or v > MAX_DOWNLOAD_THREADS:
            raise ValueError(
                f"Download threads must be between 1 and {MAX_DOWNLOAD_THREADS}."
            )
        return v

    @field_validator("audio_format")
    @classmethod
    def validate_audio_format(cls, v: str) -> str:
        v = v.lower().lstrip(".")
        if v not in AUDIO_FORMATS:
            raise ValueError(
                f"Audio format must be one of: {', '.join(AUDIO_FORMATS)}."
            )
        return v

    @field_validator("duration_tolerance_seconds")
    @classmethod
    def validate_tolerance(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Duration tolerance cannot be negative.")
        return v

    @field_validator("silence_trim_threshold_db")
    @classmethod
    def validate_threshold(cls, v: int) -> int:
        """Clamps the threshold instead of rejecting out-of-range values."""
        return clamp_threshold_db(v)

    @field_validator("downloads_path")
    @classmethod
    def validate_downloads_path(cls, v: str) -> str:
        if not v:
            raise ValueError("Downloads path cannot be empty.")
        return v

    @property
    def duration_tolerance_ms(self) -> int:
        return self.duration_tolerance_seconds * 1000

    @property
    def has_catalog_credentials(self) -> bool:
        return bool(self.spotify_client_id and self.spotify_client_secret)

    @classmethod
    def get_ini_keys(cls) -> set[str]:
        """Returns a set of all keys that are expected in the INI file."""
        internal_fields = {"config_path", "source_urls"}
        return {key for key in cls.model_fields if key not in internal_fields}
