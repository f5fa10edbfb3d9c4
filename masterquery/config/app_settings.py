from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, JsonConfigSettingsSource, SettingsConfigDict

from masterquery.util.logging_helper import level_from_name


class MasterServerSettings(BaseModel):
    """Master server address and query pacing."""

    host: str = Field(default="hl2master.steampowered.com")
    port: int = Field(default=27011, gt=0, lt=65536)
    timeout: float = Field(default=300.0, gt=0)  # Seconds to wait for each response
    max_filter_length: int = Field(default=190, gt=0)  # Byte budget for the filters in one packet
    retry_count: int = Field(default=4, ge=0)  # Continuation retries after the first attempt
    retry_delay: float = Field(default=2.0, ge=0)  # Seconds between continuation requests
    region: int = Field(default=0xFF, ge=0, le=0xFF)

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"


class LoggingSettings(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)")

    @field_validator("level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level_from_name(value)
        return value.upper()


class AppSettings(BaseSettings):
    master: MasterServerSettings = Field(default_factory=MasterServerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    model_config = SettingsConfigDict(
        json_file="config.json",  # resolved against the working directory at load time
        json_file_encoding="utf-8",
        env_prefix="MASTERQUERY_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            JsonConfigSettingsSource(settings_cls),
            env_settings,
            init_settings,
            dotenv_settings,
            file_secret_settings,
        )


app_config = AppSettings()
