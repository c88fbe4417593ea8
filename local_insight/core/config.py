from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Upstream open-data services
    POSTCODES_BASE_URL: str = "https://api.postcodes.io"
    EA_BASE_URL: str = "https://environment.data.gov.uk"
    FLOOD_BASE_URL: str = "https://environment.data.gov.uk/flood-monitoring"
    BATHING_WATER_LIST_URL: str = "https://environment.data.gov.uk/doc/bathing-water.json"
    POLICE_BASE_URL: str = "https://data.police.uk/api"
    ONS_ORIGIN: str = "https://api.beta.ons.gov.uk"
    ONS_BASE_URL: str = "https://api.beta.ons.gov.uk/v1"

    # Fetching and caching
    REQUEST_TIMEOUT_SECONDS: float = 15.0
    DEFAULT_STALE_TIME_SECONDS: float = 60.0
    OPTIONS_STALE_TIME_SECONDS: float = 300.0
    SEARCH_RADIUS_KM: float = 15.0
    ONS_OPTIONS_LIMIT: int = 50

    # Proxy relay
    PROXY_USER_AGENT: str = "uk-local-insight/1.0"

    # Where the last used postcode is kept (memory only when unset)
    PREFERENCE_FILE: Optional[str] = None

    LOG_LEVEL: str = "INFO"

    # This tells Pydantic to read from the .env file
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Create a single instance of the settings to use everywhere
settings = Settings()
