from dataclasses import dataclass
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

from env_utils import env_flag, env_float, env_str

DEFAULT_MODEL = "gemini-2.5-flash"
DEFAULT_TIMEZONE = "America/Sao_Paulo"
DEFAULT_LOCATION = "europe-west1"


@dataclass(frozen=True)
class Settings:
    model_name: str = DEFAULT_MODEL
    google_api_key: str | None = None
    gcp_project_id: str | None = None
    gcp_location: str = DEFAULT_LOCATION
    timezone_name: str = DEFAULT_TIMEZONE
    telegram_token: str | None = None
    telegram_chat_id: str | None = None
    send_ack: bool = True
    generation_timeout: float = 30.0
    storage_timeout: float = 10.0
    notify_timeout: float = 10.0

    @property
    def timezone(self):
        return ZoneInfo(self.timezone_name)


def load_settings():
    """Read the service settings from the environment (and a local .env)."""
    load_dotenv()
    return Settings(
        model_name=env_str("AGENT_MODEL", DEFAULT_MODEL),
        google_api_key=env_str("GOOGLE_API_KEY"),
        gcp_project_id=env_str("GCP_PROJECT_ID") or env_str("GOOGLE_CLOUD_PROJECT"),
        gcp_location=env_str("GCP_LOCATION", DEFAULT_LOCATION),
        timezone_name=env_str("AGENT_TIMEZONE", DEFAULT_TIMEZONE),
        telegram_token=env_str("TELEGRAM_TOKEN"),
        telegram_chat_id=env_str("TELEGRAM_CHAT_ID"),
        send_ack=env_flag("AGENT_SEND_ACK", True),
        generation_timeout=env_float("GENERATION_TIMEOUT_SECONDS", 30.0),
        storage_timeout=env_float("STORAGE_TIMEOUT_SECONDS", 10.0),
        notify_timeout=env_float("NOTIFY_TIMEOUT_SECONDS", 10.0),
    )
