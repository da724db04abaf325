from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    telegram_bot_token: str
    allowed_chat_ids: list[int] = []

    @field_validator("allowed_chat_ids", mode="before")
    @classmethod
    def parse_chat_ids(cls, v):
        if isinstance(v, str):
            return [int(x.strip()) for x in v.split(",") if x.strip()]
        if isinstance(v, int):
            return [v]
        return v

    db_path: str = "billminder.db"
    debug: bool = False
    health_check_port: int = 8080

    reminder_timezone: str = "Asia/Kolkata"
    reminder_hour: int = 9
    reminder_minute: int = 0
    default_reminder_days: str = "7,3,0"

    sweep_interval_minutes: int = 15
    sweep_lease_seconds: int = 600

    transport_timeout: float = 10.0
    twilio_account_sid: str = "dev_skip"
    twilio_auth_token: str | None = None
    twilio_from_number: str | None = None
    twilio_api_url: str = "https://api.twilio.com/2010-04-01"
    default_country_code: str = "91"

    @field_validator("reminder_hour")
    @classmethod
    def check_hour(cls, v: int) -> int:
        if not 0 <= v <= 23:
            raise ValueError("reminder_hour must be between 0 and 23")
        return v

    @field_validator("reminder_minute")
    @classmethod
    def check_minute(cls, v: int) -> int:
        if not 0 <= v <= 59:
            raise ValueError("reminder_minute must be between 0 and 59")
        return v


settings = Settings()
