import os
from typing import Optional

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel


def parse_id_list(raw: Optional[str]) -> list[int]:
    if not raw:
        return []
    return [int(part) for part in raw.split(",") if part.strip()]


class Settings(BaseModel):
    bot_token: Optional[str] = None
    redis_url: str = "redis://localhost:6379/0"
    public_domain: Optional[str] = None
    whitelist: list[int] = []
    skip_delay_seconds: int = 30
    log_level: str = "INFO"
    port: int = 8000

    @property
    def webhook_path(self) -> str:
        return f"/webhook/{self.bot_token}"

    @property
    def webhook_url(self) -> Optional[str]:
        if not (self.public_domain and self.bot_token):
            return None
        return f"https://{self.public_domain}{self.webhook_path}"

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv(find_dotenv(usecwd=True))

        return cls(
            bot_token=os.getenv("BOT_TOKEN") or None,
            redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
            public_domain=os.getenv("PUBLIC_DOMAIN")
            or os.getenv("RAILWAY_PUBLIC_DOMAIN"),
            whitelist=parse_id_list(os.getenv("WHITELIST")),
            skip_delay_seconds=int(os.getenv("SKIP_DELAY_SECONDS", "30")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            port=int(os.getenv("PORT", "8000")),
        )
