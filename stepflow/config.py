from pathlib import Path

from pydantic import BaseModel, Field
from dotenv import load_dotenv
import os

# Project root: parent of stepflow/
_PROJECT_ROOT = Path(__file__).resolve().parent.parent

load_dotenv(_PROJECT_ROOT / ".env")

_DEFAULT_CORS_ORIGINS = "http://localhost:5173,http://127.0.0.1:5173"


class Settings(BaseModel):
    control_endpoint: str = Field("ws://127.0.0.1:9222", alias="CONTROL_ENDPOINT")
    navigation_timeout_ms: int = Field(30000, alias="NAVIGATION_TIMEOUT_MS")
    navigation_wait_until: str = Field("domcontentloaded", alias="NAVIGATION_WAIT_UNTIL")
    probe_timeout_s: float = Field(2.0, alias="PROBE_TIMEOUT_S")
    database_path: str = Field("data/sqlite.db", alias="DATABASE_PATH")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_format: str = Field("text", alias="LOG_FORMAT")
    cors_origins: list[str] = Field(default_factory=list, alias="CORS_ORIGINS")
    proxy_timeout_s: float = Field(15.0, alias="PROXY_TIMEOUT_S")

    @classmethod
    def from_env(cls):
        data = {
            "CONTROL_ENDPOINT": os.getenv("CONTROL_ENDPOINT", "ws://127.0.0.1:9222"),
            "NAVIGATION_TIMEOUT_MS": os.getenv("NAVIGATION_TIMEOUT_MS", "30000"),
            "NAVIGATION_WAIT_UNTIL": os.getenv("NAVIGATION_WAIT_UNTIL", "domcontentloaded"),
            "PROBE_TIMEOUT_S": os.getenv("PROBE_TIMEOUT_S", "2.0"),
            "DATABASE_PATH": os.getenv("DATABASE_PATH", "data/sqlite.db"),
            "LOG_LEVEL": os.getenv("LOG_LEVEL", "INFO"),
            "LOG_FORMAT": os.getenv("LOG_FORMAT", "text"),
            "CORS_ORIGINS": os.getenv("CORS_ORIGINS", _DEFAULT_CORS_ORIGINS),
            "PROXY_TIMEOUT_S": os.getenv("PROXY_TIMEOUT_S", "15.0"),
        }
        data["CORS_ORIGINS"] = [o.strip() for o in str(data["CORS_ORIGINS"]).split(",") if o.strip()]  # type: ignore
        db_path = data["DATABASE_PATH"]
        if not Path(db_path).is_absolute():
            db_path = str(_PROJECT_ROOT / db_path)
        data["DATABASE_PATH"] = db_path
        data["LOG_FORMAT"] = str(data["LOG_FORMAT"]).lower()
        return cls(**data)  # type: ignore

    @property
    def probe_url(self) -> str:
        """HTTP form of the control endpoint, used for the /json/version probe."""
        endpoint = self.control_endpoint.rstrip("/")
        if endpoint.startswith("ws://"):
            return "http://" + endpoint[len("ws://"):]
        if endpoint.startswith("wss://"):
            return "https://" + endpoint[len("wss://"):]
        return endpoint


settings = Settings.from_env()
