from __future__ import annotations
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Optional, List
from dotenv import load_dotenv
load_dotenv()  # populates os.environ from .env


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Ordering backend
    api_base_url: str = Field("http://localhost:4458")
    api_timeout_s: float = Field(30.0, gt=0)
    api_token: Optional[str] = Field(None, description="Bearer token forwarded to the backend")

    # Order/Bowl provisioning
    pickup_lead_minutes: int = Field(60, ge=0)
    default_bowl_name: str = Field("Healthy Bowl")

    # Catalog
    template_page_size: int = Field(200, ge=1)

    # Storage
    data_dir: str = Field("data")
    store_selection_file: str = Field("data/store_selection.json")
    metrics_file: str = Field("latency_log.jsonl")

    log_level: str = Field("INFO")

    # CORS
    cors_allow_origins: List[str] = Field(default_factory=lambda: ["http://127.0.0.1:3000"])
