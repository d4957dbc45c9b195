from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # JWT / Auth
    JWT_SECRET: str = Field(..., description="JWT signing secret")
    JWT_ALGO: str = Field("HS256", description="JWT signing algorithm")

    # Storage
    STORE_BACKEND: Literal["memory", "supabase"] = "memory"
    SUPABASE_URL: Optional[str] = None
    SUPABASE_KEY: Optional[str] = None
    MEDIA_BUCKET: str = Field("collection-media", description="Storage bucket for post media")

    @field_validator("JWT_ALGO")
    @classmethod
    def _jwt_algo_upper(cls, v: str) -> str:
        return (v or "HS256").upper()

    @model_validator(mode="after")
    def _supabase_credentials(self) -> "Settings":
        if self.STORE_BACKEND == "supabase" and not (self.SUPABASE_URL and self.SUPABASE_KEY):
            raise ValueError("SUPABASE_URL and SUPABASE_KEY are required when STORE_BACKEND=supabase")
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]
