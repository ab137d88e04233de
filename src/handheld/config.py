from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .utils import stable_hash


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="HANDHELD_")

    strategy: Literal["naive", "speculative"] = "speculative"
    tie_break: Literal["lowest_index", "execution_order"] = "lowest_index"
    record_trace: bool = False
    log_level: str = "WARNING"
    log_json: bool = False
    bench_repeats: int = Field(default=5, ge=1)

    def settings_hash(self) -> str:
        return stable_hash(self.model_dump())
