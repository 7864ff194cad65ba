from __future__ import annotations

import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from .errors import ConfigurationError


USER_AGENT = "MunicipalScanner/0.1 (+municipal minutes research)"


class ScannerConfig(BaseModel):
    project_id: Optional[str] = None
    confidence_threshold: float = Field(default=70, ge=0, le=100)
    chunk_size_tokens: int = Field(default=8000, gt=0)
    model: str = "x-ai/grok-4.1-fast"
    temperature: float = Field(default=0.3, ge=0, le=2)
    max_tokens: int = Field(default=4096, gt=0)
    request_delay_ms: int = Field(default=2000, ge=0)
    document_delay_ms: int = Field(default=1000, ge=0)
    request_timeout: float = Field(default=30.0, gt=0)
    max_documents: int = Field(default=50, gt=0)
    min_content_chars: int = Field(default=100, ge=0)
    date_range_months: int = Field(default=12, gt=0)
    country: str = "Canada"
    default_currency: str = "CAD"

    @property
    def max_text_chars(self) -> int:
        # 1 token is roughly 4 characters
        return self.chunk_size_tokens * 4


_ENV_FIELDS = {
    "project_id": "MSCAN_PROJECT_ID",
    "confidence_threshold": "MSCAN_CONFIDENCE_THRESHOLD",
    "chunk_size_tokens": "MSCAN_CHUNK_SIZE_TOKENS",
    "model": "MSCAN_MODEL",
    "temperature": "MSCAN_TEMPERATURE",
    "max_tokens": "MSCAN_MAX_TOKENS",
    "request_delay_ms": "MSCAN_REQUEST_DELAY_MS",
    "document_delay_ms": "MSCAN_DOCUMENT_DELAY_MS",
    "request_timeout": "MSCAN_REQUEST_TIMEOUT",
    "max_documents": "MSCAN_MAX_DOCUMENTS",
    "min_content_chars": "MSCAN_MIN_CONTENT_CHARS",
    "date_range_months": "MSCAN_DATE_RANGE_MONTHS",
    "country": "MSCAN_COUNTRY",
    "default_currency": "MSCAN_DEFAULT_CURRENCY",
}


def load_config(**overrides) -> ScannerConfig:
    """Build the scanner configuration from the environment (and ``.env``).

    Keyword overrides win over environment values; unset variables fall back
    to the model defaults.
    """
    try:
        load_dotenv()
    except Exception:
        pass

    values = {}
    for field, env_name in _ENV_FIELDS.items():
        raw = os.getenv(env_name)
        if raw is not None and raw.strip() != "":
            values[field] = raw.strip()
    values.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return ScannerConfig(**values)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid scanner configuration: {e}") from e
