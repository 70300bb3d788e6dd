"""
Runtime settings loaded from the environment (and an optional .env file).

Environment:
    DATABASE_URL                    PostgreSQL DSN for the keyset store
    KEYSET_AGILITY_LOG_LEVEL        logging level name (default INFO)
    KEYSET_AGILITY_LOCAL_KMS_KEY    base64 32-byte master key for local KMS
    KEYSET_AGILITY_LOCAL_KMS_URI    URI served by the local KMS
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from dotenv import load_dotenv

from .errors import ConfigError

DEFAULT_LOCAL_KMS_URI = "local-kms://default"


@dataclass(frozen=True)
class Settings:
    database_url: Optional[str] = None
    log_level: int = logging.INFO
    local_kms_key: Optional[bytes] = None
    local_kms_uri: str = DEFAULT_LOCAL_KMS_URI

    def __repr__(self) -> str:
        key = "[REDACTED]" if self.local_kms_key is not None else None
        return (
            f"Settings(database_url={'[SET]' if self.database_url else None}, "
            f"log_level={logging.getLevelName(self.log_level)}, "
            f"local_kms_key={key}, local_kms_uri={self.local_kms_uri!r})"
        )


def load_settings(env_file: Optional[Union[str, Path]] = None) -> Settings:
    """
    Load settings from the environment.

    Args:
        env_file: Optional .env file; values already in the environment win

    Raises:
        ConfigError: If a value is present but invalid
    """
    if env_file is not None:
        load_dotenv(env_file)
    else:
        load_dotenv()

    level_name = os.environ.get("KEYSET_AGILITY_LOG_LEVEL", "INFO").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        raise ConfigError(f"Invalid log level: {level_name}")

    local_kms_key: Optional[bytes] = None
    encoded = os.environ.get("KEYSET_AGILITY_LOCAL_KMS_KEY")
    if encoded:
        try:
            local_kms_key = base64.standard_b64decode(encoded.encode("ascii"))
        except (binascii.Error, UnicodeEncodeError) as e:
            raise ConfigError(f"KEYSET_AGILITY_LOCAL_KMS_KEY is not valid base64: {e}")
        if len(local_kms_key) != 32:
            raise ConfigError(
                f"KEYSET_AGILITY_LOCAL_KMS_KEY must decode to 32 bytes, got {len(local_kms_key)}"
            )

    return Settings(
        database_url=os.environ.get("DATABASE_URL") or None,
        log_level=level,
        local_kms_key=local_kms_key,
        local_kms_uri=os.environ.get("KEYSET_AGILITY_LOCAL_KMS_URI", DEFAULT_LOCAL_KMS_URI),
    )
