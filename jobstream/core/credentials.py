from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Callable

from jobstream.core.config import Settings

logger = logging.getLogger(__name__)

CredentialProvider = Callable[[], str | None]


class StaticCredentialProvider:
    def __init__(self, token: str | None):
        self._token = token

    def __call__(self) -> str | None:
        return self._token


class FileCredentialProvider:
    """Reads the access token from a JSON session file on every call.

    The file holds the logged-in user payload, e.g. ``{"accessToken": "..."}``.
    Whatever refreshes the session rewrites the file; the next connect attempt
    picks the new token up because nothing is cached here.
    """

    def __init__(self, path: Path, *, field: str = "accessToken"):
        self._path = path
        self._field = field

    def __call__(self) -> str | None:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Credential file %s could not be read: %s", self._path.as_posix(), exc)
            return None
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Credential file %s is not valid JSON", self._path.as_posix())
            return None
        if not isinstance(payload, dict):
            return None
        token = payload.get(self._field)
        if not isinstance(token, str) or not token.strip():
            return None
        return token


def credential_provider_from_settings(settings: Settings) -> CredentialProvider:
    if settings.credential_file is not None:
        return FileCredentialProvider(settings.credential_file)
    return StaticCredentialProvider(settings.access_token)
