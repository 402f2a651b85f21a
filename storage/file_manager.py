# storage/file_manager.py
"""Asynchronous JSON persistence for the project, settings and credential."""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import os
import tempfile
from typing import Any, Protocol

import structlog
from pydantic import ValidationError

from config import CREDENTIAL_FILE_PATH, PROJECT_FILE_PATH, SETTINGS_FILE_PATH
from core.errors import PersistenceError
from models import PipelineState, UserPreferences, utc_now

logger = structlog.get_logger(__name__)

FORMAT_VERSION = "1.0"


class PersistenceGateway(Protocol):
    """Storage used by the pipeline and the credential flow."""

    async def save_project(self, state: PipelineState) -> None: ...

    async def load_last_project(self) -> PipelineState | None: ...

    async def save_credential(self, secret: str) -> None: ...

    async def load_credential(self) -> str | None: ...

    async def save_settings(self, prefs: UserPreferences | dict[str, Any]) -> UserPreferences: ...

    async def load_settings(self) -> UserPreferences: ...


class FileManager:
    """Handle reading and writing BookForge state files."""

    def __init__(
        self,
        project_path: str = PROJECT_FILE_PATH,
        settings_path: str = SETTINGS_FILE_PATH,
        credential_path: str = CREDENTIAL_FILE_PATH,
    ) -> None:
        self.project_path = project_path
        self.settings_path = settings_path
        self.credential_path = credential_path

    async def _run(self, func: Any, *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    # --- Project ----------------------------------------------------------

    async def save_project(self, state: PipelineState) -> None:
        payload = state.model_dump(mode="json")
        payload["version"] = FORMAT_VERSION
        payload["last_modified"] = utc_now().isoformat()
        try:
            await self._run(self._write_json_sync, self.project_path, payload)
        except OSError as exc:
            logger.error("Could not save project.", path=self.project_path, error=str(exc))
            raise PersistenceError(f"Could not save project: {exc}") from exc
        logger.debug(
            "Project saved.",
            path=self.project_path,
            stage=state.stage.value,
            chapters=len(state.chapters),
        )

    async def load_last_project(self) -> PipelineState | None:
        data = await self._run(self._read_json_sync, self.project_path)
        if data is None:
            return None
        if not isinstance(data, dict):
            logger.error("Stored project is not an object.", path=self.project_path)
            return None
        data.pop("version", None)
        data.pop("last_modified", None)
        try:
            return PipelineState.model_validate(data)
        except ValidationError as exc:
            logger.error(
                "Stored project failed validation.",
                path=self.project_path,
                error=str(exc),
            )
            return None

    # --- Credential -------------------------------------------------------

    async def save_credential(self, secret: str) -> None:
        encoded = base64.b64encode(secret.encode("utf-8")).decode("ascii")
        await self._run(self._write_text_sync, self.credential_path, encoded)
        logger.info("Credential stored.", path=self.credential_path)

    async def load_credential(self) -> str | None:
        encoded = await self._run(self._read_text_sync, self.credential_path)
        if not encoded:
            return None
        try:
            return base64.b64decode(encoded.strip(), validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as exc:
            logger.error(
                "Stored credential could not be decoded.",
                path=self.credential_path,
                error=str(exc),
            )
            return None

    # --- Settings ---------------------------------------------------------

    async def save_settings(
        self, prefs: UserPreferences | dict[str, Any]
    ) -> UserPreferences:
        """Merge ``prefs`` over the stored settings and persist the result."""
        current = await self.load_settings()
        updates = (
            prefs.model_dump() if isinstance(prefs, UserPreferences) else dict(prefs)
        )
        merged = current.model_copy(
            update={k: v for k, v in updates.items() if k in UserPreferences.model_fields}
        )
        merged = UserPreferences.model_validate(merged.model_dump())
        await self._run(
            self._write_json_sync, self.settings_path, merged.model_dump(mode="json")
        )
        return merged

    async def load_settings(self) -> UserPreferences:
        """Stored settings merged over the defaults."""
        data = await self._run(self._read_json_sync, self.settings_path)
        if not isinstance(data, dict):
            return UserPreferences()
        merged = {**UserPreferences().model_dump(), **data}
        try:
            return UserPreferences.model_validate(merged)
        except ValidationError as exc:
            logger.error(
                "Stored settings failed validation.",
                path=self.settings_path,
                error=str(exc),
            )
            return UserPreferences()

    # --- Sync helpers -----------------------------------------------------

    def _write_json_sync(self, path: str, payload: Any) -> None:
        self._write_text_sync(path, json.dumps(payload, ensure_ascii=False, indent=2))

    def _write_text_sync(self, path: str, text: str) -> None:
        directory = os.path.dirname(path) or "."
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
            os.replace(tmp_path, path)
        except OSError:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def _read_text_sync(self, path: str) -> str | None:
        if not os.path.exists(path):
            return None
        try:
            with open(path, encoding="utf-8") as f:
                return f.read()
        except (OSError, UnicodeDecodeError) as exc:
            logger.error("Could not read file.", path=path, error=str(exc))
            return None

    def _read_json_sync(self, path: str) -> Any:
        text = self._read_text_sync(path)
        if text is None:
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            logger.error("File is not valid JSON.", path=path, error=str(exc))
            return None
