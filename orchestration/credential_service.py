# orchestration/credential_service.py
"""Configure and restore the API credential."""

from __future__ import annotations

import structlog
from config import settings

from core.errors import BookForgeError, InvalidCredentialError
from core.llm_interface import LLMService
from orchestration.models import CredentialStatus
from storage.file_manager import PersistenceGateway

logger = structlog.get_logger(__name__)


async def _probe(
    dispatcher: LLMService,
    gateway: PersistenceGateway,
    key: str,
    allow_unverified: bool,
) -> CredentialStatus:
    try:
        await dispatcher.test_api_key()
    except BookForgeError as exc:
        if not allow_unverified:
            raise
        logger.warning(
            "API key could not be verified; saving anyway.", error=exc.message
        )
        await gateway.save_credential(key)
        return CredentialStatus.SAVED_UNVERIFIED
    await gateway.save_credential(key)
    return CredentialStatus.VERIFIED


async def configure_credential(
    dispatcher: LLMService,
    gateway: PersistenceGateway,
    key: str,
    allow_unverified: bool | None = None,
) -> CredentialStatus:
    """Apply ``key``, probe it and store it.

    A key that fails the format check is never stored. A key that fails the
    probe is stored only when unverified keys are allowed.
    """
    allow = (
        settings.ALLOW_UNVERIFIED_CREDENTIAL
        if allow_unverified is None
        else allow_unverified
    )
    dispatcher.set_api_key(key)
    return await _probe(dispatcher, gateway, dispatcher.api_key or key, allow)


async def restore_credential(
    dispatcher: LLMService, gateway: PersistenceGateway
) -> CredentialStatus:
    """Load the stored key (or the environment key) into ``dispatcher``."""
    key = await gateway.load_credential()
    from_environment = False
    if not key and settings.OPENAI_API_KEY:
        key = settings.OPENAI_API_KEY
        from_environment = True
    if not key:
        return CredentialStatus.MISSING
    try:
        dispatcher.set_api_key(key)
    except InvalidCredentialError as exc:
        logger.error("Stored API key is malformed.", error=exc.message)
        return CredentialStatus.MISSING
    if from_environment:
        logger.info("Using API key from environment.")
    try:
        await dispatcher.test_api_key()
    except BookForgeError as exc:
        logger.warning("Restored API key could not be verified.", error=exc.message)
        if from_environment:
            await gateway.save_credential(dispatcher.api_key or key)
        return CredentialStatus.SAVED_UNVERIFIED
    if from_environment:
        await gateway.save_credential(dispatcher.api_key or key)
    return CredentialStatus.VERIFIED
