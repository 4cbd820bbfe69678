from __future__ import annotations

from app.core.settings import Settings, SignerType

from .base import Signer
from .local import LocalAccountSigner
from .remote_signer import RemoteSigner


def get_signer(settings: Settings) -> Signer:
    """
    Select signer based on SIGNER_TYPE.

    Supported:
    - env_private_key (default): PRIVATE_KEY
    - keystore: KEYSTORE_PATH + KEYSTORE_PASSWORD
    - remote: SIGNER_REMOTE_URL
    """
    if settings.SIGNER_TYPE is SignerType.ENV_PRIVATE_KEY:
        return LocalAccountSigner.from_private_key(settings.PRIVATE_KEY)
    if settings.SIGNER_TYPE is SignerType.KEYSTORE:
        return LocalAccountSigner.from_keystore(settings.KEYSTORE_PATH, settings.KEYSTORE_PASSWORD)
    if settings.SIGNER_TYPE is SignerType.REMOTE:
        return RemoteSigner(settings.SIGNER_REMOTE_URL, timeout_sec=settings.REMOTE_SIGNER_TIMEOUT_SEC)
    raise ValueError(f"Unsupported SIGNER_TYPE: {settings.SIGNER_TYPE.value}")
