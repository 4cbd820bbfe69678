from .base import SignedTx, Signer
from .factory import get_signer
from .local import LocalAccountSigner
from .remote_signer import RemoteSigner

__all__ = [
    "SignedTx",
    "Signer",
    "LocalAccountSigner",
    "RemoteSigner",
    "get_signer",
]
