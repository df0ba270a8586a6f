from __future__ import annotations


class EncryptedAttributeError(RuntimeError):
    """Base class for failures raised by the bundled engine and node store."""


class MalformedCiphertextError(EncryptedAttributeError):
    """Raised when a stored value is not a recognisable encrypted envelope."""


class DecryptionError(EncryptedAttributeError):
    """Raised when an envelope cannot be decrypted with the configured key."""


class NodeNotFoundError(EncryptedAttributeError):
    """Raised when a named node has no document in the node repository."""
