"""Local symmetric engine for encrypted node attributes.

Values are JSON-encoded and sealed with a shared Fernet key. The envelope
records the search scope that was active when it was written; access control
based on that scope is left to engines that distribute per-client keys.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from typing import Any

from cryptography.fernet import Fernet, InvalidToken
from pydantic import ValidationError

from .canonical import to_canonical_json
from .errors import DecryptionError, MalformedCiphertextError
from .models import AttributePath, CiphertextEnvelope, EncryptedAttributesConfig
from .node_store import NodeRepository

logger = logging.getLogger(__name__)

_KEEP_CLEARTEXT = object()


def generate_key() -> str:
    return Fernet.generate_key().decode("ascii")


class FernetAttributeEngine:
    """Create, update and load Fernet-encrypted attribute envelopes."""

    def __init__(
        self,
        key: str | bytes,
        *,
        config: EncryptedAttributesConfig,
        repository: NodeRepository | None = None,
    ) -> None:
        raw_key = key.encode("ascii") if isinstance(key, str) else key
        try:
            self._fernet = Fernet(raw_key)
        except (ValueError, TypeError) as exc:
            raise ValueError("encryption key must be a url-safe base64-encoded 32-byte Fernet key") from exc
        self.config = config
        self.repository = repository

    def exist(self, ciphertext: Any) -> bool:
        """Return True when *ciphertext* is an envelope written by this engine."""
        if isinstance(ciphertext, CiphertextEnvelope):
            return True
        if not isinstance(ciphertext, Mapping):
            return False
        try:
            CiphertextEnvelope.model_validate(ciphertext)
        except ValidationError:
            return False
        return True

    def create(self, cleartext: Any) -> dict[str, Any]:
        envelope = self._seal(cleartext)
        logger.debug("Created encrypted attribute (client_search=%r)", envelope.client_search)
        return envelope.model_dump(mode="json")

    def update(self, ciphertext: Any, cleartext: Any = _KEEP_CLEARTEXT) -> dict[str, Any]:
        """Re-encrypt an existing envelope under the current search scope.

        Without *cleartext* the stored value is kept and only re-sealed.
        """
        envelope = self._parse(ciphertext)
        if cleartext is _KEEP_CLEARTEXT:
            cleartext = self._open(envelope)
        updated = self._seal(cleartext)
        logger.debug(
            "Updated encrypted attribute (client_search %r -> %r)",
            envelope.client_search,
            updated.client_search,
        )
        return updated.model_dump(mode="json")

    def load(self, ciphertext: Any) -> Any:
        return self._open(self._parse(ciphertext))

    def load_from_node(self, node_id: str, path: AttributePath | Sequence[str]) -> Any:
        if self.repository is None:
            raise RuntimeError("load_from_node requires a node repository")
        node = self.repository.require(node_id)
        logger.debug("Loading encrypted attribute %s from node %s", AttributePath.coerce(path), node_id)
        return self.load(node.get(path))

    def _seal(self, cleartext: Any) -> CiphertextEnvelope:
        payload = to_canonical_json(cleartext).encode("utf-8")
        token = self._fernet.encrypt(payload).decode("ascii")
        return CiphertextEnvelope(
            x_encrypted=True,
            cipher="fernet",
            version=1,
            client_search=self.config.client_search,
            token=token,
        )

    def _parse(self, ciphertext: Any) -> CiphertextEnvelope:
        if isinstance(ciphertext, CiphertextEnvelope):
            return ciphertext
        if not isinstance(ciphertext, Mapping):
            raise MalformedCiphertextError(
                f"expected an encrypted attribute envelope, got {type(ciphertext).__name__}"
            )
        try:
            return CiphertextEnvelope.model_validate(ciphertext)
        except ValidationError as exc:
            raise MalformedCiphertextError(f"invalid encrypted attribute envelope: {exc}") from exc

    def _open(self, envelope: CiphertextEnvelope) -> Any:
        try:
            payload = self._fernet.decrypt(envelope.token.encode("ascii"))
        except (InvalidToken, UnicodeEncodeError) as exc:
            raise DecryptionError("unable to decrypt attribute: wrong key or corrupted token") from exc
        return json.loads(payload.decode("utf-8"))
