"""Read and write node attributes that may be transparently encrypted.

``EncryptedAttributes`` decides whether encryption applies to a call and, for
writes, whether the stored ciphertext has to be created or updated. The
cryptography, the attribute storage and the activation of the engine's
dependency are supplied by the caller::

    attrs = EncryptedAttributes(node, engine, activate=importlib.import_module)
    password = attrs.write(["ftp", "password"], lambda: secrets.token_urlsafe(24))
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Any, Protocol

from .models import DEV_MODE_PATH, AttributePath, EnablementState, EncryptedAttributesConfig

logger = logging.getLogger(__name__)

PathLike = AttributePath | Sequence[str]


class AttributeEngine(Protocol):
    """Encryption engine operating on opaque ciphertext values."""

    def load(self, ciphertext: Any) -> Any:  # noqa: ANN401 - engine-defined value types.
        ...

    def load_from_node(self, node_id: str, path: AttributePath) -> Any:  # noqa: ANN401
        ...

    def exist(self, ciphertext: Any) -> bool:  # noqa: ANN401
        ...

    def create(self, cleartext: Any) -> Any:  # noqa: ANN401
        ...

    def update(self, ciphertext: Any, cleartext: Any = ...) -> Any:  # noqa: ANN401
        ...


class AttributeStore(Protocol):
    """Hierarchical node attribute store."""

    def get(self, path: AttributePath) -> Any:  # noqa: ANN401
        ...

    def set(self, path: AttributePath, value: Any) -> None:  # noqa: ANN401
        ...

    def save(self) -> object:
        ...


class ActivationGate:
    """Activate the engine's dependency module once, on first use."""

    def __init__(self, activate: Callable[[str], object], dependency: str) -> None:
        if not dependency or not dependency.strip():
            raise ValueError("dependency must be non-empty")
        self._activate = activate
        self.dependency = dependency
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    def ensure_active(self) -> None:
        if self._active:
            return
        logger.debug("Activating encryption dependency %s", self.dependency)
        self._activate(self.dependency)
        self._active = True


class EncryptedAttributes:
    """Encrypted attribute lifecycle for one node during one configuration run."""

    def __init__(
        self,
        store: AttributeStore,
        engine: AttributeEngine,
        *,
        activate: Callable[[str], object],
        config: EncryptedAttributesConfig | None = None,
    ) -> None:
        self.store = store
        self.engine = engine
        if config is None:
            # Share the engine's config so allow() reaches create/update.
            config = getattr(engine, "config", None)
        self.config = config if isinstance(config, EncryptedAttributesConfig) else EncryptedAttributesConfig()
        self.gate = ActivationGate(activate, self.config.dependency)
        self._state = EnablementState.UNSET

    @property
    def enablement_state(self) -> EnablementState:
        return self._state

    def set_enabled(self, flag: bool | None) -> None:
        """Force encryption on (``True``) or off (``False``); ``None`` restores the policy."""
        self._state = EnablementState.from_flag(flag)

    def enabled(self) -> bool:
        """Return whether encrypted attributes are in effect for this run.

        An explicit override always wins. Otherwise encryption is off in local
        mode and on nodes flagged with a truthy ``dev_mode`` attribute.
        """
        if self._state is EnablementState.ENABLED:
            return True
        if self._state is EnablementState.DISABLED:
            return False
        if self.config.local_mode:
            return False
        if self.store.get(DEV_MODE_PATH):
            return False
        return True

    def allow(self, query: str) -> None:
        """Set the search query selecting which clients may decrypt new values."""
        self.config.client_search = query
        logger.info("Encrypted attribute search scope set to %r", query)

    def read(self, path: PathLike) -> Any:
        """Return the cleartext at *path*, or the raw stored value when encryption is off."""
        attribute_path = AttributePath.coerce(path)
        if not self.enabled():
            logger.debug("Reading %s without decryption", attribute_path)
            return self.store.get(attribute_path)
        self.gate.ensure_active()
        return self.engine.load(self.store.get(attribute_path))

    def read_from_node(self, node_id: str, path: PathLike) -> Any:
        """Return a value decrypted from another node.

        Returns ``None`` when encryption is off: another node's raw value is
        not reachable from here.
        """
        attribute_path = AttributePath.coerce(path)
        if not self.enabled():
            logger.debug("Skipping %s on node %s: encrypted attributes disabled", attribute_path, node_id)
            return None
        self.gate.ensure_active()
        return self.engine.load_from_node(node_id, attribute_path)

    def write(self, path: PathLike, computation: Callable[[], Any]) -> Any:
        """Store the value produced by *computation* at *path* and return its cleartext.

        *computation* runs exactly once. When encryption is on and *path* holds
        no ciphertext yet, a new one is created and the node is saved; when a
        ciphertext exists it is updated and the returned cleartext is read
        back from the updated ciphertext.

        Collaborator errors propagate unchanged and nothing is rolled back.
        """
        attribute_path = AttributePath.coerce(path)
        if not self.enabled():
            value = computation()
            self.store.set(attribute_path, value)
            logger.debug("Wrote %s without encryption", attribute_path)
            return value

        self.gate.ensure_active()
        current = self.store.get(attribute_path)
        if not self.engine.exist(current):
            value = computation()
            self.store.set(attribute_path, self.engine.create(value))
            self.store.save()
            logger.info("Created encrypted attribute %s", attribute_path)
            return value

        value = computation()
        result = self.engine.update(current, value)
        # Engines either update in place and report a status, or hand back a new ciphertext.
        if not isinstance(result, bool):
            self.store.set(attribute_path, result)
            self.store.save()
        logger.info("Updated encrypted attribute %s", attribute_path)
        return self.engine.load(self.store.get(attribute_path))
