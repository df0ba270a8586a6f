"""File-backed node attribute store.

Each node is one canonical JSON document ``<root>/<name>.json`` of the form
``{"name": ..., "attributes": {...}}``. Saves are atomic (temp file then
``os.replace``) and serialized across processes with an ``fcntl`` lock on a
``.lock`` sidecar file.
"""

from __future__ import annotations

import copy
import fcntl
import logging
import os
import re
import tempfile
from collections.abc import Iterator, Mapping, MutableMapping, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from .canonical import from_canonical_json, to_canonical_json
from .errors import NodeNotFoundError
from .models import AttributePath

logger = logging.getLogger(__name__)

_LOCK_SUFFIX = ".lock"
_NODE_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


@contextmanager
def _locked_file(path: Path) -> Iterator[None]:
    """Hold an exclusive lock on a node document for the duration of the context.

    The lock is taken on a ``.lock`` sidecar next to *path*, so the document
    itself can be swapped with ``os.replace`` while the lock is held.
    """
    lock_path = path.with_suffix(path.suffix + _LOCK_SUFFIX)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    with lock_path.open("a+", encoding="utf-8") as lock_handle:
        fcntl.flock(lock_handle.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(lock_handle.fileno(), fcntl.LOCK_UN)


def _atomic_write_text(path: Path, content: str) -> None:
    """Replace the node document at *path* with *content* in one step.

    The content is written and fsynced to a temporary file in the same
    directory, then renamed over *path*, so a reader never sees a half-written
    node.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as tmp_handle:
            tmp_handle.write(content)
            tmp_handle.flush()
            os.fsync(tmp_handle.fileno())
        os.replace(tmp_path, str(path))
    except BaseException:
        # No temp file may outlive a failed write.
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def validate_node_name(name: str) -> str:
    if not _NODE_NAME_RE.match(name or ""):
        raise ValueError(f"node name must contain filesystem-safe characters, got: {name!r}")
    return name


class NodeAttributes:
    """Hierarchical attribute tree of a single node."""

    def __init__(
        self,
        name: str,
        data: Mapping[str, Any] | None = None,
        *,
        repository: "NodeRepository | None" = None,
    ) -> None:
        self.name = validate_node_name(name)
        self._data: dict[str, Any] = copy.deepcopy(dict(data)) if data is not None else {}
        self.repository = repository

    def get(self, path: AttributePath | Sequence[str]) -> Any:
        """Return the value at *path*, or ``None`` when any segment is missing."""
        current: Any = self._data
        for segment in AttributePath.coerce(path):
            if not isinstance(current, Mapping) or segment not in current:
                return None
            current = current[segment]
        return current

    def set(self, path: AttributePath | Sequence[str], value: Any) -> None:
        """Store *value* at *path*, creating intermediate mappings as needed.

        Raises:
            ValueError: If an intermediate segment already holds a non-mapping value.
        """
        attribute_path = AttributePath.coerce(path)
        current: MutableMapping[str, Any] = self._data
        walked: list[str] = []
        for segment in attribute_path.parent:
            walked.append(segment)
            child = current.get(segment)
            if child is None:
                child = {}
                current[segment] = child
            elif not isinstance(child, MutableMapping):
                raise ValueError(
                    f"cannot set {attribute_path} on node {self.name}: "
                    f"{'.'.join(walked)} holds a {type(child).__name__}"
                )
            current = child
        current[attribute_path.leaf] = value

    def save(self) -> Path:
        if self.repository is None:
            raise RuntimeError(f"node {self.name} is not attached to a repository and cannot be saved")
        return self.repository.save(self)

    def to_dict(self) -> dict[str, Any]:
        return copy.deepcopy(self._data)

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __repr__(self) -> str:
        return f"NodeAttributes(name={self.name!r}, keys={sorted(self._data)!r})"


class NodeRepository:
    """Directory of node documents keyed by node name."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)

    def path_for(self, name: str) -> Path:
        return self.root / f"{validate_node_name(name)}.json"

    def exists(self, name: str) -> bool:
        return self.path_for(name).is_file()

    def names(self) -> list[str]:
        return sorted(path.stem for path in self.root.glob("*.json"))

    def load(self, name: str) -> NodeAttributes:
        """Load a node, returning an empty attribute tree when none is stored yet."""
        path = self.path_for(name)
        if not path.is_file():
            logger.debug("No document for node %s at %s; starting empty", name, path)
            return NodeAttributes(name, repository=self)
        return self._read(name, path)

    def require(self, name: str) -> NodeAttributes:
        """Load a node that must already exist.

        Raises:
            NodeNotFoundError: If the node has no document.
        """
        path = self.path_for(name)
        if not path.is_file():
            raise NodeNotFoundError(f"node not found: {name} (looked in {self.root})")
        return self._read(name, path)

    def save(self, node: NodeAttributes) -> Path:
        path = self.path_for(node.name)
        document = {"name": node.name, "attributes": node.to_dict()}
        with _locked_file(path):
            _atomic_write_text(path, to_canonical_json(document) + "\n")
        logger.info("Saved node %s to %s", node.name, path)
        return path

    def _read(self, name: str, path: Path) -> NodeAttributes:
        try:
            text = path.read_text(encoding="utf-8")
        except UnicodeDecodeError as exc:
            raise ValueError(f"node document at {path} contains invalid UTF-8 data") from exc
        if not text.strip():
            raise ValueError(f"node document at {path} is empty")
        try:
            document = from_canonical_json(text)
        except ValueError as exc:
            raise ValueError(f"node document at {path} is not valid JSON: {exc}") from exc
        if not isinstance(document, dict) or not isinstance(document.get("attributes"), dict):
            raise ValueError(f"node document at {path} must be an object with an 'attributes' object")
        stored_name = document.get("name")
        if stored_name != name:
            raise ValueError(f"node document at {path} belongs to {stored_name!r}, expected {name!r}")
        return NodeAttributes(name, document["attributes"], repository=self)
