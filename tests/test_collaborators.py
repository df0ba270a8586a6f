from __future__ import annotations

import json
from pathlib import Path

import pytest
from cryptography.fernet import Fernet

from encrypted_attributes import (
    AttributePath,
    DecryptionError,
    EncryptedAttributes,
    EncryptedAttributesConfig,
    FernetAttributeEngine,
    MalformedCiphertextError,
    NodeAttributes,
    NodeNotFoundError,
    NodeRepository,
    RuntimeSettings,
    generate_key,
    to_canonical_json,
)


@pytest.fixture
def repository(tmp_path: Path) -> NodeRepository:
    return NodeRepository(tmp_path / "nodes")


@pytest.fixture
def config() -> EncryptedAttributesConfig:
    return EncryptedAttributesConfig()


@pytest.fixture
def engine(repository: NodeRepository, config: EncryptedAttributesConfig) -> FernetAttributeEngine:
    return FernetAttributeEngine(generate_key(), config=config, repository=repository)


def test_attribute_path_validation() -> None:
    assert AttributePath.parse("ftp.password") == AttributePath(("ftp", "password"))
    assert str(AttributePath.of(["a", "b"])) == "a.b"
    with pytest.raises(ValueError):
        AttributePath(())
    with pytest.raises(ValueError):
        AttributePath.parse("ftp..password")
    with pytest.raises(TypeError):
        AttributePath.of("ftp")


def test_attribute_path_segments_are_not_normalized() -> None:
    assert AttributePath.of(["FTP", "password"]) != AttributePath.of(["ftp", "password"])


def test_canonical_json_is_order_independent() -> None:
    left = {"b": 2, "a": 1, "nested": {"z": 9, "y": [3, 2, 1]}}
    right = {"nested": {"y": [3, 2, 1], "z": 9}, "a": 1, "b": 2}
    assert to_canonical_json(left) == to_canonical_json(right)


def test_canonical_json_rejects_bytes() -> None:
    with pytest.raises(TypeError):
        to_canonical_json({"key": b"raw"})


def test_node_attributes_get_and_set() -> None:
    node = NodeAttributes("web1")
    assert node.get(["ftp", "password"]) is None
    node.set(["ftp", "password"], "secret")
    assert node.get(["ftp", "password"]) == "secret"
    assert node["ftp"] == {"password": "secret"}
    with pytest.raises(ValueError, match="ftp.password"):
        node.set(["ftp", "password", "inner"], "x")


def test_node_attributes_without_repository_cannot_save() -> None:
    with pytest.raises(RuntimeError):
        NodeAttributes("web1").save()


def test_node_name_must_be_filesystem_safe(repository: NodeRepository) -> None:
    with pytest.raises(ValueError):
        repository.load("../etc/passwd")


def test_repository_round_trip(repository: NodeRepository) -> None:
    node = repository.load("web1")
    assert node.to_dict() == {}
    node.set(["ftp", "user"], "admin")
    path = node.save()
    assert path == repository.path_for("web1")
    assert json.loads(path.read_text(encoding="utf-8")) == {"name": "web1", "attributes": {"ftp": {"user": "admin"}}}
    assert repository.load("web1").get(["ftp", "user"]) == "admin"
    assert repository.names() == ["web1"]


def test_repository_require_missing_node(repository: NodeRepository) -> None:
    with pytest.raises(NodeNotFoundError):
        repository.require("ghost")


def test_repository_rejects_mismatched_document(repository: NodeRepository) -> None:
    repository.path_for("web1").write_text('{"name": "web2", "attributes": {}}', encoding="utf-8")
    with pytest.raises(ValueError, match="belongs to"):
        repository.load("web1")


def test_engine_create_and_load(engine: FernetAttributeEngine, config: EncryptedAttributesConfig) -> None:
    config.client_search = "role:ftp"
    envelope = engine.create({"user": "admin", "password": "s3Cr3T"})
    assert envelope["x_encrypted"] is True
    assert envelope["client_search"] == "role:ftp"
    assert "s3Cr3T" not in envelope["token"]
    assert engine.exist(envelope) is True
    assert engine.load(envelope) == {"user": "admin", "password": "s3Cr3T"}


@pytest.mark.parametrize("value", [None, "s3Cr3T", 42, {"token": "abc"}, {"x_encrypted": True}])
def test_engine_exist_is_false_for_non_envelopes(engine: FernetAttributeEngine, value: object) -> None:
    assert engine.exist(value) is False


def test_engine_update_keeps_or_replaces_value(engine: FernetAttributeEngine, config: EncryptedAttributesConfig) -> None:
    original = engine.create("old")
    config.client_search = "role:db"
    rekeyed = engine.update(original)
    assert rekeyed["client_search"] == "role:db"
    assert engine.load(rekeyed) == "old"
    replaced = engine.update(rekeyed, "new")
    assert engine.load(replaced) == "new"
    nulled = engine.update(replaced, None)
    assert engine.load(nulled) is None


def test_engine_load_errors(engine: FernetAttributeEngine, repository: NodeRepository) -> None:
    with pytest.raises(MalformedCiphertextError):
        engine.load("plain text")
    foreign = FernetAttributeEngine(
        Fernet.generate_key(),
        config=EncryptedAttributesConfig(),
        repository=repository,
    ).create("s3Cr3T")
    with pytest.raises(DecryptionError):
        engine.load(foreign)


def test_engine_rejects_invalid_key(config: EncryptedAttributesConfig) -> None:
    with pytest.raises(ValueError):
        FernetAttributeEngine("not-a-key", config=config)


def test_engine_load_from_node(engine: FernetAttributeEngine, repository: NodeRepository) -> None:
    other = repository.load("db1")
    other.set(["mysql", "root"], engine.create("r00t"))
    other.save()
    assert engine.load_from_node("db1", AttributePath.of(["mysql", "root"])) == "r00t"
    with pytest.raises(NodeNotFoundError):
        engine.load_from_node("ghost", ["mysql", "root"])


def test_orchestrator_with_bundled_collaborators(
    engine: FernetAttributeEngine,
    repository: NodeRepository,
    config: EncryptedAttributesConfig,
) -> None:
    node = repository.load("web1")
    helpers = EncryptedAttributes(node, engine, activate=lambda _name: None, config=config)
    helpers.allow("role:web")

    assert helpers.write(["ftp", "password"], lambda: "first") == "first"
    stored = repository.load("web1").get(["ftp", "password"])
    assert engine.exist(stored)
    assert stored["client_search"] == "role:web"
    assert helpers.read(["ftp", "password"]) == "first"

    assert helpers.write(["ftp", "password"], lambda: "second") == "second"
    assert repository.load("web1").get(["ftp", "password"]) != stored
    assert helpers.read(["ftp", "password"]) == "second"

    helpers.set_enabled(False)
    assert engine.exist(helpers.read(["ftp", "password"]))


def test_runtime_settings_from_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("ENCATTR_LOCAL_MODE", "yes")
    monkeypatch.setenv("ENCATTR_NODE_NAME", " web1 ")
    monkeypatch.setenv("ENCATTR_CLIENT_SEARCH", "role:web")
    settings = RuntimeSettings.from_env(env_file=tmp_path / "missing.env")
    assert settings.local_mode is True
    assert settings.node_name == "web1"
    config = settings.to_config()
    assert config.local_mode is True
    assert config.client_search == "role:web"
    assert config.dependency == "cryptography.fernet"


def test_runtime_settings_reads_dotenv(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.delenv("ENCATTR_NODE_STORE_ROOT", raising=False)
    env_file = tmp_path / ".env"
    env_file.write_text("ENCATTR_NODE_STORE_ROOT=/srv/nodes\n", encoding="utf-8")
    settings = RuntimeSettings.from_env(env_file=env_file)
    monkeypatch.delenv("ENCATTR_NODE_STORE_ROOT", raising=False)
    assert settings.node_store_path(tmp_path) == Path("/srv/nodes")


@pytest.mark.parametrize(
    ("name", "value"),
    [("ENCATTR_LOCAL_MODE", "maybe"), ("ENCATTR_NODE_NAME", "bad/name"), ("ENCATTR_DEPENDENCY", "  ")],
)
def test_runtime_settings_invalid_env_raises(monkeypatch: pytest.MonkeyPatch, tmp_path: Path, name: str, value: str) -> None:
    monkeypatch.setenv(name, value)
    with pytest.raises(ValueError):
        RuntimeSettings.from_env(env_file=tmp_path / "missing.env")


def test_orchestrator_shares_engine_config_for_search_scope(
    engine: FernetAttributeEngine,
    repository: NodeRepository,
    config: EncryptedAttributesConfig,
) -> None:
    node = repository.load("web1")
    helpers = EncryptedAttributes(node, engine, activate=lambda _name: None)
    assert helpers.config is config

    helpers.allow("role:ftp")
    helpers.write(["ftp", "password"], lambda: "s3Cr3T")
    assert node.get(["ftp", "password"])["client_search"] == "role:ftp"

    helpers.allow("role:backup")
    helpers.write(["ftp", "password"], lambda: "s3Cr3T")
    assert repository.load("web1").get(["ftp", "password"])["client_search"] == "role:backup"
