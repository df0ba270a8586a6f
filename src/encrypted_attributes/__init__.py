from importlib.metadata import version

from .canonical import to_canonical_json
from .engine import FernetAttributeEngine, generate_key
from .errors import DecryptionError, EncryptedAttributeError, MalformedCiphertextError, NodeNotFoundError
from .models import AttributePath, CiphertextEnvelope, EnablementState, EncryptedAttributesConfig
from .node_store import NodeAttributes, NodeRepository
from .orchestrator import ActivationGate, AttributeEngine, AttributeStore, EncryptedAttributes
from .settings import RuntimeSettings


def get_version() -> str:
    try:
        return version("encrypted-attributes")
    except Exception:
        return "0.0.0"


__all__ = [
    "ActivationGate",
    "AttributeEngine",
    "AttributePath",
    "AttributeStore",
    "CiphertextEnvelope",
    "DecryptionError",
    "EnablementState",
    "EncryptedAttributeError",
    "EncryptedAttributes",
    "EncryptedAttributesConfig",
    "FernetAttributeEngine",
    "MalformedCiphertextError",
    "NodeAttributes",
    "NodeNotFoundError",
    "NodeRepository",
    "RuntimeSettings",
    "generate_key",
    "to_canonical_json",
]
