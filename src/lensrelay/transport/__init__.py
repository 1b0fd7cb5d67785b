"""Transport module: envelopes, storage and broker collaborators, relay bridge."""

from .bridge import SendResult, TransportBridge
from .broker import InMemoryBroker, PublishAck, ZmqBroker
from .envelope import StoredMediaRef, TransportEnvelope, generate_storage_key, shrink_payload
from .storage import FilesystemBlobStorage, RcloneBlobStorage, create_storage

__all__ = [
    "SendResult",
    "TransportBridge",
    "InMemoryBroker",
    "PublishAck",
    "ZmqBroker",
    "StoredMediaRef",
    "TransportEnvelope",
    "generate_storage_key",
    "shrink_payload",
    "FilesystemBlobStorage",
    "RcloneBlobStorage",
    "create_storage",
]
