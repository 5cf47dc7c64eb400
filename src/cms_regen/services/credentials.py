"""
Collection resolution and credential handling

A collection is resolved once into a typed view carrying its site and
encrypted integration keys. The generation credential is then classified a
single time as either the user's own key or the platform-managed key.
"""
from dataclasses import dataclass
from typing import Optional, Union
import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from sqlalchemy.orm import Session

from ..config import config
from ..db.models.collection import Collection
from ..exceptions import CollectionNotFoundError, CredentialError

logger = logging.getLogger(__name__)

OPENAI_KEY_PREFIX = "sk-"
PLACEHOLDER_PREFIXES = ("FACADE",)
PLACEHOLDER_VALUES = ("placeholder",)

PROVIDER_STORE = "webflow"
PROVIDER_GENERATION = "openai"


@dataclass(frozen=True)
class OwnedCredential:
    """User-supplied provider key; generations are not billed"""
    token: str


@dataclass(frozen=True)
class ManagedCredential:
    """Platform key used on the user's behalf; generations are metered"""
    token: str


ApiCredential = Union[OwnedCredential, ManagedCredential]


@dataclass(frozen=True)
class ResolvedCollection:
    """Collection joined with its site and integration"""
    id: int
    user_id: str
    external_collection_id: str
    display_name: str
    slug: Optional[str]
    site_id: str
    site_base_url: Optional[str]
    encrypted_store_key: Optional[str]
    encrypted_generation_key: Optional[str]


class CollectionResolver:
    """Loads collections through the ownership chain"""

    def __init__(self, db: Session):
        self.db = db

    def resolve(self, collection_id: int, user_id: str) -> ResolvedCollection:
        """
        Resolve a collection owned by ``user_id``

        Raises:
            CollectionNotFoundError: Unknown collection or owned by someone else
        """
        collection = self.db.query(Collection).filter(
            Collection.id == collection_id,
            Collection.user_id == user_id,
        ).first()
        if collection is None:
            raise CollectionNotFoundError("Collection not found or access denied")

        site = collection.site
        integration = site.integration if site else None
        return ResolvedCollection(
            id=collection.id,
            user_id=collection.user_id,
            external_collection_id=collection.external_collection_id,
            display_name=collection.display_name or "Collection",
            slug=collection.slug,
            site_id=site.external_site_id if site else "",
            site_base_url=site.base_url if site else None,
            encrypted_store_key=integration.encrypted_store_key if integration else None,
            encrypted_generation_key=integration.encrypted_generation_key if integration else None,
        )


def _load_key(hex_key: str) -> bytes:
    if len(hex_key) != 64:
        raise CredentialError(f"Invalid ENCRYPTION_KEY length: {len(hex_key)}. Must be 64 hex characters (32 bytes).")
    try:
        return bytes.fromhex(hex_key)
    except ValueError as e:
        raise CredentialError("ENCRYPTION_KEY must be hex encoded") from e


def encrypt_secret(plaintext: str, hex_key: Optional[str] = None) -> str:
    """Encrypt with AES-256-GCM; output is ``iv:authTag:ciphertext`` in hex"""
    key = _load_key(hex_key or config.ENCRYPTION_KEY)
    iv = os.urandom(16)
    sealed = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None)
    ciphertext, tag = sealed[:-16], sealed[-16:]
    return f"{iv.hex()}:{tag.hex()}:{ciphertext.hex()}"


def decrypt_secret(payload: str, hex_key: Optional[str] = None) -> str:
    """Decrypt a value produced by :func:`encrypt_secret`"""
    key = _load_key(hex_key or config.ENCRYPTION_KEY)
    try:
        iv_hex, tag_hex, ciphertext_hex = payload.split(":")
        iv = bytes.fromhex(iv_hex)
        sealed = bytes.fromhex(ciphertext_hex) + bytes.fromhex(tag_hex)
        return AESGCM(key).decrypt(iv, sealed, None).decode("utf-8")
    except (ValueError, InvalidTag) as e:
        raise CredentialError("Stored credential could not be decrypted") from e


def is_placeholder(value: str) -> bool:
    return value in PLACEHOLDER_VALUES or value.startswith(PLACEHOLDER_PREFIXES)


class CredentialStore:
    """Decrypts integration keys for a resolved collection"""

    def __init__(self, encryption_key: Optional[str] = None, managed_api_key: Optional[str] = None):
        self.encryption_key = encryption_key or config.ENCRYPTION_KEY
        self.managed_api_key = managed_api_key if managed_api_key is not None else config.MANAGED_OPENAI_API_KEY

    def get_decrypted_credential(self, collection: ResolvedCollection, provider: str) -> str:
        """
        Decrypt the credential stored for ``provider``

        Raises:
            CredentialError: No credential configured, or decryption failed
        """
        if provider == PROVIDER_STORE:
            encrypted = collection.encrypted_store_key
        elif provider == PROVIDER_GENERATION:
            encrypted = collection.encrypted_generation_key
        else:
            raise ValueError(f"Unsupported credential provider: {provider}")

        if not encrypted:
            raise CredentialError(f"No {provider} key configured for this site")

        token = decrypt_secret(encrypted, self.encryption_key)
        if not token:
            raise CredentialError(f"Empty {provider} key configured for this site")
        return token

    def resolve_generation_credential(self, collection: ResolvedCollection) -> ApiCredential:
        """
        Classify the generation key as owned or managed

        A missing or placeholder key means the platform key is used and the
        user is billed. Anything else must look like a real provider key;
        undecryptable or unrecognized values are rejected rather than
        silently falling back to the platform key.
        """
        if collection.encrypted_generation_key:
            token = decrypt_secret(collection.encrypted_generation_key, self.encryption_key)
            if token and not is_placeholder(token):
                if not token.startswith(OPENAI_KEY_PREFIX):
                    raise CredentialError("Invalid OpenAI key configured for this site")
                return OwnedCredential(token=token)

        if not self.managed_api_key:
            raise CredentialError("Managed generation key is not configured")
        return ManagedCredential(token=self.managed_api_key)
