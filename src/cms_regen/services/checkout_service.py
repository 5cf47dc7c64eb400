"""
Checkout session factory

Creates a provider checkout session whose metadata carries everything the
webhook needs to rebuild the generation job.
"""
from dataclasses import dataclass
from typing import Dict, List, Optional
import json
import logging

from ..config import config
from .billing_gateway import BillingGateway

logger = logging.getLogger(__name__)

# Stripe metadata limits: 50 keys, 500 characters per value
METADATA_VALUE_LIMIT = 500
METADATA_MAX_KEYS = 50
ITEM_IDS_KEY_PREFIX = "item_ids_"
ITEM_IDS_CHUNKS_KEY = "item_ids_chunks"
RESERVED_METADATA_KEYS = 6  # user_id, collection_id, collection_db_id, item_count, collection_name, item_ids_chunks


@dataclass
class CheckoutRequest:
    """Everything needed to price and later reconstruct a paid batch"""
    user_id: str
    email: str
    collection_id: int
    external_collection_id: str
    item_ids: List[str]
    item_count: int
    collection_name: str


@dataclass(frozen=True)
class CheckoutSession:
    session_id: str
    redirect_url: str


def encode_item_ids(item_ids: List[str]) -> Dict[str, str]:
    """
    Serialize item ids into chunked metadata entries

    The ids are JSON encoded once and the string is split into consecutive
    chunks, so decoding is a plain concatenation and order is preserved.
    """
    encoded = json.dumps(item_ids, separators=(",", ":"))
    chunks = [encoded[i:i + METADATA_VALUE_LIMIT] for i in range(0, len(encoded), METADATA_VALUE_LIMIT)]
    if len(chunks) > METADATA_MAX_KEYS - RESERVED_METADATA_KEYS:
        raise ValueError(f"Too many items for one checkout ({len(item_ids)} items)")

    metadata = {f"{ITEM_IDS_KEY_PREFIX}{index}": chunk for index, chunk in enumerate(chunks)}
    metadata[ITEM_IDS_CHUNKS_KEY] = str(len(chunks))
    return metadata


def decode_item_ids(metadata: Dict[str, str]) -> List[str]:
    """
    Rebuild item ids from checkout metadata

    Raises ValueError if the chunks are missing or do not form a JSON list of
    strings.
    """
    chunk_count = int(metadata[ITEM_IDS_CHUNKS_KEY])
    encoded = "".join(metadata[f"{ITEM_IDS_KEY_PREFIX}{index}"] for index in range(chunk_count))
    item_ids = json.loads(encoded)
    if not isinstance(item_ids, list) or not all(isinstance(item_id, str) for item_id in item_ids):
        raise ValueError("item_ids metadata is not a list of strings")
    return item_ids


class CheckoutSessionFactory:
    """Creates pay-as-you-go checkout sessions for generation batches"""

    def __init__(self, gateway: BillingGateway, unit_price_cents: Optional[int] = None, app_url: Optional[str] = None):
        self.gateway = gateway
        self.unit_price_cents = unit_price_cents or config.PRICE_PER_GENERATION_CENTS
        self.app_url = (app_url or config.APP_URL).rstrip("/")

    def create_checkout_session(self, request: CheckoutRequest, customer_id: Optional[str] = None) -> CheckoutSession:
        """
        Create a checkout session for ``request.item_count`` generations

        Raises:
            ValueError: item_ids and item_count disagree, or the batch is empty
        """
        if request.item_count < 1:
            raise ValueError("item_count must be at least 1")
        if len(request.item_ids) != request.item_count:
            raise ValueError(
                f"item_ids length ({len(request.item_ids)}) does not match item_count ({request.item_count})"
            )

        metadata = {
            "user_id": request.user_id,
            "collection_id": request.external_collection_id,
            "collection_db_id": str(request.collection_id),
            "item_count": str(request.item_count),
            "collection_name": request.collection_name[:METADATA_VALUE_LIMIT],
        }
        metadata.update(encode_item_ids(request.item_ids))

        session = self.gateway.create_checkout_session(
            email=request.email,
            line_item_name="AI Content Generation",
            line_item_description=f"{request.item_count} AI generations for {request.collection_name}",
            unit_amount_cents=self.unit_price_cents,
            quantity=request.item_count,
            metadata=metadata,
            success_url=f"{self.app_url}/dashboard/payment/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{self.app_url}/collection/{request.collection_id}",
            customer_id=customer_id,
        )

        logger.info(
            f"Created checkout session {session['id']} for user {request.user_id}: "
            f"{request.item_count} items, {request.item_count * self.unit_price_cents} cents"
        )
        return CheckoutSession(session_id=session["id"], redirect_url=session["url"])
