"""
Content API routes - field generation and publishing to the content store
"""
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session
import logging

from .auth import CurrentUser, get_current_user
from .billing_routes import get_credential_store, resolve_collection_or_404
from .db.engine import SessionLocal, get_db
from .exceptions import ContentStoreError, CredentialError, PaymentRequiredError
from .progress_stream import NDJSON_MEDIA_TYPE, run_detached, stream_events
from .schemas import GenerateFieldsRequest, PublishRequest
from .services.billing_calculator import check_billing_status
from .services.content_store import WebflowClient
from .services.credentials import CredentialStore, OwnedCredential, PROVIDER_STORE
from .services.free_tier_ledger import FreeTierLedger
from .services.generation_executor import GenerationExecutor, GenerationItem
from .services.publish_orchestrator import PublishOrchestrator, StagedField, validate_changes

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["content"])


def get_generation_executor(db: Session = Depends(get_db)) -> GenerationExecutor:
    return GenerationExecutor(db)


def get_content_store() -> WebflowClient:
    return WebflowClient()


def get_session_factory():
    """Session factory for work that outlives the request"""
    return SessionLocal


@router.get("/collections/{collection_id}/items")
def list_collection_items(
    collection_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    credentials: CredentialStore = Depends(get_credential_store),
    store: WebflowClient = Depends(get_content_store),
):
    """Current items of a collection, read from the content store"""
    collection = resolve_collection_or_404(db, collection_id, current_user.id)
    try:
        store_token = credentials.get_decrypted_credential(collection, PROVIDER_STORE)
    except CredentialError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    try:
        items = store.read_items(store_token, collection.external_collection_id)
    except ContentStoreError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    return {"collection_id": collection.id, "count": len(items), "items": items}


@router.post("/fields/generate")
def generate_fields(
    request: GenerateFieldsRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    credentials: CredentialStore = Depends(get_credential_store),
    executor: GenerationExecutor = Depends(get_generation_executor),
):
    """
    Generate content for every (item, field) pair

    Batches beyond the free allowance need a paid checkout: the caller passes
    the ``payment_id`` from the payment-status poll, and the payment is
    claimed before any generation runs.
    """
    collection = resolve_collection_or_404(db, request.collection_id, current_user.id)
    try:
        credential = credentials.resolve_generation_credential(collection)
    except CredentialError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    requested_units = len(request.items) * len(request.fields)
    payment = None
    if not isinstance(credential, OwnedCredential):
        allowance = FreeTierLedger(db).read_allowance(current_user.id)
        billing = check_billing_status(credential, allowance, requested_units)
        if billing["requires_payment"]:
            if request.payment_id is None:
                raise HTTPException(
                    status_code=status.HTTP_402_PAYMENT_REQUIRED,
                    detail={"error": "PAYMENT_REQUIRED", "message": "Payment required for this batch", **billing},
                )
            try:
                payment = executor.claim_payment(current_user.id, request.payment_id, billing["items_to_charge"])
            except LookupError as e:
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
            except PaymentRequiredError as e:
                raise HTTPException(
                    status_code=status.HTTP_402_PAYMENT_REQUIRED,
                    detail={"error": "PAYMENT_REQUIRED", "message": str(e), **billing},
                )

    try:
        outcome = executor.generate(
            current_user.id,
            [GenerationItem(id=item.id, field_data=item.field_data) for item in request.items],
            request.fields,
            request.column_types,
            credential,
            site_context=collection.display_name,
        )
        response = outcome.to_dict()
        if payment is not None:
            payment = executor.settle_payment(payment, outcome)
            response["payment_id"] = payment.id
            response["payment_status"] = payment.status
    except Exception:
        # The caller can retry with the same payment
        if payment is not None:
            executor.release_payment(payment)
        raise
    return response


@router.post("/items/publish")
async def publish_items(
    request: PublishRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    credentials: CredentialStore = Depends(get_credential_store),
    store: WebflowClient = Depends(get_content_store),
    session_factory=Depends(get_session_factory),
):
    """
    Publish staged edits and stream progress as NDJSON

    The job runs detached with its own database session; if the client goes
    away the publication still finishes and stays readable through
    ``GET /v1/publications/{id}``.
    """
    collection = resolve_collection_or_404(db, request.collection_id, current_user.id)
    try:
        store_token = credentials.get_decrypted_credential(collection, PROVIDER_STORE)
    except CredentialError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    changes = {
        item_id: {
            field_name: StagedField(kind=staged.kind, value=staged.value, file_name=staged.file_name)
            for field_name, staged in fields.items()
        }
        for item_id, fields in request.changes.items()
    }
    try:
        validate_changes(changes)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    user_id = current_user.id

    def publish_job():
        job_db = session_factory()
        try:
            yield from PublishOrchestrator(job_db, store).publish(user_id, collection, store_token, changes)
        finally:
            job_db.close()

    logger.info(f"Publishing {len(changes)} items to collection {collection.id} for user {user_id}")
    events = run_detached(publish_job, name=f"publish-{collection.id}")
    return StreamingResponse(
        stream_events(events),
        media_type=NDJSON_MEDIA_TYPE,
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/publications/{publication_id}")
async def get_publication(
    publication_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Audit trail of one publish run"""
    try:
        publication = PublishOrchestrator(db).get_publication(current_user.id, publication_id)
    except LookupError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return {
        "id": publication.id,
        "collection_id": publication.collection_id,
        "status": publication.status,
        "total_items": publication.total_items,
        "total_fields": publication.total_fields,
        "items_succeeded": publication.items_succeeded,
        "items_failed": publication.items_failed,
        "fields_succeeded": publication.fields_succeeded,
        "fields_failed": publication.fields_failed,
        "started_at": publication.started_at.isoformat() if publication.started_at else None,
        "completed_at": publication.completed_at.isoformat() if publication.completed_at else None,
        "items": [
            {
                "item_id": item.item_id,
                "status": item.status,
                "slug": item.slug,
                "published_url": item.published_url,
                "fields_total": item.fields_total,
                "fields_succeeded": item.fields_succeeded,
                "fields_failed": item.fields_failed,
                "applied_fields": item.applied_fields or [],
                "error_message": item.error_message,
                "completed_at": item.completed_at.isoformat() if item.completed_at else None,
            }
            for item in publication.items
        ],
    }
