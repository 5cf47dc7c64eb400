"""
Publish Orchestrator

Pushes staged edits to the content store item by item, tolerating per-item
failure, and records every attempt in the publication audit tables. Progress
is produced as a sequence of tagged event dicts; the transport lives in
``progress_stream``.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Dict, Any, Iterator, List
from sqlalchemy.orm import Session
import base64
import binascii
import logging

from ..db.models.publication import Publication, PublicationItem, PublicationStatus, PublicationItemStatus
from ..exceptions import ContentStoreError
from .content_store import WebflowClient
from .credentials import ResolvedCollection

logger = logging.getLogger(__name__)

KIND_TEXT = "text"
KIND_IMAGE = "image"
NO_FIELDS_READY = "No fields ready to publish"

EVENT_STARTED = "started"
EVENT_ITEM = "item"
EVENT_COMPLETED = "completed"
EVENT_ERROR = "error"


@dataclass
class StagedField:
    """Caller-held edit to one field of one item"""
    kind: str
    value: str
    file_name: Optional[str] = None


def validate_changes(changes: Dict[str, Dict[str, StagedField]]) -> None:
    """Reject an empty change map or staged fields of unknown kind"""
    if not changes:
        raise ValueError("changes must contain at least one item")
    for item_id, fields in changes.items():
        for field_name, staged in fields.items():
            if staged.kind not in (KIND_TEXT, KIND_IMAGE):
                raise ValueError(f"Unsupported field kind '{staged.kind}' for {item_id}.{field_name}")


def decode_image_payload(value: str) -> bytes:
    """Decode a data URL or bare base64 string into bytes"""
    if value.startswith("data:"):
        _, separator, payload = value.partition(",")
        if not separator:
            raise ValueError("Invalid image payload: missing data URL separator")
    else:
        payload = value
    try:
        data = base64.b64decode(payload, validate=True)
    except binascii.Error as e:
        raise ValueError(f"Invalid image payload: {e}") from e
    if not data:
        raise ValueError("Empty image payload")
    return data


def build_item_url(base_url: Optional[str], collection_slug: Optional[str], item_slug: Optional[str]) -> Optional[str]:
    if not (base_url and collection_slug and item_slug):
        return None
    return f"{base_url.rstrip('/')}/{collection_slug.strip('/')}/{item_slug}"


def terminal_status(items_succeeded: int, items_failed: int) -> str:
    if items_failed == 0:
        return PublicationStatus.COMPLETED.value
    if items_succeeded == 0:
        return PublicationStatus.FAILED.value
    return PublicationStatus.PARTIAL.value


class PublishOrchestrator:
    """Publishes staged changes and keeps the publication audit trail"""

    def __init__(self, db: Session, store: Optional[WebflowClient] = None):
        self.db = db
        self.store = store or WebflowClient()

    def publish(
        self,
        user_id: str,
        collection: ResolvedCollection,
        store_token: str,
        changes: Dict[str, Dict[str, StagedField]],
    ) -> Iterator[Dict[str, Any]]:
        """
        Validate ``changes`` and return the progress event iterator

        Validation happens eagerly so callers can reject a bad request before
        any row is written or any stream is opened.

        Raises:
            ValueError: No changes, or a staged field of unknown kind
        """
        validate_changes(changes)
        return self._run(user_id, collection, store_token, changes)

    def _run(
        self,
        user_id: str,
        collection: ResolvedCollection,
        store_token: str,
        changes: Dict[str, Dict[str, StagedField]],
    ) -> Iterator[Dict[str, Any]]:
        publication = Publication(
            collection_id=collection.id,
            user_id=user_id,
            total_items=len(changes),
            total_fields=sum(len(fields) for fields in changes.values()),
            status=PublicationStatus.PROCESSING.value,
        )
        self.db.add(publication)
        self.db.commit()
        self.db.refresh(publication)

        logger.info(
            f"Publication {publication.id} started for collection {collection.id}: "
            f"{publication.total_items} items, {publication.total_fields} fields"
        )
        yield {
            "type": EVENT_STARTED,
            "publication_id": publication.id,
            "total_items": publication.total_items,
            "total_fields": publication.total_fields,
        }

        items_succeeded = 0
        items_failed = 0
        fields_succeeded = 0
        fields_failed = 0
        links: List[Dict[str, Any]] = []

        try:
            for processed, (item_id, fields) in enumerate(changes.items(), start=1):
                row = self._publish_item(publication, collection, store_token, item_id, fields)

                fields_succeeded += row.fields_succeeded
                fields_failed += row.fields_failed
                if row.status == PublicationItemStatus.SUCCEEDED.value:
                    items_succeeded += 1
                    links.append({"item_id": item_id, "url": row.published_url})
                else:
                    items_failed += 1

                yield {
                    "type": EVENT_ITEM,
                    "item_id": item_id,
                    "status": row.status,
                    "succeeded_items": items_succeeded,
                    "failed_items": items_failed,
                    "processed": processed,
                    "total": publication.total_items,
                    "published_url": row.published_url,
                    "applied_fields": row.applied_fields or [],
                    "error": row.error_message,
                }

            publication.status = terminal_status(items_succeeded, items_failed)
            publication.items_succeeded = items_succeeded
            publication.items_failed = items_failed
            publication.fields_succeeded = fields_succeeded
            publication.fields_failed = fields_failed
            publication.completed_at = datetime.utcnow()
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Publication {publication.id} aborted: {e}", exc_info=True)
            self._mark_aborted(publication, str(e), items_succeeded, items_failed, fields_succeeded, fields_failed)
            yield {"type": EVENT_ERROR, "publication_id": publication.id, "message": str(e)}
            return

        logger.info(
            f"Publication {publication.id} finished with status {publication.status}: "
            f"{items_succeeded} items succeeded, {items_failed} failed"
        )
        yield {
            "type": EVENT_COMPLETED,
            "publication_id": publication.id,
            "status": publication.status,
            "items_succeeded": items_succeeded,
            "items_failed": items_failed,
            "fields_succeeded": fields_succeeded,
            "fields_failed": fields_failed,
            "links": links,
        }

    def _publish_item(
        self,
        publication: Publication,
        collection: ResolvedCollection,
        store_token: str,
        item_id: str,
        fields: Dict[str, StagedField],
    ) -> PublicationItem:
        payload: Dict[str, Any] = {}
        prepared_failures = 0
        prepare_error: Optional[str] = None

        for field_name, staged in fields.items():
            if staged.kind == KIND_TEXT:
                payload[field_name] = staged.value
                continue

            file_name = staged.file_name or f"{field_name}-{item_id}.png"
            try:
                data = decode_image_payload(staged.value)
                asset = self.store.upload_asset(data, file_name, store_token, collection.site_id)
            except Exception as e:
                # Any prep failure only costs this field
                prepared_failures += 1
                prepare_error = prepare_error or str(e)
                logger.warning(f"Image upload failed for item {item_id} field {field_name}: {e}")
                continue
            payload[field_name] = asset["asset_id"]

        row = PublicationItem(
            publication_id=publication.id,
            item_id=item_id,
            fields_total=len(fields),
            status=PublicationItemStatus.PROCESSING.value,
        )
        self.db.add(row)
        self.db.commit()

        if not payload:
            row.status = PublicationItemStatus.FAILED.value
            row.fields_failed = prepared_failures
            row.error_message = NO_FIELDS_READY
            row.applied_fields = []
        else:
            try:
                written = self.store.write_item(store_token, collection.external_collection_id, item_id, payload)
            except ContentStoreError as e:
                logger.warning(f"Write failed for item {item_id}: {e}")
                row.status = PublicationItemStatus.FAILED.value
                row.fields_failed = prepared_failures + len(payload)
                row.error_message = str(e)
                row.applied_fields = []
            else:
                slug = self._resolve_slug(written, fields)
                row.status = PublicationItemStatus.SUCCEEDED.value
                row.fields_succeeded = len(payload)
                row.fields_failed = prepared_failures
                row.applied_fields = list(payload.keys())
                row.slug = slug
                row.published_url = build_item_url(collection.site_base_url, collection.slug, slug)
                if prepare_error:
                    row.error_message = prepare_error

        row.completed_at = datetime.utcnow()
        self.db.commit()
        return row

    def _mark_aborted(
        self,
        publication: Publication,
        error: str,
        items_succeeded: int,
        items_failed: int,
        fields_succeeded: int,
        fields_failed: int,
    ) -> None:
        """Close an aborted publication as failed with the counts reached so far"""
        now = datetime.utcnow()
        try:
            unfinished = self.db.query(PublicationItem).filter(
                PublicationItem.publication_id == publication.id,
                PublicationItem.status == PublicationItemStatus.PROCESSING.value,
            ).all()
            for row in unfinished:
                row.status = PublicationItemStatus.FAILED.value
                row.fields_failed = row.fields_total
                row.error_message = error
                row.completed_at = now
                items_failed += 1
                fields_failed += row.fields_total

            publication.status = PublicationStatus.FAILED.value
            publication.items_succeeded = items_succeeded
            publication.items_failed = items_failed
            publication.fields_succeeded = fields_succeeded
            publication.fields_failed = fields_failed
            publication.completed_at = now
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Could not close aborted publication {publication.id}: {e}", exc_info=True)

    @staticmethod
    def _resolve_slug(written: Dict[str, Any], fields: Dict[str, StagedField]) -> Optional[str]:
        field_data = (written or {}).get("fieldData") or {}
        if field_data.get("slug"):
            return field_data["slug"]
        staged = fields.get("slug")
        if staged is not None and staged.kind == KIND_TEXT and staged.value:
            return staged.value
        return None

    def get_publication(self, user_id: str, publication_id: int) -> Publication:
        """
        Load a publication with its items

        Raises:
            LookupError: Unknown publication or owned by someone else
        """
        publication = self.db.query(Publication).filter(
            Publication.id == publication_id,
            Publication.user_id == user_id,
        ).first()
        if publication is None:
            raise LookupError("Publication not found")
        return publication
