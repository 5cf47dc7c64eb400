"""
Content-Store Client - Webflow CMS v2 API
"""
from typing import Optional, Dict, Any, List
import hashlib
import logging
import time

import httpx

from ..config import config
from ..exceptions import ContentStoreError

logger = logging.getLogger(__name__)

PAGE_SIZE = 100
PAGE_DELAY_SECONDS = 0.5
UPLOAD_TIMEOUT_SECONDS = 60

# Order matters: S3 expects the policy fields before the file
UPLOAD_DETAIL_FIELDS = (
    "key",
    "acl",
    "Cache-Control",
    "content-type",
    "success_action_status",
    "X-Amz-Algorithm",
    "X-Amz-Credential",
    "X-Amz-Date",
    "Policy",
    "X-Amz-Signature",
)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        message = body.get("message") or body.get("msg") or body.get("err")
        if message:
            return str(message)
    return response.text or f"HTTP {response.status_code}"


class WebflowClient:
    """Blocking Webflow client; every request carries its own timeout"""

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None, page_delay: float = PAGE_DELAY_SECONDS):
        self.base_url = (base_url or config.WEBFLOW_API_BASE_URL).rstrip("/")
        self.timeout = timeout or config.HTTP_TIMEOUT_SECONDS
        self.page_delay = page_delay

    def _make_request(
        self,
        method: str,
        endpoint: str,
        token: str,
        data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Make HTTP request to the Webflow API"""
        url = f"{self.base_url}{endpoint}"
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "accept": "application/json",
        }

        try:
            response = httpx.request(method, url, headers=headers, json=data, params=params, timeout=self.timeout)
        except httpx.HTTPError as e:
            logger.error(f"Webflow API request failed: {method} {endpoint}: {e}")
            raise ContentStoreError(f"Webflow request failed: {e}") from e

        if response.is_error:
            message = _error_message(response)
            logger.error(f"Webflow API error {response.status_code} on {method} {endpoint}: {message}")
            raise ContentStoreError(message, status_code=response.status_code)

        if not response.content:
            return {}
        return response.json()

    def read_items(self, token: str, collection_id: str) -> List[Dict[str, Any]]:
        """Fetch every item of a collection, one page of 100 at a time"""
        items: List[Dict[str, Any]] = []
        offset = 0
        while True:
            page = self._make_request(
                "GET",
                f"/collections/{collection_id}/items",
                token,
                params={"offset": offset, "limit": PAGE_SIZE},
            )
            page_items = page.get("items") or []
            items.extend(page_items)
            if len(page_items) < PAGE_SIZE:
                break
            offset += PAGE_SIZE
            # Rate limiting
            time.sleep(self.page_delay)
        return items

    def write_item(self, token: str, collection_id: str, item_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Patch ``fields`` onto one item; returns the updated item"""
        return self._make_request(
            "PATCH",
            f"/collections/{collection_id}/items/{item_id}",
            token,
            data={"fieldData": fields},
        )

    def upload_asset(self, data: bytes, file_name: str, token: str, site_id: str) -> Dict[str, Any]:
        """
        Upload a file as a site asset

        The asset record is created first, keyed by the file's MD5 hash; the
        bytes are then posted to the returned upload URL.

        Returns:
            Dict with asset_id and url
        """
        created = self._make_request(
            "POST",
            f"/sites/{site_id}/assets",
            token,
            data={"fileName": file_name, "fileHash": hashlib.md5(data).hexdigest()},
        )
        upload_url = created.get("uploadUrl")
        upload_details = created.get("uploadDetails") or {}
        if not upload_url or not created.get("id"):
            raise ContentStoreError("Webflow did not return an upload URL for the asset")

        form = {name: str(upload_details[name]) for name in UPLOAD_DETAIL_FIELDS if name in upload_details}
        content_type = upload_details.get("content-type") or "image/png"
        try:
            response = httpx.post(
                upload_url,
                data=form,
                files={"file": (file_name, data, content_type)},
                timeout=UPLOAD_TIMEOUT_SECONDS,
            )
        except httpx.HTTPError as e:
            logger.error(f"Asset upload failed for {file_name}: {e}")
            raise ContentStoreError(f"Asset upload failed: {e}") from e

        if response.is_error:
            logger.error(f"Asset upload for {file_name} rejected with {response.status_code}")
            raise ContentStoreError(f"Asset upload failed: {response.text or response.status_code}", status_code=response.status_code)

        logger.info(f"Uploaded asset {created['id']} ({file_name}, {len(data)} bytes) to site {site_id}")
        return {
            "asset_id": created["id"],
            "url": created.get("hostedUrl") or created.get("assetUrl"),
        }
