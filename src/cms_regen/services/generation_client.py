"""
Content generation client and field generator

Text goes through ``litellm.completion``; images are generated from a
model-written prompt with ``litellm.image_generation`` and downloaded.
"""
from typing import Optional, Dict, Any
import base64
import json
import logging
import re

import httpx
import litellm

from ..config import config

logger = logging.getLogger(__name__)

litellm.drop_params = True

COLUMN_PLAIN_TEXT = "PlainText"
COLUMN_RICH_TEXT = "RichText"
COLUMN_IMAGE = "Image"
COLUMN_TYPES = (COLUMN_PLAIN_TEXT, COLUMN_RICH_TEXT, COLUMN_IMAGE, "Link", "User")

_FENCE_OPEN = re.compile(r"^```[a-zA-Z]*\n")
_FENCE_CLOSE = re.compile(r"\n```$")


def _get(obj: Any, key: str) -> Any:
    # litellm responses support attribute access; mocked ones are plain dicts
    if isinstance(obj, dict):
        return obj.get(key)
    return getattr(obj, key, None)


def strip_code_fences(content: str) -> str:
    """Remove a surrounding markdown code fence, if any"""
    if content.startswith("```"):
        content = _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", content, count=1))
    return content


class ContentGenerationClient:
    """Thin wrapper over the litellm text and image endpoints"""

    def __init__(
        self,
        api_key: str,
        text_model: Optional[str] = None,
        image_model: Optional[str] = None,
        image_size: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.api_key = api_key
        self.text_model = text_model or config.TEXT_MODEL
        self.image_model = image_model or config.IMAGE_MODEL
        self.image_size = image_size or config.IMAGE_SIZE
        self.timeout = timeout or config.HTTP_TIMEOUT_SECONDS

    def generate_text(self, system_prompt: str, user_prompt: str, temperature: Optional[float] = 0.7) -> str:
        """Run one chat completion and return its text with code fences stripped"""
        response = litellm.completion(
            model=self.text_model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=temperature,
            api_key=self.api_key,
        )
        choices = _get(response, "choices") or []
        if not choices:
            return ""
        content = _get(_get(choices[0], "message"), "content") or ""
        return strip_code_fences(content.strip())

    def generate_image(self, prompt: str) -> bytes:
        """
        Generate one image and return its bytes

        Raises:
            ValueError: The provider returned neither a URL nor inline data
            httpx.HTTPError: Downloading the generated image failed
        """
        response = litellm.image_generation(
            prompt=prompt,
            model=self.image_model,
            n=1,
            size=self.image_size,
            quality="hd",
            style="natural",
            api_key=self.api_key,
        )
        data = _get(response, "data") or []
        if not data:
            raise ValueError("No image returned from image generation")

        image = data[0]
        b64 = _get(image, "b64_json")
        if b64:
            return base64.b64decode(b64)

        url = _get(image, "url")
        if not url:
            raise ValueError("No image URL returned from image generation")

        download = httpx.get(url, timeout=self.timeout)
        download.raise_for_status()
        return download.content


class FieldGenerator:
    """Builds prompts for a single CMS field and runs them"""

    def __init__(self, client: ContentGenerationClient):
        self.client = client

    def generate(
        self,
        field_type: str,
        field_name: str,
        context: Dict[str, Any],
        site_context: Optional[str] = None,
    ):
        """Return text for text fields and bytes for image fields"""
        if field_type == COLUMN_IMAGE:
            return self.generate_image_field(field_name, context, site_context)
        return self.generate_text_field(field_type, field_name, context, site_context)

    def generate_text_field(
        self,
        field_type: str,
        field_name: str,
        context: Dict[str, Any],
        site_context: Optional[str] = None,
    ) -> str:
        clean_context = {key: value for key, value in context.items() if value is not None and value != ""}
        output_format = (
            "HTML (no markdown, just tags like <p>, <h2>, <ul>)"
            if field_type == COLUMN_RICH_TEXT
            else "Plain text"
        )
        system_prompt = (
            "You are a professional content writer for a website.\n"
            f"Site Context: {site_context or 'General Website'}\n"
            f'Task: Write content for a CMS field named "{field_name}".\n'
            f"Format: {output_format}.\n"
            "Style: Professional, engaging, and SEO-friendly.\n"
            'Keep it concise unless the field name implies long form (e.g., "body", "article").'
        )
        user_prompt = (
            "Context Data (other fields):\n"
            f"{json.dumps(clean_context, indent=2, default=str)}\n\n"
            f'Please generate content for the "{field_name}" field.'
        )
        return self.client.generate_text(system_prompt, user_prompt)

    def generate_image_field(
        self,
        field_name: str,
        context: Dict[str, Any],
        site_context: Optional[str] = None,
    ) -> bytes:
        prompt = self.client.generate_text(
            "You are an expert AI art prompter. Create a detailed DALL-E 3 prompt.",
            (
                f'Create a prompt for an image field named "{field_name}".\n'
                f"Context: {json.dumps(context, default=str)}\n"
                f"Site: {site_context or 'General Website'}\n"
                "Style: Professional, high-quality, suitable for a website.\n"
                "Return ONLY the prompt string."
            ),
            temperature=None,
        )
        logger.debug(f"Image prompt for field {field_name}: {prompt[:120]}")
        return self.client.generate_image(prompt or f"Image for {field_name}")
