"""
Markdown to HTML rendering.

Two renderers share one interface: a local Python-Markdown renderer, used when
no AI key is configured, and an OpenAI-compatible chat completions renderer
that validates the model output and feeds validation errors back to it.
"""
import asyncio
import html as html_lib
import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from enum import Enum
from typing import AsyncIterator, Dict, List, Optional, Tuple

import httpx
import markdown
from bs4 import BeautifulSoup
from markdown.extensions.codehilite import CodeHiliteExtension
from markdown.extensions.fenced_code import FencedCodeExtension
from markdown.extensions.footnotes import FootnoteExtension
from markdown.extensions.sane_lists import SaneListExtension
from markdown.extensions.tables import TableExtension
from markdown.extensions.toc import TocExtension

from folio.config import settings
from folio.core.errors import ExternalServiceError, LifecycleError
from folio.core.html_validator import clean_ai_generated_html, validate_html

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 80
SLUG_MAX_LENGTH = 40
EXCERPT_MAX_LENGTH = 400
MAX_GENERATED_TAGS = 10


class RenderStatus(str, Enum):
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class RenderProgress:
    status: RenderStatus
    chunk: Optional[str] = None
    progress: int = 0
    error: Optional[str] = None
    html: Optional[str] = None

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["status"] = self.status.value
        return data


def slugify(text: str, max_length: int = SLUG_MAX_LENGTH) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
    return slug[:max_length].strip("-")


def markdown_to_text(markdown_text: str) -> str:
    """Plain text of a Markdown document, whitespace collapsed."""
    rendered = markdown.markdown(markdown_text, extensions=[FencedCodeExtension(), TableExtension()])
    text = BeautifulSoup(rendered, "html.parser").get_text(" ")
    return re.sub(r"\s+", " ", text).strip()


def truncate_text(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    cut = text[:max_length - 3].rsplit(" ", 1)[0]
    return f"{cut}..."


def parse_tags(raw: str) -> List[str]:
    """Tags from a JSON array, falling back to one tag per line."""
    text = raw.strip()
    text = re.sub(r"^```(?:json)?\s*|\s*```$", "", text).strip()

    start, end = text.find("["), text.rfind("]")
    if start != -1 and end > start:
        try:
            values = json.loads(text[start:end + 1])
            if isinstance(values, list):
                tags = [str(v).strip() for v in values if str(v).strip()]
                return tags[:MAX_GENERATED_TAGS]
        except json.JSONDecodeError:
            logger.debug("Tag output is not JSON, falling back to lines")

    tags = [line.strip().lstrip("-*• ").strip() for line in text.splitlines()]
    return [tag for tag in tags if tag][:MAX_GENERATED_TAGS]


class BaseRenderer(ABC):
    """Turns Markdown into a complete HTML document and proposes metadata."""

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @abstractmethod
    async def render(self, markdown_text: str, custom_prompt: Optional[str] = None) -> str:
        """Return a complete HTML document or raise ExternalServiceError."""
        ...

    async def render_stream(
        self, markdown_text: str, custom_prompt: Optional[str] = None
    ) -> AsyncIterator[RenderProgress]:
        """Progress events ending in exactly one completed or failed event."""
        yield RenderProgress(RenderStatus.GENERATING, progress=0)
        try:
            html = await self.render(markdown_text, custom_prompt)
        except LifecycleError as e:
            yield RenderProgress(RenderStatus.FAILED, progress=100, error=e.message)
            return
        yield RenderProgress(RenderStatus.COMPLETED, progress=100, html=html)

    @abstractmethod
    async def generate_title(self, markdown_text: str) -> str:
        ...

    @abstractmethod
    async def generate_slug(self, title: str) -> str:
        ...

    @abstractmethod
    async def generate_tags(self, markdown_text: str) -> List[str]:
        ...

    @abstractmethod
    async def generate_excerpt(self, markdown_text: str) -> str:
        ...


def create_markdown_renderer() -> markdown.Markdown:
    return markdown.Markdown(
        extensions=[
            FencedCodeExtension(),
            CodeHiliteExtension(
                css_class="codehilite",
                linenums=False,
                guess_lang=False,
                use_pygments=True,
                noclasses=True,
                pygments_style="monokai",
            ),
            TableExtension(),
            TocExtension(permalink=False),
            SaneListExtension(),
            FootnoteExtension(),
        ],
        output_format="html",
    )


HTML_DOCUMENT = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>{title}</title>
<style>
body {{ max-width: 46rem; margin: 2rem auto; padding: 0 1rem; font-family: system-ui, sans-serif; line-height: 1.6; }}
pre {{ overflow-x: auto; padding: 1rem; border-radius: 4px; }}
table {{ border-collapse: collapse; }}
th, td {{ border: 1px solid #ddd; padding: 0.4rem 0.8rem; }}
</style>
</head>
<body>
<article>
{body}
</article>
</body>
</html>
"""


class MarkdownRenderer(BaseRenderer):
    """Deterministic local renderer built on Python-Markdown."""

    @property
    def name(self) -> str:
        return "markdown"

    async def render(self, markdown_text: str, custom_prompt: Optional[str] = None) -> str:
        # Custom prompts only steer AI renderers
        body = create_markdown_renderer().convert(markdown_text)
        title = await self.generate_title(markdown_text)
        return HTML_DOCUMENT.format(title=html_lib.escape(title), body=body)

    async def generate_title(self, markdown_text: str) -> str:
        for line in markdown_text.splitlines():
            heading = re.match(r"^#{1,6}\s+(.+?)\s*#*\s*$", line)
            if heading:
                return truncate_text(heading.group(1).strip(), TITLE_MAX_LENGTH)

        text = markdown_to_text(markdown_text)
        return truncate_text(text, TITLE_MAX_LENGTH) if text else "Untitled"

    async def generate_slug(self, title: str) -> str:
        return slugify(title) or "article"

    async def generate_tags(self, markdown_text: str) -> List[str]:
        return []

    async def generate_excerpt(self, markdown_text: str) -> str:
        return truncate_text(markdown_to_text(markdown_text), EXCERPT_MAX_LENGTH)


ROOT_SYSTEM_PROMPT = """You are a professional Markdown to HTML conversion assistant.

Task: convert the Markdown article provided by the user into a standalone, well-styled, interactive HTML page.

Requirements:
1. Output a complete HTML file, starting with <!DOCTYPE html>
2. Inline the CSS so the page looks good on its own
3. Support code highlighting
4. Use a responsive layout
5. Output the HTML directly; do NOT wrap it in ```html or any other Markdown code fence
6. Do not add any explanations, only the HTML
7. Inline JavaScript inside <script> tags is allowed for simple interactions"""

TITLE_PROMPT = (
    f"Write a concise, accurate title for the following Markdown article, at most {TITLE_MAX_LENGTH} "
    "characters. Return only the title text, without quotes or formatting."
)
SLUG_PROMPT = (
    f"Convert the following title into a URL slug (lowercase, hyphen separated, at most {SLUG_MAX_LENGTH} "
    "characters). Return only the slug."
)
TAGS_PROMPT = (
    f"Suggest 1-{MAX_GENERATED_TAGS} relevant tags for the following Markdown article, each 2-15 characters. "
    'Return a JSON array such as ["tag1", "tag2"]. If you cannot return JSON, return one tag per line.'
)
EXCERPT_PROMPT = (
    "Write a concise summary (50-400 characters) of the following Markdown article in the same language "
    "as the article. Return only the summary text, without quotes or formatting."
)

_RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
_MAX_HTTP_RETRIES = 3
_BASE_DELAY = 2


class OpenAICompatibleRenderer(BaseRenderer):
    """Renderer backed by any ``/chat/completions`` compatible API."""

    def __init__(
        self,
        api_key: str,
        base_url: str,
        model: str,
        max_tokens: int = 16384,
        temperature: float = 0.7,
        timeout: float = 600,
        max_attempts: int = 3,
        global_prompt: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout = timeout
        self.max_attempts = max(1, max_attempts)
        self.global_prompt = global_prompt
        self.transport = transport

    @property
    def name(self) -> str:
        return f"openai-compatible:{self.model}"

    # ============================================
    # HTTP
    # ============================================

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    def _build_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _build_payload(self, messages: List[Dict[str, str]], stream: bool = False) -> Dict:
        payload = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        if stream:
            payload["stream"] = True
        return payload

    async def chat(self, messages: List[Dict[str, str]]) -> str:
        """One completion, retrying transient HTTP failures with backoff."""
        url = f"{self.base_url}/chat/completions"
        payload = self._build_payload(messages)

        for attempt in range(1, _MAX_HTTP_RETRIES + 1):
            try:
                async with self._client() as client:
                    response = await client.post(url, json=payload, headers=self._build_headers())
                    response.raise_for_status()
                    data = response.json()
                return data["choices"][0]["message"]["content"] or ""
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if status in _RETRYABLE_STATUS_CODES and attempt < _MAX_HTTP_RETRIES:
                    delay = _BASE_DELAY * (2 ** (attempt - 1))
                    logger.warning("[%s] request %d failed (HTTP %d), retrying in %ds", self.name, attempt, status, delay)
                    await asyncio.sleep(delay)
                    continue
                raise ExternalServiceError(f"AI service returned HTTP {status}") from e
            except (httpx.ConnectError, httpx.TimeoutException) as e:
                if attempt < _MAX_HTTP_RETRIES:
                    delay = _BASE_DELAY * (2 ** (attempt - 1))
                    logger.warning("[%s] request %d failed (%s), retrying in %ds", self.name, attempt, type(e).__name__, delay)
                    await asyncio.sleep(delay)
                    continue
                raise ExternalServiceError(f"AI service unreachable: {type(e).__name__}") from e
            except httpx.HTTPError as e:
                raise ExternalServiceError(f"AI service request failed: {type(e).__name__}") from e
            except (KeyError, IndexError, ValueError) as e:
                raise ExternalServiceError("AI service returned an unexpected response") from e

        raise ExternalServiceError("AI service request failed")

    async def _stream_chat(self, messages: List[Dict[str, str]]) -> AsyncIterator[str]:
        url = f"{self.base_url}/chat/completions"
        payload = self._build_payload(messages, stream=True)
        try:
            async with self._client() as client:
                async with client.stream("POST", url, json=payload, headers=self._build_headers()) as response:
                    response.raise_for_status()
                    async for line in response.aiter_lines():
                        if not line.startswith("data: "):
                            continue
                        data_str = line[6:].strip()
                        if data_str == "[DONE]":
                            break
                        try:
                            delta = json.loads(data_str)["choices"][0].get("delta", {})
                        except (json.JSONDecodeError, KeyError, IndexError):
                            continue
                        content = delta.get("content")
                        if content:
                            yield content
        except httpx.HTTPStatusError as e:
            raise ExternalServiceError(f"AI service returned HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise ExternalServiceError(f"AI service unreachable: {type(e).__name__}") from e

    # ============================================
    # Rendering
    # ============================================

    def build_system_prompt(self, custom_prompt: Optional[str] = None) -> str:
        """Root prompt, then the per-version prompt or the global one."""
        parts = [ROOT_SYSTEM_PROMPT]
        if custom_prompt and custom_prompt.strip():
            parts.append(f"Additional requirements:\n{custom_prompt.strip()}")
        elif self.global_prompt and self.global_prompt.strip():
            parts.append(f"Additional requirements:\n{self.global_prompt.strip()}")
        return "\n\n".join(parts)

    def _check(self, raw: str) -> Tuple[str, Optional[str]]:
        html = clean_ai_generated_html(raw)
        result = validate_html(html, settings.HTML_VALIDATION_MODE, settings.HTML_TRUSTED_DOMAINS)
        for warning in result.warnings:
            logger.warning("[%s] HTML validation warning: %s", self.name, warning)
        return html, (None if result.is_valid else result.error_message)

    @staticmethod
    def _feedback(messages: List[Dict[str, str]], html: str, error: str) -> None:
        messages.append({"role": "assistant", "content": html})
        messages.append({
            "role": "user",
            "content": f"The generated HTML is invalid: {error}. Fix the error and output the complete HTML file again.",
        })

    def _initial_messages(self, markdown_text: str, custom_prompt: Optional[str]) -> List[Dict[str, str]]:
        return [
            {"role": "system", "content": self.build_system_prompt(custom_prompt)},
            {"role": "user", "content": markdown_text},
        ]

    def _exhausted(self, last_error: Optional[str]) -> ExternalServiceError:
        message = f"HTML generation failed after {self.max_attempts} attempts"
        if last_error:
            message = f"{message}: {last_error}"
        return ExternalServiceError(message)

    async def render(self, markdown_text: str, custom_prompt: Optional[str] = None) -> str:
        messages = self._initial_messages(markdown_text, custom_prompt)
        last_error = None

        for attempt in range(1, self.max_attempts + 1):
            raw = await self.chat(messages)
            if not raw.strip():
                last_error = "AI service returned an empty response"
                logger.warning("[%s] empty response, attempt %d/%d", self.name, attempt, self.max_attempts)
                continue

            html, last_error = self._check(raw)
            if last_error is None:
                logger.info("[%s] rendered HTML on attempt %d (%d chars)", self.name, attempt, len(html))
                return html

            logger.warning("[%s] invalid HTML, attempt %d/%d: %s", self.name, attempt, self.max_attempts, last_error)
            self._feedback(messages, html, last_error)

        raise self._exhausted(last_error)

    async def render_stream(
        self, markdown_text: str, custom_prompt: Optional[str] = None
    ) -> AsyncIterator[RenderProgress]:
        messages = self._initial_messages(markdown_text, custom_prompt)
        # Rough size of the finished page, for progress reporting only
        expected = max(len(markdown_text) * 3, 1)
        last_error = None

        for attempt in range(1, self.max_attempts + 1):
            chunks: List[str] = []
            try:
                async for chunk in self._stream_chat(messages):
                    chunks.append(chunk)
                    received = sum(len(c) for c in chunks)
                    yield RenderProgress(
                        RenderStatus.GENERATING,
                        chunk=chunk,
                        progress=min(95, received * 100 // expected),
                    )
            except ExternalServiceError as e:
                logger.warning("[%s] stream failed: %s", self.name, e.message)
                yield RenderProgress(RenderStatus.FAILED, progress=100, error=e.message)
                return

            html, last_error = self._check("".join(chunks))
            if last_error is None:
                yield RenderProgress(RenderStatus.COMPLETED, progress=100, html=html)
                return

            logger.warning("[%s] invalid streamed HTML, attempt %d/%d: %s", self.name, attempt, self.max_attempts, last_error)
            self._feedback(messages, html, last_error)

        yield RenderProgress(RenderStatus.FAILED, progress=100, error=self._exhausted(last_error).message)

    # ============================================
    # Metadata
    # ============================================

    async def _ask(self, prompt: str, content: str) -> str:
        return (await self.chat([
            {"role": "system", "content": prompt},
            {"role": "user", "content": content},
        ])).strip()

    async def generate_title(self, markdown_text: str) -> str:
        return (await self._ask(TITLE_PROMPT, markdown_text)).strip("\"'")

    async def generate_slug(self, title: str) -> str:
        return slugify(await self._ask(SLUG_PROMPT, title))

    async def generate_tags(self, markdown_text: str) -> List[str]:
        return parse_tags(await self._ask(TAGS_PROMPT, markdown_text))

    async def generate_excerpt(self, markdown_text: str) -> str:
        return (await self._ask(EXCERPT_PROMPT, markdown_text)).strip("\"'")


def get_renderer() -> BaseRenderer:
    if settings.AI_API_KEY:
        return OpenAICompatibleRenderer(
            api_key=settings.AI_API_KEY,
            base_url=settings.AI_BASE_URL,
            model=settings.AI_MODEL,
            max_tokens=settings.AI_MAX_TOKENS,
            temperature=settings.AI_TEMPERATURE,
            timeout=settings.AI_TIMEOUT_SECONDS,
            max_attempts=settings.AI_MAX_RETRIES,
            global_prompt=settings.AI_GLOBAL_PROMPT,
        )
    return MarkdownRenderer()
