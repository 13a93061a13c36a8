"""
Document-intelligence (OCR) client.

Uniform submit -> poll -> fetch-result contract over the MinerU batch API,
plus an offline mock that serves a fixed page fixture. Both variants record
their tasks in an injected registry so callers (and tests) own its lifetime.
"""

import asyncio
import io
import json
import uuid
import zipfile
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, Dict, List, Optional

import httpx

from papergrader.config import (
    logger,
    mineru_enabled,
    MINERU_BASE_URL,
    MINERU_API_KEY,
    MINERU_MODEL_VERSION,
    OCR_POLL_INTERVAL,
    OCR_POLL_MAX_ATTEMPTS,
    OCR_HTTP_TIMEOUT,
)
from papergrader.errors import OcrTaskFailed, OcrTimeout, ProviderUnavailable, UploadFailed
from papergrader.models import (
    MockOcrTask,
    OcrSpan,
    OcrTask,
    OcrTaskState,
    OcrTaskStatus,
    PageOcrResult,
    PageSize,
    RealOcrTask,
    UploadTarget,
)
from papergrader.utils.hashing import get_page_file_name, get_page_hash

Sleep = Callable[[float], Awaitable[None]]


class InMemoryTaskRegistry:
    """OCR tasks keyed by id, scoped to whoever created the registry."""

    def __init__(self):
        self._tasks: Dict[str, OcrTask] = {}

    def put(self, task: OcrTask) -> OcrTask:
        self._tasks[task.id] = task
        return task

    def get(self, task_id: str) -> Optional[OcrTask]:
        return self._tasks.get(task_id)

    def list(self) -> List[OcrTask]:
        return list(self._tasks.values())

    def __len__(self):
        return len(self._tasks)


class DocumentIntelligenceClient:
    """Base client: the poll loop and the single-page cycle are shared by every variant."""

    source = "base"

    def __init__(self, registry: Optional[InMemoryTaskRegistry] = None,
                 poll_interval: float = OCR_POLL_INTERVAL,
                 max_poll_attempts: int = OCR_POLL_MAX_ATTEMPTS,
                 sleep: Sleep = asyncio.sleep):
        self.tasks = registry if registry is not None else InMemoryTaskRegistry()
        self.poll_interval = poll_interval
        self.max_poll_attempts = max_poll_attempts
        self._sleep = sleep

    # --- provider operations, implemented per variant ---

    async def request_upload_target(self, file_name: str, correlation_id: str) -> UploadTarget:
        raise NotImplementedError

    async def upload_bytes(self, upload_url: str, data: bytes) -> None:
        raise NotImplementedError

    async def get_task_state(self, batch_id: str) -> OcrTaskState:
        raise NotImplementedError

    async def fetch_result(self, state: OcrTaskState) -> PageOcrResult:
        raise NotImplementedError

    def _new_task(self, target: UploadTarget, file_name: str) -> OcrTask:
        raise NotImplementedError

    # --- shared lifecycle ---

    async def submit(self, file_name: str, data: bytes, correlation_id: Optional[str] = None) -> OcrTask:
        """Request an upload target, upload the bytes, return the task in processing state."""
        correlation_id = correlation_id or uuid.uuid4().hex
        target = await self.request_upload_target(file_name, correlation_id)
        task = self.tasks.put(self._new_task(target, file_name))
        try:
            await self.upload_bytes(target.upload_url, data)
        except UploadFailed as e:
            task.advance(OcrTaskStatus.ERROR, error=e.message)
            raise
        # queued only lasts until the provider acknowledged the upload
        task.advance(OcrTaskStatus.PROCESSING, progress=10)
        logger.info(f"[OCR] Submitted {file_name} as {self.source} task {task.id}")
        return task

    async def refresh(self, task: OcrTask) -> OcrTask:
        """Update a task from one poll. Terminal tasks are returned unchanged."""
        if task.status.is_terminal:
            return task
        state = await self.get_task_state(task.id)
        task.advance(
            state.status,
            progress=state.progress,
            full_result_url=state.full_result_url,
            error=state.error,
            trace_id=state.trace_id,
        )
        return task

    async def create_and_poll(self, batch_id: str) -> OcrTaskState:
        """
        Poll until the batch is done or errored. Transient provider failures use
        up an attempt; running out of attempts raises OcrTimeout.
        """
        for attempt in range(1, self.max_poll_attempts + 1):
            try:
                state = await self.get_task_state(batch_id)
            except ProviderUnavailable as e:
                logger.warning(f"[OCR] Poll {attempt}/{self.max_poll_attempts} for {batch_id} failed: {e}")
                state = None

            if state is not None:
                task = self.tasks.get(batch_id)
                if task is not None:
                    task.advance(state.status, progress=state.progress,
                                 full_result_url=state.full_result_url, error=state.error)
                if state.status.is_terminal:
                    logger.info(f"[OCR] Batch {batch_id} finished as {state.status.value} after {attempt} polls")
                    return state

            if attempt < self.max_poll_attempts:
                await self._sleep(self.poll_interval)

        logger.error(f"[OCR] Batch {batch_id} timed out after {self.max_poll_attempts} polls")
        raise OcrTimeout(batch_id, self.max_poll_attempts)

    async def fetch_page(self, image_bytes: bytes, file_name: Optional[str] = None) -> PageOcrResult:
        """Full submit/upload/poll/download cycle for one page image."""
        file_name = file_name or get_page_file_name(image_bytes)
        task = await self.submit(file_name, image_bytes, correlation_id=get_page_hash(image_bytes)[:32])
        state = await self.create_and_poll(task.id)
        if state.status == OcrTaskStatus.ERROR:
            raise OcrTaskFailed(task.id, state.error)
        result = await self.fetch_result(state)
        logger.info(f"[OCR] {file_name}: {len(result.spans)} spans")
        return result


# ============== MinerU ==============

def _normalize_state(batch_id: str, payload: dict) -> OcrTaskState:
    results = (payload.get("data") or {}).get("extract_result") or []
    if not results:
        # Accepted but not scheduled yet
        return OcrTaskState(task_id=batch_id, status=OcrTaskStatus.PROCESSING, progress=10,
                            trace_id=payload.get("trace_id"))

    result = results[0]
    state = result.get("state")
    if state == "done":
        status, progress = OcrTaskStatus.DONE, 100
    elif state == "failed":
        status, progress = OcrTaskStatus.ERROR, 0
    else:
        status, progress = OcrTaskStatus.PROCESSING, 50

    return OcrTaskState(
        task_id=batch_id,
        status=status,
        state=state,
        progress=progress,
        full_result_url=result.get("full_zip_url"),
        error=result.get("err_msg") or None,
        trace_id=payload.get("trace_id"),
    )


def _collect_spans(blocks: list, out: List[OcrSpan]):
    for block in blocks or []:
        for line in block.get("lines") or []:
            for span in line.get("spans") or []:
                content = (span.get("content") or "").strip()
                bbox = span.get("bbox")
                if content and bbox and len(bbox) == 4:
                    out.append(OcrSpan(content=content, bbox=bbox))
        # Image/table/list blocks nest their text blocks one level down
        _collect_spans(block.get("blocks"), out)


def parse_middle_json(doc: dict, page_index: int = 0) -> PageOcrResult:
    pages = doc.get("pdf_info") or []
    if not pages or page_index >= len(pages):
        return PageOcrResult(spans=[])
    page = pages[page_index]

    spans: List[OcrSpan] = []
    _collect_spans(page.get("para_blocks") or page.get("preproc_blocks"), spans)

    size = page.get("page_size")
    page_size = None
    if isinstance(size, (list, tuple)) and len(size) == 2:
        page_size = PageSize(width=size[0], height=size[1])
    elif isinstance(size, dict):
        page_size = PageSize(width=size.get("width", 0), height=size.get("height", 0))
    return PageOcrResult(spans=spans, page_size=page_size)


def parse_result_archive(zip_bytes: bytes) -> PageOcrResult:
    """Pick the layout JSON out of a MinerU result ZIP and flatten it into spans."""
    with zipfile.ZipFile(io.BytesIO(zip_bytes)) as zf:
        names = [n for n in zf.namelist() if not n.endswith("/") and not n.startswith("__MACOSX")]
        layout = next((n for n in names if n.endswith("_middle.json")), None)
        if layout is None:
            layout = next((n for n in names if n.endswith("layout.json")), None)
        if layout is None:
            raise ProviderUnavailable(f"No layout JSON in result archive ({len(names)} files)")
        doc = json.loads(zf.read(layout).decode("utf-8"))
    return parse_middle_json(doc)


class MineruClient(DocumentIntelligenceClient):
    """MinerU v4 batch API: file-urls/batch -> PUT -> extract-results/batch/{id} -> result ZIP."""

    source = "real"

    def __init__(self, base_url: str = MINERU_BASE_URL, api_key: str = MINERU_API_KEY,
                 http_client: Optional[httpx.AsyncClient] = None,
                 model_version: str = MINERU_MODEL_VERSION, **kwargs):
        super().__init__(**kwargs)
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model_version = model_version
        self._http = http_client

    @property
    def headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    @staticmethod
    def _json_body(response: httpx.Response, what: str) -> dict:
        # Gateways sometimes answer 2xx with an HTML error page
        try:
            payload = response.json()
        except ValueError:
            raise ProviderUnavailable(f"{what} returned a non-JSON body: {response.text[:120]!r}",
                                      status=response.status_code)
        if not isinstance(payload, dict):
            raise ProviderUnavailable(f"{what} returned unexpected JSON", status=response.status_code)
        return payload

    @asynccontextmanager
    async def _client(self):
        if self._http is not None:
            yield self._http
        else:
            async with httpx.AsyncClient(timeout=OCR_HTTP_TIMEOUT) as client:
                yield client

    def _new_task(self, target: UploadTarget, file_name: str) -> OcrTask:
        return RealOcrTask(id=target.batch_id, file_name=file_name, trace_id=target.trace_id)

    async def request_upload_target(self, file_name: str, correlation_id: str) -> UploadTarget:
        body = {
            "files": [{"name": file_name, "data_id": correlation_id}],
            "model_version": self.model_version,
        }
        try:
            async with self._client() as client:
                response = await client.post(f"{self.base_url}/file-urls/batch", json=body, headers=self.headers)
        except httpx.HTTPError as e:
            raise ProviderUnavailable(f"Upload URL request failed: {e}")

        if not response.is_success:
            raise ProviderUnavailable(f"Upload URL request failed ({response.status_code})", status=response.status_code)

        payload = self._json_body(response, "Upload URL request")
        data = payload.get("data") or {}
        if payload.get("code") != 0 or not data.get("file_urls"):
            raise ProviderUnavailable(payload.get("msg") or "Upload URL request rejected")

        return UploadTarget(upload_url=data["file_urls"][0], batch_id=data["batch_id"],
                            trace_id=payload.get("trace_id"))

    async def upload_bytes(self, upload_url: str, data: bytes) -> None:
        logger.info(f"[OCR] Uploading {len(data)} bytes to: {upload_url[:50]}...")
        # No Content-Type: the signed storage URL rejects a mismatched one
        # (SignatureDoesNotMatch). httpx adds none for raw bytes.
        headers = {"Content-Length": str(len(data))}
        try:
            async with self._client() as client:
                response = await client.put(upload_url, content=data, headers=headers)
        except httpx.HTTPError as e:
            raise UploadFailed(0, str(e))

        if not response.is_success:
            raise UploadFailed(response.status_code, response.text)

    async def get_task_state(self, batch_id: str) -> OcrTaskState:
        try:
            async with self._client() as client:
                response = await client.get(f"{self.base_url}/extract-results/batch/{batch_id}",
                                            headers=self.headers)
        except httpx.HTTPError as e:
            raise ProviderUnavailable(f"Batch status query failed: {e}")

        if not response.is_success:
            raise ProviderUnavailable(f"Batch status query failed ({response.status_code})", status=response.status_code)

        payload = self._json_body(response, "Batch status query")
        if payload.get("code") != 0:
            raise ProviderUnavailable(payload.get("msg") or "Batch status query rejected")
        return _normalize_state(batch_id, payload)

    async def fetch_result(self, state: OcrTaskState) -> PageOcrResult:
        if not state.full_result_url:
            raise ProviderUnavailable(f"Batch {state.task_id} finished without a result archive")
        try:
            async with self._client() as client:
                response = await client.get(state.full_result_url)
        except httpx.HTTPError as e:
            raise ProviderUnavailable(f"Result download failed: {e}")
        if not response.is_success:
            raise ProviderUnavailable(f"Result download failed ({response.status_code})", status=response.status_code)

        try:
            return await asyncio.to_thread(parse_result_archive, response.content)
        except (zipfile.BadZipFile, ValueError) as e:
            raise ProviderUnavailable(f"Unreadable result archive: {e}")


# ============== Mock ==============

MOCK_PAGE_FIXTURE = PageOcrResult(
    page_size=PageSize(width=1240, height=1754),
    spans=[
        OcrSpan(content="Name: Test Student", bbox=[80, 40, 420, 80]),
        OcrSpan(content="B", bbox=[200, 230, 240, 270]),
        OcrSpan(content="True", bbox=[200, 430, 290, 470]),
        OcrSpan(content="energy into chemical energy", bbox=[120, 700, 620, 740]),
        OcrSpan(content="Photosynthesis converts light", bbox=[120, 640, 640, 680]),
    ],
)


class MockDocumentClient(DocumentIntelligenceClient):
    """
    Offline variant. Each poll advances progress by 20 until done; the result is
    always the same fixture.
    """

    source = "mock"

    def __init__(self, fixture: PageOcrResult = MOCK_PAGE_FIXTURE, progress_step: int = 20,
                 poll_interval: float = 0.2, **kwargs):
        super().__init__(poll_interval=poll_interval, **kwargs)
        self.fixture = fixture
        self.progress_step = progress_step

    def _new_task(self, target: UploadTarget, file_name: str) -> OcrTask:
        return MockOcrTask(id=target.batch_id, file_name=file_name)

    async def request_upload_target(self, file_name: str, correlation_id: str) -> UploadTarget:
        batch_id = f"mock_{uuid.uuid4().hex[:12]}"
        return UploadTarget(upload_url=f"mock://upload/{batch_id}", batch_id=batch_id)

    async def upload_bytes(self, upload_url: str, data: bytes) -> None:
        if not data:
            raise UploadFailed(400, "empty payload")

    async def get_task_state(self, batch_id: str) -> OcrTaskState:
        task = self.tasks.get(batch_id)
        if task is None:
            raise ProviderUnavailable(f"Task not found: {batch_id}", status=404)

        if not task.status.is_terminal:
            progress = min(task.progress + self.progress_step, 100)
            if progress >= 100:
                task.advance(OcrTaskStatus.DONE, progress=100, result=self.fixture)
            else:
                task.advance(OcrTaskStatus.PROCESSING, progress=progress)

        return OcrTaskState(task_id=task.id, status=task.status, progress=task.progress,
                            full_result_url=f"mock://result/{task.id}" if task.status == OcrTaskStatus.DONE else None)

    async def fetch_result(self, state: OcrTaskState) -> PageOcrResult:
        task = self.tasks.get(state.task_id)
        if task is None or task.result is None:
            raise ProviderUnavailable(f"No mock result for {state.task_id}")
        return task.result


def get_document_client(registry: Optional[InMemoryTaskRegistry] = None,
                        http_client: Optional[httpx.AsyncClient] = None) -> DocumentIntelligenceClient:
    """Real MinerU client when configured, otherwise the offline mock."""
    if mineru_enabled():
        return MineruClient(registry=registry, http_client=http_client)
    logger.info("MinerU not configured - using mock document client")
    return MockDocumentClient(registry=registry)
