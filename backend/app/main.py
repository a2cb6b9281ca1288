from contextlib import asynccontextmanager
import time

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.browser_pool import BrowserPool
from app.cache import DetectionCache
from app.config import Settings, get_settings
from app.detector import detect_authentication
from app.log_utils import elapsed_ms, generate_request_id, log_error, log_event
from app.models import DetectRequest, DetectResponse
from app.scraper import scrape_website


@asynccontextmanager
async def lifespan(app: FastAPI):
    # One browser and one cache for the whole process. The browser itself
    # starts on the first request, not here.
    settings = get_settings()
    app.state.browser_pool = BrowserPool(settings)
    app.state.detection_cache = DetectionCache(settings)
    yield
    await app.state.browser_pool.shutdown()


app = FastAPI(title="Auth Component Detector", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_browser_pool(request: Request) -> BrowserPool:
    return request.app.state.browser_pool


def get_detection_cache(request: Request) -> DetectionCache:
    return request.app.state.detection_cache


@app.exception_handler(RequestValidationError)
async def invalid_body_handler(request: Request, exc: RequestValidationError):
    return JSONResponse({"error": "Invalid request body"}, status_code=400)


def with_scheme(url: str) -> str:
    """``example.com/login`` -> ``https://example.com/login``."""
    url = url.strip()
    if url and not url.startswith(("http://", "https://")):
        return "https://" + url
    return url


def _payload(response: DetectResponse) -> dict:
    return response.model_dump(mode="json", by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@app.get("/health")
async def health():
    return {"status": "ok"}


@app.post("/detect")
async def detect_endpoint(
    body: DetectRequest,
    pool: BrowserPool = Depends(get_browser_pool),
    cache: DetectionCache = Depends(get_detection_cache),
    settings: Settings = Depends(get_settings),
):
    """
    Detect authentication components on a page.

    Cache hit → stored result with cached=true, no browser work.
    Miss → scrape, detect on the live page, release the page, cache.
    """
    request_id = generate_request_id()
    started = time.monotonic()

    url = with_scheme(body.url or "")
    if not url:
        return JSONResponse({"error": "URL is required"}, status_code=400)

    log_event(request_id, "API_REQUEST_START", url=url)

    try:
        entry = cache.get_entry(url, request_id)
        if entry is not None:
            response = DetectResponse(
                **entry.result.model_dump(),
                page_title=entry.page_title,
                screenshot=entry.screenshot,
                cached=True,
            )
            log_event(request_id, "API_REQUEST_SUCCESS", cached=True, duration=elapsed_ms(started))
            return _payload(response)

        outcome = await scrape_website(url, request_id, pool, settings)
        if not outcome.success or outcome.live is None:
            return JSONResponse(
                {"success": False, "error": outcome.error or "Failed to scrape website"},
                status_code=500,
            )

        try:
            result = await detect_authentication(
                outcome.html,
                url,
                outcome.screenshot,
                outcome.live.page,
                request_id,
                settings,
            )
        finally:
            await outcome.live.release()

        cache.set(url, result, request_id, page_title=outcome.title, screenshot=outcome.screenshot)

        log_event(request_id, "API_REQUEST_SUCCESS",
                  found=result.found,
                  componentCount=len(result.components),
                  detectionMethod=result.detection_method.value,
                  duration=elapsed_ms(started))

        return _payload(DetectResponse(
            **result.model_dump(),
            page_title=outcome.title,
            screenshot=outcome.screenshot,
            cached=False,
        ))

    except Exception as e:
        log_error(request_id, "API_REQUEST_ERROR", e)
        return JSONResponse(
            {"success": False, "error": str(e) or "Internal server error"},
            status_code=500,
        )


@app.get("/detect")
async def detect_status(
    stats: bool = False,
    pool: BrowserPool = Depends(get_browser_pool),
    cache: DetectionCache = Depends(get_detection_cache),
    settings: Settings = Depends(get_settings),
):
    """Health probe. ``?stats=true`` adds cache and browser pool figures."""
    payload = {
        "status": "ok",
        "service": settings.service_name,
        "version": settings.service_version,
    }
    if stats:
        payload["cache"] = cache.stats()
        payload["browserPool"] = pool.health_check()
    return payload


@app.delete("/detect")
async def invalidate_cache(
    url: str | None = None,
    cache: DetectionCache = Depends(get_detection_cache),
):
    """``?url=`` drops one entry; no url clears everything."""
    request_id = generate_request_id()
    if url:
        return {"deleted": cache.invalidate(with_scheme(url), request_id)}
    cleared = cache.clear(request_id)
    return {"cleared": True, "entriesCleared": cleared}
