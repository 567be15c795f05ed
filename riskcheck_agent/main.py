from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from functools import lru_cache

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .collaborators import CallerDirectory
from .config import Settings
from .engine import RiskEngine, ScanOutcome, build_directory, build_engine
from .heuristics import normalize_url
from .logger import get_logger
from .models import (
    GUEST,
    AnalyzeLinkRequest,
    AssessProductRequest,
    BulkScanItem,
    BulkScanRequest,
    BulkScanResponse,
    BulkScanSummary,
    CallerIdentity,
    ProductMetadata,
    QuotaExceeded,
    ScanRequest,
)

logger = get_logger(__name__)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()


@lru_cache(maxsize=1)
def get_engine() -> RiskEngine:
    return build_engine(get_settings())


@lru_cache(maxsize=1)
def get_directory() -> CallerDirectory:
    return build_directory()


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.bulk_semaphore = asyncio.Semaphore(get_settings().bulk_jobs)
    yield


app = FastAPI(title="RiskCheck Agent", version="0.1.0", lifespan=lifespan)


def get_bulk_semaphore(request: Request) -> asyncio.Semaphore:
    return request.app.state.bulk_semaphore


@asynccontextmanager
async def _bulk_slot(semaphore: asyncio.Semaphore, timeout_s: float):
    try:
        await asyncio.wait_for(semaphore.acquire(), timeout=timeout_s)
    except asyncio.TimeoutError:
        raise HTTPException(
            status_code=503,
            detail="Agent busy (too many concurrent bulk scans). Please retry.",
            headers={"Retry-After": "2"},
        )
    try:
        yield
    finally:
        semaphore.release()


# For local dev, this defaults to allowing http://localhost:3000.
# In production, set RISKCHECK_CORS_ORIGINS to the deployed frontend origins.
app.add_middleware(
    CORSMiddleware,
    allow_origins=list(get_settings().cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def _validation_error(request: Request, exc: RequestValidationError):
    details = [f"{'.'.join(str(p) for p in e.get('loc', ()))}: {e.get('msg')}" for e in exc.errors()]
    return JSONResponse(status_code=400, content={"error": "Invalid request", "details": details})


@app.exception_handler(HTTPException)
async def _http_error(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.detail},
        headers=exc.headers,
    )


def _bad_request(error: str, *details: str) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": error, "details": list(details)})


async def resolve_caller(
    authorization: str | None = Header(None),
    directory: CallerDirectory = Depends(get_directory),
) -> CallerIdentity:
    if not authorization:
        return GUEST
    token = authorization.removeprefix("Bearer ").strip()
    profile = await directory.resolve(token)
    return CallerIdentity(profile=profile) if profile else GUEST


def _scan_response(caller: CallerIdentity, outcome: ScanOutcome):
    if isinstance(outcome.result, QuotaExceeded):
        return JSONResponse(status_code=429, content=outcome.result.to_response())

    usage = outcome.usage
    return {
        "success": True,
        "analysis": outcome.result.to_response(),
        "scansUsed": usage.scans_used if usage else None,
        "scanLimit": usage.effective_limit if usage else None,
        "isPremium": not caller.is_guest and not outcome.metered,
    }


@app.get("/healthz")
def healthz():
    return {"ok": True}


@app.post("/analyze-link")
async def analyze_link_endpoint(
    req: AnalyzeLinkRequest,
    caller: CallerIdentity = Depends(resolve_caller),
    engine: RiskEngine = Depends(get_engine),
):
    try:
        url = normalize_url(req.url)
    except ValueError as e:
        return _bad_request("Invalid URL format", str(e))

    outcome = await engine.run(ScanRequest(kind="link", url=url, caller=caller, sources=req.sources))
    return _scan_response(caller, outcome)


def _product_request(
    metadata: ProductMetadata, image_ref: str | None, caller: CallerIdentity, sources: str = "all"
) -> ScanRequest:
    if metadata.listing_url:
        metadata = metadata.model_copy(update={"listing_url": normalize_url(metadata.listing_url)})
    if image_ref and not image_ref.startswith("data:") and "://" in image_ref:
        if not image_ref.lower().startswith(("http://", "https://")):
            raise ValueError("Image URL must use http(s).")
    return ScanRequest(kind="product", image_ref=image_ref, metadata=metadata, caller=caller, sources=sources)


@app.post("/assess-product")
async def assess_product_endpoint(
    req: AssessProductRequest,
    caller: CallerIdentity = Depends(resolve_caller),
    engine: RiskEngine = Depends(get_engine),
):
    metadata = req.product_info.to_metadata() if req.product_info else ProductMetadata()
    image_ref = req.image_data or req.image_url
    if not image_ref and not metadata.text() and not metadata.listing_url:
        return _bad_request("Image data, image URL or product info is required")

    try:
        scan_request = _product_request(metadata, image_ref, caller, req.sources)
    except ValueError as e:
        return _bad_request("Invalid product details", str(e))

    outcome = await engine.run(scan_request)
    return _scan_response(caller, outcome)


@app.get("/quota")
async def quota_endpoint(
    caller: CallerIdentity = Depends(resolve_caller),
    engine: RiskEngine = Depends(get_engine),
):
    return await engine.quota.describe(caller)


@app.post("/bulk-scan", response_model=BulkScanResponse)
async def bulk_scan_endpoint(
    req: BulkScanRequest,
    caller: CallerIdentity = Depends(resolve_caller),
    engine: RiskEngine = Depends(get_engine),
    settings: Settings = Depends(get_settings),
    semaphore: asyncio.Semaphore = Depends(get_bulk_semaphore),
):
    if caller.is_guest:
        raise HTTPException(status_code=401, detail="Authorization required")
    profile = caller.profile
    if profile.subscription_tier != "premium_seller" or not engine.quota.is_privileged(profile, engine.quota.clock()):
        raise HTTPException(status_code=403, detail="Bulk scanning is only available for Premium Seller subscribers")
    if len(req.products) > settings.bulk_max_products:
        return _bad_request(f"Maximum {settings.bulk_max_products} products per batch")

    items: list[BulkScanItem | None] = [None] * len(req.products)
    requests: list[ScanRequest] = []
    positions: list[int] = []
    for i, product in enumerate(req.products):
        metadata = ProductMetadata(
            name=product.name,
            price=str(product.price) if product.price is not None else None,
            vendor=product.vendor,
            description=product.description,
            listing_url=product.listing_url,
        )
        try:
            requests.append(_product_request(metadata, product.image_url, caller))
            positions.append(i)
        except ValueError as e:
            items[i] = BulkScanItem(product=product.model_dump(), success=False, error=str(e))

    async with _bulk_slot(semaphore, settings.bulk_acquire_timeout_s):
        outcomes = await engine.assess_many(requests, concurrency=settings.bulk_concurrency)

    for i, outcome in zip(positions, outcomes):
        product = req.products[i].model_dump()
        if isinstance(outcome, BaseException):
            logger.error("bulk_item_failed", index=i, error=repr(outcome))
            items[i] = BulkScanItem(product=product, success=False, error="Assessment failed")
        else:
            items[i] = BulkScanItem(product=product, success=True, assessment=outcome.to_response())

    results = [item for item in items if item is not None]
    successful = sum(1 for r in results if r.success)
    logger.info("bulk_scan_completed", user_id=profile.user_id, total=len(results), successful=successful)
    return BulkScanResponse(
        results=results,
        summary=BulkScanSummary(total=len(results), successful=successful, failed=len(results) - successful),
    )
