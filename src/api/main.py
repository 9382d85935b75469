import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.api.models import ErrorOut, ErrorResponse, ProcessingOut, RecoveryActionOut
from src.api.routes.chunking import router as chunking_router
from src.chunking.processor import ProcessingError
from src.config import settings
from src.errors.messages import get_recovery_actions, get_user_message
from src.errors.taxonomy import DomainError, ErrorCategory, ErrorType

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="Meeting Transcript Chunker API",
    description="Token-aware chunking and summarization of long meeting transcripts",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://localhost:8501",
    ],
    allow_origin_regex=r"chrome-extension://.*|http://localhost:\d+",
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(chunking_router)


def status_for(error: DomainError) -> int:
    if error.type is ErrorType.API_RATE_LIMITED:
        return 429
    if error.type is ErrorType.API_SERVICE_UNAVAILABLE:
        return 503
    match error.category:
        case ErrorCategory.AUTHENTICATION:
            return 401
        case ErrorCategory.DATA:
            return 422
        case ErrorCategory.NETWORK:
            return 503
        case _:
            return 500


def request_language(request: Request) -> str:
    """First tag of Accept-Language, else the configured error language."""
    header = request.headers.get("accept-language", "")
    tag = header.split(",")[0].split(";")[0].strip()
    return tag or settings.error_language


def error_response(
    error: DomainError,
    request: Request,
    processing: ProcessingOut | None = None,
) -> JSONResponse:
    language = request_language(request)
    message = get_user_message(error, language, settings.show_technical_details)
    body = ErrorResponse(
        error=ErrorOut(
            type=error.type.value,
            category=error.category.value,
            severity=error.severity.value,
            title=message.title,
            description=message.description,
            technical_details=message.technical_details,
            is_retryable=error.is_retryable,
            error_id=error.error_id,
            attempts=error.attempts,
            recovery_actions=[
                RecoveryActionOut(**action.to_dict()) for action in get_recovery_actions(error, language=language)
            ],
        ),
        processing=processing,
    )
    return JSONResponse(status_code=status_for(error), content=body.model_dump())


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    return error_response(exc, request)


@app.exception_handler(ProcessingError)
async def processing_error_handler(request: Request, exc: ProcessingError) -> JSONResponse:
    processing = ProcessingOut(
        stage=exc.stage.value,
        chunk_index=exc.chunk_index,
        chunks_completed=exc.chunks_completed,
        total_chunks=exc.total_chunks,
    )
    return error_response(exc.error, request, processing)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "healthy"}
