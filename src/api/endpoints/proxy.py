import structlog
from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError

from src.api.deps import get_pipeline, require_api_key
from src.core.exceptions import InvalidRequestError
from src.schemas.proxy import ErrorResponse, IngestRequest, ProxyResponse
from src.services.pipeline import ProxyPipeline

logger = structlog.get_logger()

router = APIRouter()


@router.post(
    "/proxy",
    response_model=ProxyResponse,
    responses={500: {"model": ErrorResponse}},
    dependencies=[Depends(require_api_key)],
)
async def proxy_image(request: Request, pipeline: ProxyPipeline = Depends(get_pipeline)) -> ProxyResponse:
    # Body is parsed by hand so malformed JSON gets the same 500 envelope as every other ingest failure.
    try:
        body = IngestRequest.model_validate_json(await request.body())
    except ValidationError as e:
        logger.warning("invalid_proxy_request", errors=e.error_count())
        raise InvalidRequestError("invalid body") from e
    return await pipeline.ingest(body.url)
