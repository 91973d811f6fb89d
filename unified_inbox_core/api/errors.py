"""Maps the package exception hierarchy onto HTTP responses."""

from fastapi import Request, Response

from ..config import get_config
from ..exceptions import BaseError
from ..utils.json_utils import dumps


async def base_error_handler(request: Request, exc: BaseError) -> Response:
    """Serialize with the error's own status code (401 reconnect vs 502 outage)."""
    return Response(
        content=dumps(exc.to_dict(include_cause=get_config().debug)),
        status_code=exc.status_code,
        media_type="application/json",
    )
