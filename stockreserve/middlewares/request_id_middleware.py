import uuid
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from stockreserve.common.constants import REQUEST_ID_HEADER
from stockreserve.common.logging_setup import request_id_ctx

class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):

        req_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())

        token = request_id_ctx.set(req_id)
        try:
            response = await call_next(request)
        finally:
            request_id_ctx.reset(token)
        response.headers[REQUEST_ID_HEADER] = req_id

        return response
