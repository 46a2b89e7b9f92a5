import time
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from medislot.core.logger import logger

class LogMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start_time = time.time()

        response = await call_next(request)

        process_time = time.time() - start_time
        tenant = getattr(request.state, "tenant_id", None)

        logger.info(
            f"Method: {request.method} | "
            f"Path: {request.url.path} | "
            f"Status: {response.status_code} | "
            f"Tenant: {tenant or '-'} | "
            f"Duration: {process_time:.4f}s"
        )

        return response
