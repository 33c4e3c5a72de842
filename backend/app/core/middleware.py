import time
import logging
from uuid import uuid4

from fastapi import Request, HTTPException
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

# === 结构化日志配置 ===
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("rpms")

REQUEST_ID_HEADER = "X-Request-ID"


class ExceptionHandlerMiddleware(BaseHTTPMiddleware):
    """
    统一异常捕获中间件

    中文注释:
    - 每个请求记录 method/path/status/耗时，并透传（或生成）X-Request-ID 便于串联日志。
    - 未处理异常统一转为 500，且不向调用方泄露内部细节（“nothing changed” 语义由调用方解读）。
    """
    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        request_id = (request.headers.get(REQUEST_ID_HEADER) or "").strip() or uuid4().hex[:12]
        try:
            response = await call_next(request)
            process_time = time.time() - start_time
            logger.info(
                "rid=%s method=%s path=%s status=%s time=%.4fs",
                request_id,
                request.method,
                request.url.path,
                response.status_code,
                process_time,
            )
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        except HTTPException as exc:
            return JSONResponse(
                status_code=exc.status_code,
                content={"detail": exc.detail, "type": "http_exception"},
                headers={REQUEST_ID_HEADER: request_id},
            )
        except Exception as e:
            logger.error("rid=%s unhandled exception: %s", request_id, e, exc_info=True)
            return JSONResponse(
                status_code=500,
                content={"detail": "Internal server error", "type": "server_error"},
                headers={REQUEST_ID_HEADER: request_id},
            )
