"""Response envelopes shared by the HTTP routes and exception handlers."""
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi.responses import JSONResponse


def envelope(data: Any, started: float) -> Dict[str, Any]:
    """Wrap a successful payload with operation metadata."""
    return {
        'success': True,
        'data': data,
        'meta': {
            'operationId': uuid.uuid4().hex[:9],
            'totalTime': int((time.perf_counter() - started) * 1000),
            'timestamp': datetime.now(timezone.utc).isoformat(),
        },
    }


def error_response(status_code: int, code: str, message: str, details: Any = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={'success': False, 'error': {'code': code, 'message': message, 'details': details}},
    )
