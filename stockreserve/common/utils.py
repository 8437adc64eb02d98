from datetime import datetime,timedelta,timezone
from typing import Any, Dict, Optional, Union

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

def now() -> datetime:
    return datetime.now(timezone.utc)


def expiry_from_now(minutes: float, start: Optional[datetime] = None) -> datetime:
    return (start or now()) + timedelta(minutes=minutes)


def build_success(data: Any,
                  trace_id: Optional[str] = None,request_id: Optional[str] = None,) -> Dict[str, Any]:
    return {
        "status": "ok",
        "data": data,
        "error": None,
        "trace_id": trace_id,
        "request_id": request_id,
    }

def build_error(code: Union[str, int] = "UNKNOWN_ERROR",
                details: Optional[Any] = None,
                request_id: Optional[str] = None,
                trace_id: Optional[str] = None) -> Dict[str, Any]:

    return {
        "status": "error",
        "data": None,
        "error": {"code": code, "details": details},
        "trace_id": trace_id,
        "request_id": request_id,
    }

def json_ok(content: Dict[str, Any], status_code: int = 200,headers = None) -> JSONResponse:
    return JSONResponse(jsonable_encoder(content), status_code=status_code,headers=headers)

def json_error(content: Dict[str, Any], status_code: int = 500, headers=None) -> JSONResponse:
    return JSONResponse(jsonable_encoder(content), status_code=status_code, headers=headers)

def success_response(data: Any, status_code: int = 200,headers: Optional[Dict[str, Any]] = None ,
                     trace_id: Optional[str] = None , request_id: Optional[str] = None) -> JSONResponse:
    content = build_success(data, request_id=request_id, trace_id=trace_id)
    return json_ok(content, status_code=status_code,headers=headers)
