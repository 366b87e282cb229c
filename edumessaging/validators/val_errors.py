from typing import Dict, List, Optional
from fastapi import HTTPException


class MessageValidationError(HTTPException):
    """400 carrying every offending field, not just the first one."""

    def __init__(self, detail: str, fields: Optional[List[Dict[str, str]]] = None):
        super().__init__(status_code=400, detail=detail)
        self.fields = fields or []


class MessageNotFoundError(HTTPException):
    def __init__(self, detail: str = "Message not found"):
        super().__init__(status_code=404, detail=detail)


class MessageForbiddenError(HTTPException):
    def __init__(self, detail: str):
        super().__init__(status_code=403, detail=detail)


class ServiceUnavailableError(HTTPException):
    """The store is unreachable or an operation ran past its time budget."""

    def __init__(self, detail: str = "Message store is temporarily unavailable, please retry",
                 retry_after: int = 5):
        super().__init__(
            status_code=503,
            detail=detail,
            headers={"Retry-After": str(retry_after)}
        )
