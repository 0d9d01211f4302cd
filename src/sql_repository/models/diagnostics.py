"""Execution diagnostics event model."""

import time
from typing import Any, Optional

from pydantic import BaseModel, Field

BEFORE_EXECUTE = "before-execute"
AFTER_EXECUTE = "after-execute"
ERROR_EXECUTE = "error-execute"


def now_millis() -> int:
    """Current UTC time in epoch milliseconds."""
    return time.time_ns() // 1_000_000


class DiagnosticsEvent(BaseModel):
    """Record of one statement dispatch, delivered to diagnostics subscribers."""

    sql: str = Field(..., description="SQL text sent to the driver")
    parameters: Any = Field(None, description="Caller's parameter object")
    data_source: Optional[str] = Field(None, description="Sanitized connection URL")
    operation: str = Field(..., description="Event name")
    timestamp: int = Field(..., description="Dispatch start, epoch milliseconds")
    elapsed_milliseconds: Optional[int] = Field(
        None, description="Time from dispatch to completion"
    )
    exception: Optional[BaseException] = Field(
        None, description="Failure raised by the driver"
    )

    model_config = {"frozen": True, "arbitrary_types_allowed": True}

    def completed(
        self, operation: str, exception: Optional[BaseException] = None
    ) -> "DiagnosticsEvent":
        """Derive the terminal event for this dispatch."""
        elapsed = max(0, now_millis() - self.timestamp)
        return self.model_copy(
            update={
                "operation": operation,
                "elapsed_milliseconds": elapsed,
                "exception": exception,
            }
        )
