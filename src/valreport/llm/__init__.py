"""
Generation client package.

This package wraps the text/document generation provider:
- AnthropicProvider: raw calls through the Anthropic SDK
- classify_error / RetryPolicy: one failure taxonomy and wait schedule
- GenerationClient: retrying entry point used by the pipeline
"""

from valreport.llm.base import (
    Err,
    ErrorType,
    GenerationError,
    GenerationErrorDetail,
    GenerationOptions,
    GenerationProvider,
    GenerationRequest,
    GenerationResponse,
    Ok,
    Result,
)
from valreport.llm.client import GenerationClient, as_result, strip_code_fences
from valreport.llm.errors import CallKind, RetryPolicy, backoff_delay_ms, classify_error

__all__ = [
    "CallKind",
    "Err",
    "ErrorType",
    "GenerationClient",
    "GenerationError",
    "GenerationErrorDetail",
    "GenerationOptions",
    "GenerationProvider",
    "GenerationRequest",
    "GenerationResponse",
    "Ok",
    "Result",
    "RetryPolicy",
    "as_result",
    "backoff_delay_ms",
    "classify_error",
    "strip_code_fences",
]
