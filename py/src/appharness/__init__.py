"""appharness: in-process request simulation and request-body encoders."""

from __future__ import annotations

from appharness.app import Application, ApplicationCall, ApplicationEnvironment, create_app
from appharness.body import BodySource
from appharness.config import MapConfig
from appharness.errors import (
    AppError,
    ConfigError,
    EncodingError,
    HarnessError,
    ResponseAlreadySentError,
    ReuseError,
    error_response,
)
from appharness.form import FORM_CONTENT_TYPE, FormField, decode_form, encode_form
from appharness.logger import CapturingLogger, LogRecord, NoOpLogger, StructuredLogger, get_logger, set_logger
from appharness.middleware import recover_middleware
from appharness.multipart import (
    MULTIPART_FORM_DATA,
    FieldPart,
    FilePart,
    ParsedPart,
    boundary_from_content_type,
    encode_multipart,
    generate_boundary,
    iter_multipart,
    multipart_content_type,
    parse_multipart,
)
from appharness.request import Request, build_request, form_request, multipart_request
from appharness.response import Response, binary, html, no_content, redirect, text
from appharness.sink import InMemorySink, ResponseSink
from appharness.testkit import CallRecord, TestEngine, TestResponse, create_test_engine, with_test_application

__all__ = [
    "FORM_CONTENT_TYPE",
    "MULTIPART_FORM_DATA",
    "AppError",
    "Application",
    "ApplicationCall",
    "ApplicationEnvironment",
    "BodySource",
    "CallRecord",
    "CapturingLogger",
    "ConfigError",
    "EncodingError",
    "FieldPart",
    "FilePart",
    "FormField",
    "HarnessError",
    "InMemorySink",
    "LogRecord",
    "MapConfig",
    "NoOpLogger",
    "ParsedPart",
    "Request",
    "Response",
    "ResponseAlreadySentError",
    "ResponseSink",
    "ReuseError",
    "StructuredLogger",
    "TestEngine",
    "TestResponse",
    "binary",
    "boundary_from_content_type",
    "build_request",
    "create_app",
    "create_test_engine",
    "decode_form",
    "encode_form",
    "encode_multipart",
    "error_response",
    "form_request",
    "generate_boundary",
    "get_logger",
    "html",
    "iter_multipart",
    "multipart_content_type",
    "multipart_request",
    "no_content",
    "parse_multipart",
    "recover_middleware",
    "redirect",
    "set_logger",
    "text",
    "with_test_application",
]
