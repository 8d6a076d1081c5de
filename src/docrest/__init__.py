"""docrest: schema-driven REST document resources."""

__version__ = "0.1.0"

from docrest.coerce import MISMATCH, coerce_value
from docrest.config import ServiceConfig
from docrest.errors import (
    ConfigurationError,
    ConflictError,
    DocrestError,
    DuplicateKeyError,
    NotFoundError,
    QueryError,
    SearchBackendError,
    StorageError,
    ValidationError,
)
from docrest.indexes import Index, IndexScheduler
from docrest.kinds import Kind
from docrest.processor import Processor
from docrest.query import CompiledQuery, QueryCompiler, compile_query
from docrest.response import PageData, Rsp
from docrest.schema import FieldSet, UInt64
from docrest.search import ElasticsearchBackend
from docrest.service import Service
from docrest.storage import SqliteDocumentStore
from docrest.validate import check_object

__all__ = [
    "__version__",
    "Kind",
    "MISMATCH",
    "coerce_value",
    "FieldSet",
    "UInt64",
    "check_object",
    "QueryCompiler",
    "CompiledQuery",
    "compile_query",
    "Index",
    "IndexScheduler",
    "Processor",
    "Service",
    "ServiceConfig",
    "SqliteDocumentStore",
    "ElasticsearchBackend",
    "Rsp",
    "PageData",
    "DocrestError",
    "ConfigurationError",
    "QueryError",
    "ValidationError",
    "ConflictError",
    "NotFoundError",
    "StorageError",
    "SearchBackendError",
    "DuplicateKeyError",
]
