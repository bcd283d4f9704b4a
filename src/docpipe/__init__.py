"""docpipe: cached retrieval and declarative transformation of remote documents."""

from __future__ import annotations

import warnings
from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("docpipe")
except PackageNotFoundError:
    # Source-tree execution without installed package metadata.
    warnings.warn(
        "Package metadata for 'docpipe' not found; using fallback version '0.0.0+unknown'.",
        RuntimeWarning,
        stacklevel=2,
    )
    __version__ = "0.0.0+unknown"

from docpipe.cache import FileCache, PseudoCache  # noqa: E402
from docpipe.document import Document, create_document, md5_cache_id, uri_template  # noqa: E402
from docpipe.errors import (  # noqa: E402
    CacheEntryNotFoundError,
    CacheError,
    ConfigurationError,
    DocpipeError,
    ErrorCode,
    SpecError,
)
from docpipe.transformer import (  # noqa: E402
    create_additive_transformer,
    create_transformer,
    get_transformed_data,
    no_transform,
    validate_spec,
)

__all__ = [
    "__version__",
    # pipeline
    "Document",
    "create_document",
    "md5_cache_id",
    "uri_template",
    # caches
    "FileCache",
    "PseudoCache",
    # transformation
    "create_transformer",
    "create_additive_transformer",
    "get_transformed_data",
    "no_transform",
    "validate_spec",
    # errors
    "ErrorCode",
    "DocpipeError",
    "ConfigurationError",
    "SpecError",
    "CacheError",
    "CacheEntryNotFoundError",
]
