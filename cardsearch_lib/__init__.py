"""
Card Search Library - Content indexing and full-text search for card notes

This package extracts text from documents and structured card content,
segments Chinese and mixed-language text into search keywords, and keeps a
SQLite FTS5 index that supports ranked, highlighted search.

Modules:
    platform_info - Platform capabilities (encodings, home directory)
    encoding     - Text encoding detection
    file_extract - Extract paginated text from PDF, Office, image and text files
    text_filter  - Plausibility policy separating text from styling metadata
    plain_text   - Extract text from structured card content
    segment      - Chinese segmentation and search keywords
    schema       - Tables, FTS5 indexes and their lifecycle
    outbox       - Post-commit queue for index writes
    cards        - Minimal card store with indexing hooks
    derived_text - Derived text and card_fts writer
    search       - Card search, count, suggestions and content search
    relevance    - In-memory relevance scores and snippets
    similarity   - Hashing-trick vectors for reranking
    documents    - Document page index
    fs_index     - File system indexer
    config       - Settings and .searchignore handling
    cli          - Command line interface
"""

__version__ = "1.0.0"
__all__ = []
