"""
RepoWiki Code Intelligence Library

This package contains the repository indexing and retrieval modules used by
the documentation agent:
- indexing: chunk extraction, domain classification, embeddings, vector search
- code_analysis: lightweight per-file structure summaries
- tools: the search_codebase / analyze_code_structure operations
"""

__version__ = "1.0.0"
