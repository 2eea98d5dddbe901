"""RAG (Retrieval-Augmented Generation) pipeline components.

This package contains modules for:
- PDF text extraction
- Document chunking with overlap
- Embedding generation
- Per-document FAISS indexes and their persistence
- The durable document registry
- Semantic retrieval and grounded answer generation
"""
