"""
RAG (Retrieval Augmented Generation) module for the document chat service.

This package turns document text into embeddings and ranks document lines
against a user query so the chat driver can ground its answer in them.

Components:
    - cache_store: In-process key/value cache with optional expiry
    - embedder: OpenAI embeddings and cosine similarity scoring
    - chunker: Size-bounded embedding batches with halving back-off
    - chunk_store: ChromaDB persistence of embedding batches
    - vector_cache: Get-or-compute embeddings per (container, document)
    - retriever: Query-time ranking across document sources
"""
