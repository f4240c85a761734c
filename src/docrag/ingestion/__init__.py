"""
Ingestion — text extraction, normalization, chunking, and embedding.

This package turns an uploaded PDF, Excel or PowerPoint file into a
stored document plus numbered chunks, each carrying an embedding when
the embedding API could produce one. :mod:`docrag.ingestion.coordinator`
drives the stages; the other modules are the individual steps.
"""
