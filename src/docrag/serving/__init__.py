"""
Serving — FastAPI application for uploads and questions.

This module exposes the ingestion coordinator, retrieval engine and
answer service over HTTP so they can run as a standalone container.
"""
