"""lexrag ingest pipeline: text extraction, sentence chunking, batched embedding."""

from lexrag.ingest.chunker import SentenceChunker, chunk
from lexrag.ingest.extract import ExtractedText, FileSource, UrlSource, extract_text
from lexrag.ingest.pipeline import IngestionPipeline, build_pipeline
from lexrag.ingest.web import WebFetcher

__all__ = [
    "ExtractedText",
    "FileSource",
    "IngestionPipeline",
    "SentenceChunker",
    "UrlSource",
    "WebFetcher",
    "build_pipeline",
    "chunk",
    "extract_text",
]
