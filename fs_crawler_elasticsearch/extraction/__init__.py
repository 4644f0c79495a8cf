from .extractor import ContentExtractor, ExtractionResult, TextExtractor

__all__ = ['ContentExtractor', 'ExtractionResult', 'TextExtractor']
