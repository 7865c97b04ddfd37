from .extractor import ElasticsearchExtractor

__all__ = ["ElasticsearchExtractor"]
