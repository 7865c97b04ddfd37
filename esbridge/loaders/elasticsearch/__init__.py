from .loader import ElasticsearchLoader

__all__ = ["ElasticsearchLoader"]
