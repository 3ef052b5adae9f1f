from .page_processor import PageTextProcessor

__all__ = ["PageTextProcessor"]
