from .stream import StreamConnectionError, StreamError, consume

__all__ = ["consume", "StreamError", "StreamConnectionError"]
