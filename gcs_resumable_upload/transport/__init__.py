from .aiohttp_transport import AiohttpTransport
from .transport import StreamingRequest, Transport

__all__ = ["AiohttpTransport", "StreamingRequest", "Transport"]
