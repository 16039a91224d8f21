"""Model server layer for fork-chat."""

from .decoder import StreamDecoder, adecode_stream, decode_stream
from .errors import ChatError, describe_error
from .providers.ollama import ChatOptions, list_models, normalize_base_url, stream_chat
from .stream import complete, stream
from .types import ChatResult, GenerationStats, Message, Settings

__all__ = [
    "decoder",
    "errors",
    "providers",
    "streaming",
    "stream",
    "complete",
    "types",
    "ChatError",
    "ChatOptions",
    "ChatResult",
    "GenerationStats",
    "Message",
    "Settings",
    "StreamDecoder",
    "adecode_stream",
    "decode_stream",
    "describe_error",
    "list_models",
    "normalize_base_url",
    "stream_chat",
]
