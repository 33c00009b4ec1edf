from .client import RelayProducer, SSEDecoder, decode_frames, event_from_frame
from .encoder import RelayEncoder, RelayTick, encode_frame, encode_stream, ticks_from_chunk

__all__ = [
    "RelayEncoder",
    "RelayProducer",
    "RelayTick",
    "SSEDecoder",
    "decode_frames",
    "encode_frame",
    "encode_stream",
    "event_from_frame",
    "ticks_from_chunk",
]
