"""In-band control protocol for termlink.

Out-of-band signals (echo toggle, command execution, forwarded keypress,
command exit) are encoded inside the same stream as regular output.

Public API:
    encode_frame -- Encode a ControlFrame as wire text
    decode_frame -- Decode one frame from a buffer position
    FrameDecoder -- Resumable decoder for a split stream
"""

from termlink.protocol.codec import (
    FrameDecoder,
    decode_frame,
    encode_frame,
    is_control_frame,
)

__all__ = ["FrameDecoder", "decode_frame", "encode_frame", "is_control_frame"]
