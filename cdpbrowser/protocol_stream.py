"""Draining of protocol IO streams (IO.read / IO.close)."""

import base64
import logging
from pathlib import Path
from typing import Optional, Union

from .connection import CDPSession

logger = logging.getLogger(__name__)


async def read_protocol_stream(
    session: CDPSession,
    handle: str,
    path: Optional[Union[str, Path]] = None,
) -> bytes:
    """Read a stream handle to the end and close it.

    Args:
        session: Session that owns the stream handle
        handle: Stream handle returned by the browser
        path: Optional file the data is also written to

    Returns:
        The accumulated stream contents
    """
    chunks = []
    output = open(Path(path), "wb") if path else None
    try:
        eof = False
        while not eof:
            response = await session.send("IO.read", {"handle": handle})
            eof = response.get("eof", False)
            data = response.get("data", "")
            if response.get("base64Encoded"):
                chunk = base64.b64decode(data)
            else:
                chunk = data.encode("utf-8")
            chunks.append(chunk)
            if output is not None:
                output.write(chunk)
    finally:
        if output is not None:
            output.close()

    await session.send("IO.close", {"handle": handle})
    content = b"".join(chunks)
    logger.debug(f"Read {len(content)} bytes from stream {handle}")
    return content
