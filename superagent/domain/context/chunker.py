from typing import List

from superagent.domain.errors import ConfigError

DEFAULT_CHUNK_SIZE = 800
DEFAULT_CHUNK_OVERLAP = 100


def chunk(text: str, size: int = DEFAULT_CHUNK_SIZE, overlap: int = DEFAULT_CHUNK_OVERLAP) -> List[str]:
    """Split text into fixed-size windows that overlap by ``overlap`` characters.

    Windows start at offsets 0, size-overlap, 2*(size-overlap), ... and the
    sequence ends with the first window that reaches the end of the text, so
    no window is a pure suffix of its predecessor. Empty input yields no
    windows.

    Raises:
        ConfigError: If ``overlap`` is not within ``[0, size)``.
    """
    if overlap < 0 or overlap >= size:
        raise ConfigError(f"Chunk overlap must satisfy 0 <= overlap < size (got size={size}, overlap={overlap})")

    step = size - overlap
    windows: List[str] = []
    i = 0
    while i < len(text):
        windows.append(text[i:i + size])
        if i + size >= len(text):
            break
        i += step
    return windows
