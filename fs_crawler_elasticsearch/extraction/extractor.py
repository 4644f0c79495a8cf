"""Content extraction collaborators."""

import codecs
import mimetypes
from dataclasses import dataclass, field
from typing import Any, BinaryIO, Dict, Optional

TEXT_CONTENT_TYPES = (
    'application/json',
    'application/xml',
    'application/javascript',
    'application/x-yaml',
    'application/yaml',
    'application/x-sh',
)

CHUNK_SIZE = 64 * 1024

@dataclass
class ExtractionResult:
    text: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    content_type: Optional[str] = None

class ContentExtractor:
    """Turns a file stream into text and metadata. May raise on a bad file."""

    def extract(self, stream: BinaryIO, size_hint: int, filename: str) -> ExtractionResult:
        raise NotImplementedError

def guess_content_type(filename: str) -> Optional[str]:
    content_type, _ = mimetypes.guess_type(filename, strict=False)
    return content_type

def is_textual(content_type: Optional[str]) -> bool:
    if not content_type:
        return False
    return content_type.startswith('text/') or content_type in TEXT_CONTENT_TYPES

class TextExtractor(ContentExtractor):
    """Indexes plain text formats as UTF-8; anything else is metadata only.

    At most ``indexed_chars`` characters are kept (-1 keeps everything).
    """

    def __init__(self, indexed_chars: int = 100000):
        self.indexed_chars = indexed_chars

    def extract(self, stream: BinaryIO, size_hint: int, filename: str) -> ExtractionResult:
        content_type = guess_content_type(filename)
        result = ExtractionResult(content_type=content_type)
        if not is_textual(content_type) or self.indexed_chars == 0:
            return result

        decoder = codecs.getincrementaldecoder('utf-8')(errors='replace')
        parts = []
        length = 0
        while self.indexed_chars < 0 or length < self.indexed_chars:
            chunk = stream.read(CHUNK_SIZE)
            if not chunk:
                parts.append(decoder.decode(b'', final=True))
                break
            text = decoder.decode(chunk)
            parts.append(text)
            length += len(text)

        text = ''.join(parts)
        if self.indexed_chars >= 0:
            text = text[:self.indexed_chars]
        result.text = text
        result.metadata['content_length'] = size_hint
        return result
