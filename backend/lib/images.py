"""
Image reference resolution for multimodal turns.

Uploaded images are referenced by a path relative to the public directory;
they are inlined as base64 data URLs so the model provider never needs to
reach this server. http(s) and data URLs pass through untouched.
"""

import base64
import os
from pathlib import Path
from typing import List, Sequence, Union

MIME_TYPES = {
    '.jpg': 'image/jpeg',
    '.jpeg': 'image/jpeg',
    '.png': 'image/png',
    '.gif': 'image/gif',
    '.webp': 'image/webp',
}

PASS_THROUGH_PREFIXES = ('http://', 'https://', 'data:')


class ImageLoadError(Exception):
    """An image reference could not be read from the public directory."""

    def __init__(self, reference: str, reason: str):
        self.reference = reference
        super().__init__(f"Failed to convert image {reference}: {reason}")


def encode_image(reference: str, public_dir: Union[str, Path]) -> str:
    if reference.startswith(PASS_THROUGH_PREFIXES):
        return reference

    root = Path(public_dir).resolve()
    path = (root / reference.lstrip('/')).resolve()
    if root not in path.parents:
        raise ImageLoadError(reference, "path escapes the public directory")

    try:
        data = path.read_bytes()
    except OSError as e:
        raise ImageLoadError(reference, str(e)) from e

    mime_type = MIME_TYPES.get(path.suffix.lower(), 'image/png')
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def encode_images(references: Sequence[str], public_dir: Union[str, Path, None] = None) -> List[str]:
    """Resolve every reference, in order."""
    public_dir = public_dir or os.getenv("PUBLIC_DIR", "public")
    return [encode_image(reference, public_dir) for reference in references]
