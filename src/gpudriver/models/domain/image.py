"""Container image references and image path construction."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Self

from ...exceptions import InvalidImageReferenceError

__all__ = [
    "DIGEST_PREFIX",
    "ImageReference",
    "image_path",
]

DIGEST_PREFIX = "sha256:"
"""Prefix of a version that is a content digest rather than a tag."""

# Regex fragments following the grammar of the distribution reference
# package used by container runtimes.
_ALPHANUMERIC = r"[a-z0-9]+"
_SEPARATOR = r"(?:[._]|__|[-]+)"
_PATH_COMPONENT = rf"{_ALPHANUMERIC}(?:{_SEPARATOR}{_ALPHANUMERIC})*"
_DOMAIN_COMPONENT = r"(?:[a-zA-Z0-9]|[a-zA-Z0-9][a-zA-Z0-9-]*[a-zA-Z0-9])"
_DOMAIN = (
    rf"(?P<registry>{_DOMAIN_COMPONENT}(?:\.{_DOMAIN_COMPONENT})*"
    r"(?::[0-9]+)?)"
)
_NAME = (
    rf"(?:{_DOMAIN}/)?"
    rf"(?P<repository>{_PATH_COMPONENT}(?:/{_PATH_COMPONENT})*)"
)
_TAG = r"(?::(?P<tag>[\w][\w.-]{0,127}))?"
_DIGEST = (
    r"(?:@(?P<digest>[A-Za-z][A-Za-z0-9]*(?:[-_+.][A-Za-z][A-Za-z0-9]*)*"
    r":[0-9a-fA-F]{32,}))?"
)

_REFERENCE_REGEX = re.compile(_NAME + _TAG + _DIGEST + "$")


@dataclass
class ImageReference:
    """Parses a container image reference."""

    registry: str | None
    """Registry hosting the image, if given."""

    repository: str
    """Repository of the image (for example, ``nvidia/driver``)."""

    tag: str | None
    """Tag, if present."""

    digest: str | None
    """Digest, if present."""

    @classmethod
    def from_str(cls, reference: str) -> Self:
        """Parse an image reference string into its components.

        A reference with a digest is accepted without checking the form of
        any tag, since the digest alone identifies the image.

        Parameters
        ----------
        reference
            Reference string.

        Returns
        -------
        ImageReference
            Resulting reference.

        Raises
        ------
        InvalidImageReferenceError
            The reference could not be parsed. This is also a `ValueError`.
        """
        if "@" in reference:
            name, digest = reference.split("@", 1)
            if ":" in name.rsplit("/", 1)[-1]:
                name = name.rsplit(":", 1)[0]
            match = _REFERENCE_REGEX.match(f"{name}@{digest}")
        else:
            match = _REFERENCE_REGEX.match(reference)
        if not match:
            msg = f'Invalid image reference "{reference}"'
            raise InvalidImageReferenceError(msg)
        return cls(
            registry=match.group("registry"),
            repository=match.group("repository"),
            tag=match.group("tag"),
            digest=match.group("digest"),
        )

    def __str__(self) -> str:
        result = self.repository
        if self.registry is not None:
            result = f"{self.registry}/{result}"
        if self.tag is not None:
            result += f":{self.tag}"
        if self.digest is not None:
            result += f"@{self.digest}"
        return result


def image_path(
    repository: str | None,
    image: str | None,
    version: str | None,
    default: str | None = None,
) -> str:
    """Construct an image path from its coordinates.

    The coordinates from the driver resource take precedence. If the
    repository and version are both unset, the image is used as-is, which
    supports tools that rewrite manifests to full ``path@digest`` references.
    Otherwise the default is used, if given.

    Parameters
    ----------
    repository
        Image repository, such as ``nvcr.io/nvidia``.
    image
        Image name.
    version
        Image tag, or a digest starting with ``sha256:``.
    default
        Image path to use if the coordinates are empty.

    Returns
    -------
    str
        Image path.

    Raises
    ------
    InvalidImageReferenceError
        Raised if no image path could be determined.
    """
    if not repository and not version:
        if image:
            return image
    elif version and version.startswith(DIGEST_PREFIX):
        return f"{repository}/{image}@{version}"
    else:
        return f"{repository}/{image}:{version}"
    if default:
        return default
    raise InvalidImageReferenceError("No image path provided and no default")
