"""
Media types of the objects served by a Docker v2 registry.

For schema 1 see https://docs.docker.com/registry/spec/manifest-v2-1/
and for schema 2 https://docs.docker.com/registry/spec/manifest-v2-2/
"""

from typing import Optional, Tuple
import enum

from regpull import exceptions

class MediaType(enum.Enum):
    """
    Closed set of content kinds this client understands. Each member's value
    is its canonical wire string.
    """
    #: Manifest, version 2 schema 1.
    MANIFEST_V2S1 = 'application/vnd.docker.distribution.manifest.v1+json'
    #: Signed manifest, version 2 schema 1.
    MANIFEST_V2S1_SIGNED = 'application/vnd.docker.distribution.manifest.v1+prettyjws'
    #: Manifest, version 2 schema 2.
    MANIFEST_V2S2 = 'application/vnd.docker.distribution.manifest.v2+json'
    #: Manifest list (aka "fat manifest").
    MANIFEST_LIST = 'application/vnd.docker.distribution.manifest.list.v2+json'
    #: Image layer, as a gzip-compressed tar.
    IMAGE_LAYER_TGZ = 'application/vnd.docker.image.rootfs.diff.tar.gzip'
    #: Configuration object for a container.
    CONTAINER_CONFIG_V1 = 'application/vnd.docker.container.image.v1+json'
    #: Generic JSON.
    APPLICATION_JSON = 'application/json'

    @property
    def subtype(self) -> str:
        return self.value.split('/', 1)[1]

    @property
    def is_manifest(self) -> bool:
        return self in _MANIFEST_PREFERENCE

# Richest schema first, generic JSON last.
_MANIFEST_PREFERENCE = (
    MediaType.MANIFEST_LIST,
    MediaType.MANIFEST_V2S2,
    MediaType.MANIFEST_V2S1_SIGNED,
    MediaType.MANIFEST_V2S1,
    MediaType.APPLICATION_JSON,
)

def _split_mime(mime: str) -> Tuple[str, str]:
    essence = mime.split(';', 1)[0].strip().lower()
    top, _, sub = essence.partition('/')
    return top, sub

def from_wire(mime: Optional[str]) -> MediaType:
    """
    Map a MIME string (as found in ``Content-Type``) to a :class:`MediaType`.
    Parameters such as ``charset`` are ignored.

    :param mime: MIME string.

    :raises regpull.exceptions.RegUnknownMediaTypeError: If the string isn't ``application/<known subtype>``.
    """
    if not mime:
        raise exceptions.RegUnknownMediaTypeError(mime)
    top, sub = _split_mime(mime)
    if top != 'application' or not sub:
        raise exceptions.RegUnknownMediaTypeError(mime)
    try:
        return MediaType(top + '/' + sub)
    except ValueError:
        raise exceptions.RegUnknownMediaTypeError(mime) from None

def to_wire(media_type: MediaType) -> str:
    return media_type.value

def to_accept_item(media_type: MediaType, quality: Optional[float]=None) -> str:
    """
    Render an ``Accept`` list entry. ``quality`` of ``None`` or ``1`` leaves
    the weight implicit.
    """
    if quality is None or quality >= 1:
        return media_type.value
    if quality < 0:
        raise ValueError('quality must be between 0 and 1')
    return '%s;q=%s' % (media_type.value, ('%.3f' % quality).rstrip('0').rstrip('.'))

def manifest_accept_header() -> str:
    items = [to_accept_item(m) for m in _MANIFEST_PREFERENCE[:-1]]
    items.append(to_accept_item(MediaType.APPLICATION_JSON, 0.5))
    return ', '.join(items)
