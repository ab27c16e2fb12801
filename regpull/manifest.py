"""
Fetching and classifying image manifests.
"""

from typing import Optional, Sequence, List, NamedTuple
import json
import logging

import requests

from regpull import digest
from regpull import exceptions
from regpull import mediatypes
from regpull import schema1
from regpull.mediatypes import MediaType

_logger = logging.getLogger(__name__)

class Descriptor(NamedTuple):
    """
    One entry of a manifest list. ``media_type`` is kept as sent, since a
    list may reference kinds of manifest this client doesn't parse.
    """
    media_type: Optional[str]
    digest: digest.Digest
    size: Optional[int] = None
    platform: Optional[dict] = None

    def matches(self, os: str, architecture: str, variant: Optional[str]=None) -> bool:
        # pylint: disable=redefined-builtin
        platform = self.platform or {}
        if platform.get('os') != os or platform.get('architecture') != architecture:
            return False
        return variant is None or platform.get('variant') == variant

class Manifest(NamedTuple):
    """
    A parsed manifest.

    ``layers`` is in application order, base layer first, whatever the schema.
    For a manifest list, ``layers`` is empty and ``manifests`` holds the
    per-platform entries; picking one is up to the caller.
    """
    media_type: MediaType
    layers: List[digest.Digest]
    config_digest: Optional[digest.Digest] = None
    manifests: Sequence[Descriptor] = ()
    content_digest: Optional[digest.Digest] = None
    content: str = ''

    @property
    def schema_tag(self) -> MediaType:
        return self.media_type

    @property
    def is_list(self) -> bool:
        return self.media_type is MediaType.MANIFEST_LIST

    def find_platform(self, os: str, architecture: str,
                      variant: Optional[str]=None) -> Optional[Descriptor]:
        # pylint: disable=redefined-builtin
        for desc in self.manifests:
            if desc.matches(os, architecture, variant):
                return desc
        return None

def _classify(media_type, parsed):
    if media_type is MediaType.APPLICATION_JSON:
        version = parsed.get('schemaVersion')
        if version == 1:
            if 'signatures' in parsed:
                return MediaType.MANIFEST_V2S1_SIGNED
            return MediaType.MANIFEST_V2S1
        if version == 2:
            if 'mediaType' not in parsed:
                raise exceptions.RegManifestParseError('schema 2 manifest without mediaType')
            media_type = mediatypes.from_wire(parsed['mediaType'])
            if media_type not in (MediaType.MANIFEST_V2S2, MediaType.MANIFEST_LIST):
                raise exceptions.RegManifestParseError(
                    'unexpected schema 2 mediaType: %s' % media_type.value)
            return media_type
        raise exceptions.RegManifestParseError('unknown schemaVersion: %r' % version)
    if not media_type.is_manifest:
        raise exceptions.RegManifestParseError('%s is not a manifest' % media_type.value)
    return media_type

def _parse_schema2(parsed):
    try:
        config = parsed['config']['digest']
        layers = [layer['digest'] for layer in parsed['layers']]
    except (KeyError, TypeError) as ex:
        raise exceptions.RegManifestParseError('bad schema 2 manifest: %r' % ex) from ex
    return digest.parse(config), [digest.parse(dgst) for dgst in layers]

def _parse_list(parsed):
    r = []
    try:
        for entry in parsed['manifests']:
            r.append(Descriptor(entry.get('mediaType'),
                                digest.parse(entry['digest']),
                                entry.get('size'),
                                entry.get('platform')))
    except (KeyError, TypeError, AttributeError) as ex:
        raise exceptions.RegManifestParseError('bad manifest list: %r' % ex) from ex
    return r

def _check_content(buf, expected_digests):
    for expected in expected_digests:
        if not expected.verify(buf):
            got = digest.digest_of(buf, expected.algorithm)
            raise exceptions.RegDigestMismatchError(str(got), str(expected))

def parse_manifest(content: bytes, content_type: Optional[str], verify: bool=True,
                   expected_digests: Sequence[digest.Digest]=()) -> Manifest:
    """
    Classify a manifest by its content type and extract its digests.

    :param content: Response body.

    :param content_type: Value of the response's ``Content-Type`` header.

    :param verify: (schema 1 only) Whether to check the manifest's signatures.

    :param expected_digests: Digests the manifest's content must match.

    :raises regpull.exceptions.RegUnknownMediaTypeError: If ``content_type`` isn't known. Nothing is guessed.

    :raises regpull.exceptions.RegManifestParseError: If the body doesn't fit its schema.

    :raises regpull.exceptions.RegDigestMismatchError: If the content doesn't match an expected digest.
    """
    media_type = mediatypes.from_wire(content_type)
    try:
        text = content.decode('utf-8')
        parsed = json.loads(text)
    except ValueError as ex:
        raise exceptions.RegManifestParseError('body is not JSON') from ex
    if not isinstance(parsed, dict):
        raise exceptions.RegManifestParseError('body is not a JSON object')

    media_type = _classify(media_type, parsed)
    config_digest = None
    layers: List[digest.Digest] = []
    manifests: List[Descriptor] = []

    if media_type in (MediaType.MANIFEST_V2S1, MediaType.MANIFEST_V2S1_SIGNED):
        check_sigs = verify and (media_type is MediaType.MANIFEST_V2S1_SIGNED or
                                 'signatures' in parsed)
        hashed = schema1.payload(text, parsed, check_sigs).encode('utf-8')
        layers = schema1.layers(parsed)
    elif media_type is MediaType.MANIFEST_V2S2:
        hashed = content
        config_digest, layers = _parse_schema2(parsed)
    else:
        hashed = content
        manifests = _parse_list(parsed)

    _check_content(hashed, expected_digests)
    if expected_digests:
        content_digest = expected_digests[0]
    else:
        content_digest = digest.digest_of(hashed)

    return Manifest(media_type, layers, config_digest, manifests, content_digest, text)

def fetch(session, name: str, reference: str, verify: bool=True) -> Manifest:
    """
    Fetch the manifest of ``name`` at ``reference`` (a tag or a digest).

    The ``Accept`` header lists every manifest kind, richest first, so the
    registry can pick the best schema it has.

    :param session: :class:`regpull.session.Session` to send the request with.

    :param name: Image name, e.g. ``library/busybox``.

    :param reference: Tag or digest.

    :param verify: (schema 1 only) Whether to check the manifest's signatures.

    :raises regpull.exceptions.RegManifestNotFoundError: If the registry answers ``404``.

    :raises regpull.exceptions.RegUnexpectedStatusCodeError: For any other non-2xx answer.
    """
    repo = session.repo_name(name)
    r = session.request('get',
                        repo + '/manifests/' + reference,
                        scopes=[session.pull_scope(name)],
                        headers={'Accept': mediatypes.manifest_accept_header()})
    # pylint: disable=no-member
    if r.status_code == requests.codes.not_found:
        raise exceptions.RegManifestNotFoundError(name, reference)
    if not 200 <= r.status_code < 300:
        raise exceptions.RegUnexpectedStatusCodeError(r.status_code, requests.codes.ok)

    expected = []
    dcd = r.headers.get('Docker-Content-Digest')
    if dcd:
        expected.append(digest.parse(dcd))
    if digest.is_digest(reference):
        ref_digest = digest.parse(reference)
        if ref_digest not in expected:
            expected.append(ref_digest)

    manifest = parse_manifest(r.content, r.headers.get('Content-Type'), verify, expected)
    _logger.info('fetched manifest %s:%s (%s, %d layers)',
                 repo, reference, manifest.media_type.value, len(manifest.layers))
    return manifest
