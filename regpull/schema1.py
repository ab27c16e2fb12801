"""
Version 2 schema 1 manifests: layer extraction and JWS signature checking.
See https://docs.docker.com/registry/spec/manifest-v2-1/
"""

from typing import List
import base64
import json
import logging

from jwcrypto import jwk, jws # type: ignore

from regpull import digest
from regpull import exceptions

_logger = logging.getLogger(__name__)

def _urlsafe_b64encode(s):
    if isinstance(s, str):
        s = s.encode('utf-8')
    return base64.urlsafe_b64encode(s).rstrip(b'=').decode('utf-8')

def _pad64(s):
    return s + b'=' * (-len(s) % 4)

def _urlsafe_b64decode(s):
    if isinstance(s, str):
        s = s.encode('utf-8')
    return base64.urlsafe_b64decode(_pad64(s))

def _import_key(expkey):
    if expkey['kty'] != 'EC':
        raise exceptions.RegUnexpectedKeyTypeError(expkey['kty'], 'EC')
    if expkey['crv'] != 'P-256':
        raise exceptions.RegUnexpectedKeyTypeError(expkey['crv'], 'P-256')
    return jwk.JWK(kty='EC', crv='P-256', x=expkey['x'], y=expkey['y'])

def _read_signatures(manifest):
    sigs = manifest.get('signatures')
    if not sigs or not isinstance(sigs, list):
        raise exceptions.RegManifestSignatureError('manifest has no signatures')
    r = []
    for sig in sigs:
        try:
            protected64 = sig['protected']
            protected_header = json.loads(_urlsafe_b64decode(protected64).decode('utf-8'))
            format_length = protected_header['formatLength']
            format_tail = _urlsafe_b64decode(protected_header['formatTail']).decode('utf-8')
            header = sig['header']
            alg = header['alg']
            if alg.lower() == 'none':
                raise exceptions.RegDisallowedSignatureAlgorithmError('none')
            if header.get('chain'):
                raise exceptions.RegSignatureChainNotImplementedError()
            r.append({
                'alg': alg,
                'signature': sig['signature'],
                'protected64': protected64,
                'key': _import_key(header['jwk']),
                'format_length': format_length,
                'format_tail': format_tail
            })
        except (KeyError, TypeError, ValueError, AttributeError) as ex:
            raise exceptions.RegManifestSignatureError('bad signature block: %r' % ex) from ex
    return r

def payload(content: str, manifest: dict, verify: bool=True) -> str:
    """
    Return the signed payload of a schema 1 manifest, i.e. the manifest
    as it was before its signatures were added. The registry's content digest
    is computed over this.

    :param content: Manifest text as received.

    :param manifest: ``content`` parsed as JSON.

    :param verify: Whether to check every signature. Signatures are required when set.

    :raises regpull.exceptions.RegManifestSignatureError: If a signature is missing, malformed or doesn't verify.
    """
    if not verify and 'signatures' not in manifest:
        return content

    signatures = _read_signatures(manifest)
    first = signatures[0]
    signed = content[:first['format_length']] + first['format_tail']

    if verify:
        payload64 = _urlsafe_b64encode(signed)
        for sig in signatures:
            jwstoken = jws.JWS()
            try:
                jwstoken.deserialize(json.dumps({
                    'payload': payload64,
                    'protected': sig['protected64'],
                    'signature': sig['signature']
                }), sig['key'], sig['alg'])
            except (jws.InvalidJWSSignature, jws.InvalidJWSObject) as ex:
                raise exceptions.RegManifestSignatureError('signature does not verify') from ex
        _logger.debug('verified %d schema 1 signature(s)', len(signatures))

    return signed

def layers(manifest: dict) -> List[digest.Digest]:
    """
    Return the layer digests of a schema 1 manifest, base layer first.
    ``fsLayers`` lists them top layer first.
    """
    try:
        fs_layers = manifest['fsLayers']
        dgsts = [digest.parse(layer['blobSum']) for layer in fs_layers]
    except (KeyError, TypeError) as ex:
        raise exceptions.RegManifestParseError('bad fsLayers: %r' % ex) from ex
    dgsts.reverse()
    return dgsts
