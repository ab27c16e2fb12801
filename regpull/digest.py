"""
Content digests (``algorithm:hex``) as used by the registry to identify
and check blobs and manifests.
"""

from typing import NamedTuple
import hashlib
import hmac
import re

from regpull import exceptions

# Hex length of each supported algorithm's output.
_HEX_LENGTHS = {
    'sha256': 64,
    'sha384': 96,
    'sha512': 128,
}

_digest_re = re.compile(r'^([a-z0-9]+(?:[.+_-][a-z0-9]+)*):([a-zA-Z0-9=_-]+)$')
_hex_re = re.compile(r'^[a-f0-9]+$')

class Digest(NamedTuple):
    algorithm: str
    hex: str

    def __str__(self):
        return self.algorithm + ':' + self.hex

    def hasher(self):
        """
        Return a fresh :mod:`hashlib` object for this digest's algorithm.
        """
        if self.algorithm not in _HEX_LENGTHS:
            raise exceptions.RegUnsupportedDigestAlgorithmError(self.algorithm)
        return hashlib.new(self.algorithm)

    def matches(self, hasher) -> bool:
        return hmac.compare_digest(hasher.hexdigest(), self.hex)

    def verify(self, buf: bytes) -> bool:
        return verify(self, buf)

def parse(s) -> Digest:
    """
    Parse a digest string such as ``sha256:<64 hex chars>``.

    Passing a :class:`Digest` returns it unchanged.

    :raises regpull.exceptions.RegMalformedDigestError: If the string isn't ``algorithm:hex`` or the hex part doesn't fit the algorithm.

    :raises regpull.exceptions.RegUnsupportedDigestAlgorithmError: If the algorithm isn't one of sha256, sha384 or sha512.
    """
    if isinstance(s, Digest):
        return s
    if not isinstance(s, str):
        raise exceptions.RegMalformedDigestError(s, 'not a string')
    m = _digest_re.match(s)
    if not m:
        raise exceptions.RegMalformedDigestError(s, 'expected algorithm:hex')
    algorithm, hexpart = m.groups()
    expected_length = _HEX_LENGTHS.get(algorithm)
    if expected_length is None:
        raise exceptions.RegUnsupportedDigestAlgorithmError(algorithm)
    if len(hexpart) != expected_length:
        raise exceptions.RegMalformedDigestError(
            s, '%s needs %d hex characters, got %d' % (algorithm, expected_length, len(hexpart)))
    if not _hex_re.match(hexpart):
        raise exceptions.RegMalformedDigestError(s, 'hex part must be lowercase hex')
    return Digest(algorithm, hexpart)

def is_digest(s) -> bool:
    try:
        parse(s)
        return True
    except (exceptions.RegMalformedDigestError,
            exceptions.RegUnsupportedDigestAlgorithmError):
        return False

def digest_of(buf: bytes, algorithm: str='sha256') -> Digest:
    """
    Hash bytes the same way the registry does.

    :param buf: Bytes to hash

    :param algorithm: Hash algorithm, ``sha256`` by default.
    """
    hasher = Digest(algorithm, '').hasher()
    hasher.update(buf)
    return Digest(algorithm, hasher.hexdigest())

def hash_bytes(buf: bytes) -> str:
    """
    Hash bytes using SHA-256 and return the digest as a string prefixed by ``sha256:``.
    """
    return str(digest_of(buf))

def verify(digest: Digest, buf: bytes) -> bool:
    """
    Check that ``buf`` hashes to ``digest``.

    :raises regpull.exceptions.RegUnsupportedDigestAlgorithmError: If the digest's algorithm isn't supported.
    """
    hasher = digest.hasher()
    hasher.update(buf)
    return digest.matches(hasher)
