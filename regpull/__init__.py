"""
Module for pulling images from a Docker v2 Registry
"""

from typing import Iterable, List, Optional

from regpull import blobs
from regpull import exceptions
from regpull import manifest as _manifest
from regpull.auth import Challenge, Token, parse_challenge, negotiate
from regpull.digest import Digest, digest_of, hash_bytes
from regpull.digest import parse as parse_digest
from regpull.manifest import Descriptor, Manifest
from regpull.mediatypes import MediaType, from_wire, to_wire, to_accept_item
from regpull.session import ApiVersion, Session, check

__version__ = '1.0.0'

class Repository(object):
    """
    Read-only access to one image repository through a :class:`Session`.

    Several :class:`Repository` objects can share a session; they then share
    its connection and its token.
    """
    def __init__(self, session: Session, name: str):
        """
        :param session: Session for the registry holding the repository.

        :param name: Name of the repository, e.g. ``library/busybox``. On Docker Hub, ``busybox`` is enough.
        """
        self._session = session
        self._name = name

    @property
    def session(self) -> Session:
        return self._session

    @property
    def name(self) -> str:
        return self._name

    def login(self, actions: Iterable[str]=('pull',)) -> Optional[Token]:
        """
        Authenticate for this repository.

        :param actions: Actions to ask for. This client only ever needs ``pull``.
        """
        scope = 'repository:' + self._session.repo_name(self._name) + ':' + ','.join(actions)
        return self._session.login([scope])

    def get_manifest(self, reference: str, verify: bool=True) -> Manifest:
        """
        Fetch the manifest for a tag or digest. See :func:`regpull.manifest.fetch`.
        """
        return _manifest.fetch(self._session, self._name, reference, verify)

    def blob_exists(self, dgst) -> bool:
        return blobs.exists(self._session, self._name, dgst)

    def blob_size(self, dgst) -> int:
        return blobs.size(self._session, self._name, dgst)

    def fetch_blob(self, dgst) -> bytes:
        """
        Download a blob, checked against ``dgst``. See :func:`regpull.blobs.fetch`.
        """
        return blobs.fetch(self._session, self._name, dgst)

    def download_blob(self, dgst, filename: str, progress=None,
                      chunk_size: Optional[int]=None) -> str:
        return blobs.download(self._session, self._name, dgst, filename,
                              progress, chunk_size)

    def fetch_blobs(self, dgsts, max_workers: Optional[int]=None) -> List[bytes]:
        return blobs.fetch_many(self._session, self._name, dgsts, max_workers)

    def download_blobs(self, dgsts, directory: str,
                       max_workers: Optional[int]=None, progress=None) -> List[str]:
        return blobs.download_many(self._session, self._name, dgsts, directory,
                                   max_workers, progress)

    @classmethod
    def open(cls, host: str, name: str, **kwargs) -> 'Repository':
        """
        Create a :class:`Repository` with its own :class:`Session`.
        ``kwargs`` are passed to :class:`Session`.
        """
        return cls(Session(host, **kwargs), name)

__all__ = [
    'ApiVersion',
    'Challenge',
    'Descriptor',
    'Digest',
    'Manifest',
    'MediaType',
    'Repository',
    'Session',
    'Token',
    'blobs',
    'check',
    'digest_of',
    'exceptions',
    'from_wire',
    'hash_bytes',
    'negotiate',
    'parse_challenge',
    'parse_digest',
    'to_accept_item',
    'to_wire',
]
