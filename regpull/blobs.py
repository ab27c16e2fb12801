"""
Blob access by digest. Content is always checked against its digest and
never handed back if it doesn't match.
"""

from typing import Callable, Iterable, List, Optional, Union
import concurrent.futures
import logging
import os

import requests

from regpull import digest
from regpull import exceptions

_logger = logging.getLogger(__name__)

DigestLike = Union[str, digest.Digest]
Progress = Callable[[str, bytes, Optional[int]], None]

def _blob_path(session, name, dgst):
    return session.repo_name(name) + '/blobs/' + str(dgst)

def _check_status(r, name, dgst):
    # pylint: disable=no-member
    if r.status_code == requests.codes.not_found:
        r.close()
        raise exceptions.RegBlobNotFoundError(name, str(dgst))
    if not 200 <= r.status_code < 300:
        r.close()
        raise exceptions.RegUnexpectedStatusCodeError(r.status_code, requests.codes.ok)

def exists(session, name: str, dgst: DigestLike) -> bool:
    """
    Check whether the registry has a blob.

    :returns: ``True`` on ``200``, ``False`` on ``404``.

    :raises regpull.exceptions.RegUnexpectedStatusCodeError: For any other status.
    """
    dgst = digest.parse(dgst)
    r = session.request('head', _blob_path(session, name, dgst),
                        scopes=[session.pull_scope(name)])
    r.close()
    # pylint: disable=no-member
    if r.status_code == requests.codes.ok:
        return True
    if r.status_code == requests.codes.not_found:
        return False
    raise exceptions.RegUnexpectedStatusCodeError(r.status_code, requests.codes.ok)

def size(session, name: str, dgst: DigestLike) -> int:
    """
    Return the size of a blob in bytes, from ``Content-Length``.
    """
    dgst = digest.parse(dgst)
    r = session.request('head', _blob_path(session, name, dgst),
                        scopes=[session.pull_scope(name)])
    r.close()
    _check_status(r, name, dgst)
    return int(r.headers['content-length'])

def fetch(session, name: str, dgst: DigestLike) -> bytes:
    """
    Download a blob and check it against its digest.

    :raises regpull.exceptions.RegBlobNotFoundError: If the registry answers ``404``.

    :raises regpull.exceptions.RegDigestMismatchError: If the content doesn't hash to ``dgst``. The content is discarded.
    """
    dgst = digest.parse(dgst)
    r = session.request('get', _blob_path(session, name, dgst),
                        scopes=[session.pull_scope(name)])
    _check_status(r, name, dgst)
    buf = r.content
    if not dgst.verify(buf):
        got = digest.digest_of(buf, dgst.algorithm)
        raise exceptions.RegDigestMismatchError(str(got), str(dgst))
    _logger.debug('verified blob %s (%d bytes)', dgst, len(buf))
    return buf

def download(session, name: str, dgst: DigestLike, filename: str,
             progress: Optional[Progress]=None,
             chunk_size: Optional[int]=None) -> str:
    # pylint: disable=too-many-arguments
    """
    Stream a blob into ``filename``.

    Data goes to ``<filename>.part`` first and is only renamed to
    ``filename`` once its digest has been checked. On any failure the partial
    file is removed.

    :param progress: Optional function called with the digest, each chunk and the blob's total size (``None`` if the registry didn't say).

    :param chunk_size: Number of bytes to download at a time. Defaults to 8192.

    :returns: ``filename``
    """
    if chunk_size is None:
        chunk_size = 8192
    dgst = digest.parse(dgst)
    hasher = dgst.hasher()
    r = session.request('get', _blob_path(session, name, dgst),
                        scopes=[session.pull_scope(name)], stream=True)
    _check_status(r, name, dgst)
    total = r.headers.get('content-length')
    total = int(total) if total is not None else None
    tmp = filename + '.part'
    done = False
    try:
        with open(tmp, 'wb') as f:
            for chunk in r.iter_content(chunk_size):
                hasher.update(chunk)
                f.write(chunk)
                if progress:
                    progress(str(dgst), chunk, total)
        if not dgst.matches(hasher):
            raise exceptions.RegDigestMismatchError(
                dgst.algorithm + ':' + hasher.hexdigest(), str(dgst))
        os.replace(tmp, filename)
        done = True
    finally:
        r.close()
        if not done and os.path.exists(tmp):
            os.remove(tmp)
    _logger.debug('downloaded blob %s to %s', dgst, filename)
    return filename

def blob_filename(dgst: DigestLike) -> str:
    return str(digest.parse(dgst)).replace(':', '_')

def _run_bounded(session, fn, items, max_workers):
    if max_workers is None:
        max_workers = session.max_workers
    elif max_workers < 1:
        raise ValueError('max_workers must be at least 1')
    if not items:
        return []
    workers = min(max_workers, len(items))
    with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
        futures = [executor.submit(fn, item) for item in items]
        try:
            return [f.result() for f in futures]
        except Exception:
            for f in futures:
                f.cancel()
            raise

def fetch_many(session, name: str, dgsts: Iterable[DigestLike],
               max_workers: Optional[int]=None) -> List[bytes]:
    """
    Fetch several blobs, at most ``max_workers`` (default: the session's
    limit) at a time.

    :returns: The blobs' content, in the same order as ``dgsts``.
    """
    dgsts = [digest.parse(dgst) for dgst in dgsts]
    return _run_bounded(session, lambda dgst: fetch(session, name, dgst),
                        dgsts, max_workers)

def download_many(session, name: str, dgsts: Iterable[DigestLike], directory: str,
                  max_workers: Optional[int]=None,
                  progress: Optional[Progress]=None) -> List[str]:
    # pylint: disable=too-many-arguments
    """
    Download several blobs into ``directory``, at most ``max_workers`` at a
    time. Each blob is stored once, even if listed more than once.

    :returns: The file names, in the same order as ``dgsts``.
    """
    dgsts = [digest.parse(dgst) for dgst in dgsts]
    unique = list(dict.fromkeys(dgsts))
    def one(dgst):
        return download(session, name, dgst,
                        os.path.join(directory, blob_filename(dgst)),
                        progress)
    paths = dict(zip(unique, _run_bounded(session, one, unique, max_workers)))
    return [paths[dgst] for dgst in dgsts]
