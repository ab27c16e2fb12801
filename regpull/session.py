"""
Per-registry session: credentials, the current bearer token and the
request path that attaches them.
"""

from typing import Optional, Union, List, Dict, Sequence, Tuple, NamedTuple, TypeVar
from types import ModuleType
import copy
import logging
import threading
import warnings

import urllib.parse as urlparse

import requests
from urllib3.exceptions import InsecureRequestWarning

from regpull import auth
from regpull import exceptions

_logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = 'python-regpull'
DEFAULT_MAX_WORKERS = 4

# Forces a negotiation in on_unauthorized regardless of what others did.
_FORCE = object()

T = TypeVar('T', bound='Session')

class ApiVersion(NamedTuple):
    supported: bool
    authenticated: bool

def _ignore_warnings(obj):
    # pylint: disable=protected-access
    if obj._tlsverify is False:
        warnings.filterwarnings('ignore', category=InsecureRequestWarning)

class Session(object):
    # pylint: disable=too-many-instance-attributes
    """
    Connection to one Docker v2 registry.

    Holds the credentials and the current bearer token. Every request made
    through :meth:`request` is authorized with the token if there is one,
    else with HTTP Basic auth if credentials were given. A ``401`` makes the
    session negotiate a new token (once, even with many threads waiting) and
    re-issue the request exactly once.

    Can act as a context manager. For each context entered, a new
    `requests.Session <http://docs.python-requests.org/en/latest/user/advanced/#session-objects>`_
    is obtained and connections to the registry are shared. When the context
    exits, all the session's connections are closed. Outside a context each
    request uses an ephemeral connection.
    """
    def __init__(self, host: str,
            username: Optional[str]=None, password: Optional[str]=None,
            insecure: bool=False, auth_host: Optional[str]=None,
            tlsverify: Union[bool, str]=True, timeout: Optional[float]=None,
            user_agent: str=DEFAULT_USER_AGENT,
            max_workers: int=DEFAULT_MAX_WORKERS):
        # pylint: disable=too-many-arguments
        """
        :param host: Host name of registry. Can contain port numbers. e.g. ``registry-1.docker.io``, ``localhost:5000``.

        :param username: User name to authenticate as.

        :param password: User's password.

        :param insecure: Use HTTP instead of HTTPS (which is the default) when connecting to the registry.

        :param auth_host: Host to use for token authentication. If set, overrides host returned by the registry's challenge.

        :param tlsverify: When set to False, do not verify TLS certificate. When pointed to a `<ca bundle>.crt` file use this for TLS verification.

        :param timeout: Optional timeout for requests, passed to ``requests``.

        :param user_agent: ``User-Agent`` header value.

        :param max_workers: Maximum number of blob requests to run at once.
        """
        if max_workers < 1:
            raise ValueError('max_workers must be at least 1')
        self._base_url = ('http' if insecure else 'https') + '://' + host + '/v2/'
        self._host = host
        self._credentials = None
        if username is not None and password is not None:
            self._credentials = (username, password)
        self._insecure = insecure
        self._auth_host = auth_host
        self._tlsverify = tlsverify
        self._timeout = timeout
        self._user_agent = user_agent
        self._max_workers = max_workers
        # (token, generation) is swapped as a whole so readers never see a
        # token paired with the wrong generation.
        self._auth_state: Tuple[Optional[auth.Token], int] = (None, 0)
        self._auth_error: Optional[Exception] = None
        self._auth_lock = threading.Lock()
        self._authenticated = False
        self._sessions: List[Union[ModuleType, requests.Session]] = [requests]

    @property
    def host(self) -> str:
        return self._host

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def max_workers(self) -> int:
        return self._max_workers

    @property
    def token(self) -> Optional[auth.Token]:
        """
        Current bearer token. It is obtained automatically when the registry
        asks for one. It can also be set, either to a :class:`regpull.auth.Token`
        or to a plain string, but be aware tokens expire quickly.
        """
        return self._auth_state[0]

    @token.setter
    def token(self, value: Union[None, str, auth.Token]):
        if isinstance(value, str):
            value = auth.Token(value)
        with self._auth_lock:
            self._auth_state = (value, self._auth_state[1] + 1)
            self._auth_error = None

    @property
    def authenticated(self) -> bool:
        return self._authenticated

    def _set_authenticated(self, value):
        with self._auth_lock:
            self._authenticated = value

    def authorization(self, token: Optional[auth.Token]=None) -> Optional[str]:
        if token is not None:
            return 'Bearer ' + token.value
        if self._credentials is not None:
            return auth.basic_authorization(*self._credentials)
        return None

    def authorize(self, headers: Optional[Dict[str, str]]=None) -> Dict[str, str]:
        """
        Return a copy of ``headers`` with the ``Authorization`` header this
        session would send: ``Bearer`` if it holds a token, ``Basic`` if it
        holds credentials, none otherwise.
        """
        return self._headers(self.token, headers)

    def _headers(self, token, headers):
        r = dict(headers or {})
        authorization = self.authorization(token)
        if authorization is not None and 'Authorization' not in r:
            r['Authorization'] = authorization
        if self._user_agent and 'User-Agent' not in r:
            r['User-Agent'] = self._user_agent
        return r

    def url(self, path: str) -> str:
        return urlparse.urljoin(self._base_url, path)

    def repo_name(self, name: str) -> str:
        """
        Return the repository name as the registry knows it. Docker Hub keeps
        official images under ``library/``.
        """
        if self._host.endswith('docker.io') and len(name.split('/')) == 1:
            return 'library/' + name
        return name

    def pull_scope(self, name: str) -> str:
        return 'repository:' + self.repo_name(name) + ':pull'

    def _send(self, method, url, token, **kwargs):
        kwargs['headers'] = self._headers(token, kwargs.get('headers'))
        kwargs.setdefault('allow_redirects', True)
        kwargs.setdefault('verify', self._tlsverify)
        kwargs.setdefault('timeout', self._timeout)
        with warnings.catch_warnings():
            _ignore_warnings(self)
            return getattr(self._sessions[0], method)(url, **kwargs)

    def request(self, method: str, path: str,
                scopes: Optional[Sequence[str]]=None, **kwargs) -> requests.Response:
        """
        Send an authorized request to the registry.

        A ``401`` triggers token negotiation and one retry. A second ``401``
        is :class:`regpull.exceptions.RegAuthFailedError`. Other statuses are
        returned to the caller.

        :param method: Lowercase HTTP method name, e.g. ``get``.

        :param path: Path relative to ``/v2/`` or an absolute URL.

        :param scopes: Scopes to ask for if the registry's challenge names none.

        :param kwargs: Passed to ``requests``.
        """
        url = self.url(path)
        token, generation = self._auth_state
        r = self._send(method, url, token, **kwargs)
        # pylint: disable=no-member
        if r.status_code != requests.codes.unauthorized:
            return r
        r.close()
        token = self._refresh(r, generation, scopes)
        r = self._send(method, url, token, **kwargs)
        if r.status_code == requests.codes.unauthorized:
            r.close()
            self._set_authenticated(False)
            raise exceptions.RegAuthFailedError(r.status_code)
        return r

    def on_unauthorized(self, response: requests.Response,
                        scopes: Optional[Sequence[str]]=None) -> auth.Token:
        """
        Negotiate a new token from a ``401`` response's challenge and store it.
        """
        return self._refresh(response, _FORCE, scopes)

    def _refresh(self, response, generation, scopes, prefer_scopes=False):
        header = response.headers.get('WWW-Authenticate')
        with self._auth_lock:
            token, current = self._auth_state
            if generation is not _FORCE and current != generation:
                # Someone else negotiated while we waited; share their outcome.
                if self._auth_error is not None:
                    raise copy.copy(self._auth_error) from self._auth_error
                return token
            self._auth_state = (None, current)
            self._authenticated = False
            try:
                if auth.is_basic_challenge(header):
                    raise exceptions.RegAuthFailedError(response.status_code)
                challenge = auth.parse_challenge(header)
                _logger.debug('negotiating token with %s', challenge.realm)
                token = auth.negotiate(challenge,
                                       self._credentials,
                                       scopes if prefer_scopes or not challenge.scope else None,
                                       self._sessions[0],
                                       self._auth_host,
                                       self._user_agent,
                                       verify=self._tlsverify,
                                       timeout=self._timeout)
            except Exception as ex:
                self._auth_error = ex
                self._auth_state = (None, current + 1)
                raise
            self._auth_error = None
            self._auth_state = (token, current + 1)
            self._authenticated = True
            return token

    def login(self, scopes: Optional[Sequence[str]]=None) -> Optional[auth.Token]:
        """
        Authenticate to the registry, using the credentials given to the
        constructor or otherwise as the anonymous user.

        :param scopes: Scopes to ask for, e.g. ``['repository:library/busybox:pull']``.

        :returns: The new token, or ``None`` if the registry let us in without one (no auth, or HTTP Basic auth).
        """
        generation = self._auth_state[1]
        r = self._send('get', self._base_url, None)
        r.close()
        if r.ok:
            self._set_authenticated(True)
            return None
        # pylint: disable=no-member
        if r.status_code != requests.codes.unauthorized:
            raise exceptions.RegUnexpectedStatusCodeError(r.status_code,
                                                          requests.codes.unauthorized)
        return self._refresh(r, generation, scopes, prefer_scopes=True)

    def is_authenticated(self, path: str='') -> bool:
        """
        Probe ``path`` (the API root by default) with the current authorization.

        :returns: ``True`` if the registry answers ``200``.

        :raises regpull.exceptions.RegAuthFailedError: For any other status.
        """
        r = self._send('get', self.url(path), self.token)
        r.close()
        # pylint: disable=no-member
        if r.status_code != requests.codes.ok:
            self._set_authenticated(False)
            raise exceptions.RegAuthFailedError(r.status_code)
        self._set_authenticated(True)
        return True

    def api_version_check(self) -> ApiVersion:
        """
        Check that the registry speaks the v2 API.

        :returns: ``supported`` is always ``True``; ``authenticated`` is ``False`` if the registry answered ``401``.

        :raises regpull.exceptions.RegUnsupportedApiVersionError: For any status other than ``200`` or ``401``, or a non-v2 API version header.
        """
        r = self._send('get', self._base_url, self.token)
        r.close()
        # pylint: disable=no-member
        if r.status_code not in (requests.codes.ok, requests.codes.unauthorized):
            raise exceptions.RegUnsupportedApiVersionError(r.status_code)
        version = r.headers.get('Docker-Distribution-API-Version')
        if version is not None and 'registry/2.0' not in version.split():
            raise exceptions.RegUnsupportedApiVersionError(r.status_code, version)
        authenticated = r.status_code == requests.codes.ok
        self._set_authenticated(authenticated)
        _logger.debug('%s speaks v2 (authenticated: %s)', self._host, authenticated)
        return ApiVersion(True, authenticated)

    def __enter__(self: T) -> T:
        assert self._sessions
        session = requests.Session()
        session.__enter__()
        self._sessions.insert(0, session)
        return self

    def __exit__(self, *args):
        assert len(self._sessions) > 1
        session = self._sessions.pop(0)
        return session.__exit__(*args)

def check(session: Session) -> ApiVersion:
    return session.api_version_check()
