"""
Bearer token negotiation, as described in
https://docs.docker.com/registry/spec/auth/token/
"""

from typing import Optional, Sequence, Tuple, NamedTuple
import base64
import datetime
import logging

import urllib.parse as urlparse
from urllib.parse import urlencode

import dateutil.parser
import requests
import www_authenticate # type: ignore

from regpull import exceptions

_logger = logging.getLogger(__name__)

class Challenge(NamedTuple):
    realm: str
    service: str = ''
    scope: Tuple[str, ...] = ()

class Token(NamedTuple):
    value: str
    expires_at: Optional[datetime.datetime] = None

    def expired(self, now: Optional[datetime.datetime]=None) -> bool:
        if self.expires_at is None:
            return False
        if now is None:
            now = datetime.datetime.now(datetime.timezone.utc)
        return now >= self.expires_at

    def __str__(self):
        return self.value

def basic_authorization(username: str, password: str) -> str:
    return 'Basic ' + base64.b64encode((username + ':' + password).encode('utf-8')).decode('utf-8')

def is_basic_challenge(header: Optional[str]) -> bool:
    return bool(header) and header.lstrip().lower().startswith('basic')

def parse_challenge(header: Optional[str]) -> Challenge:
    """
    Parse a ``WWW-Authenticate: Bearer ...`` header value.

    :param header: Header value, e.g. ``Bearer realm="https://auth.example.com/token",service="registry.example.com",scope="repository:library/busybox:pull"``

    :raises regpull.exceptions.RegChallengeParseError: If the header isn't a Bearer challenge made of ``key="value"`` pairs or has no ``realm``.
    """
    if not header:
        raise exceptions.RegChallengeParseError(header, 'missing header')
    try:
        parsed = www_authenticate.parse(header)
    except ValueError as ex:
        raise exceptions.RegChallengeParseError(header, str(ex)) from ex
    if 'bearer' not in parsed:
        raise exceptions.RegChallengeParseError(header, 'not a Bearer challenge')
    info = parsed['bearer']
    if not isinstance(info, dict):
        raise exceptions.RegChallengeParseError(header, 'expected key="value" pairs')
    params = {k.lower(): v for k, v in info.items()}
    realm = params.get('realm')
    if not realm:
        raise exceptions.RegChallengeParseError(header, 'missing realm')
    return Challenge(realm,
                     params.get('service') or '',
                     tuple((params.get('scope') or '').split()))

def _parse_issued_at(s):
    try:
        issued_at = dateutil.parser.isoparse(s)
    except (TypeError, ValueError, OverflowError) as ex:
        raise exceptions.RegAuthResponseMalformedError('bad issued_at: %r' % s) from ex
    if issued_at.tzinfo is None:
        raise exceptions.RegAuthResponseMalformedError('issued_at has no offset: %r' % s)
    return issued_at

def parse_token_response(rjson) -> Token:
    """
    Build a :class:`Token` from the authorization server's JSON body.

    :raises regpull.exceptions.RegAuthResponseMalformedError: If there's no token in the response, or ``expires_in`` or ``issued_at`` can't be read.
    """
    if not isinstance(rjson, dict):
        raise exceptions.RegAuthResponseMalformedError('expected a JSON object')
    # Use 'access_token' value if present and not empty, else 'token' value.
    value = rjson.get('access_token') or rjson.get('token')
    if not value or not isinstance(value, str):
        raise exceptions.RegAuthResponseMalformedError('no token in response')
    expires_at = None
    expires_in = rjson.get('expires_in')
    if expires_in is not None:
        try:
            lifetime = datetime.timedelta(seconds=int(expires_in))
        except (TypeError, ValueError, OverflowError) as ex:
            raise exceptions.RegAuthResponseMalformedError('bad expires_in: %r' % expires_in) from ex
        issued_at = rjson.get('issued_at')
        if issued_at is None:
            issued_at = datetime.datetime.now(datetime.timezone.utc)
        else:
            issued_at = _parse_issued_at(issued_at)
        try:
            expires_at = issued_at + lifetime
        except OverflowError as ex:
            raise exceptions.RegAuthResponseMalformedError('bad expires_in: %r' % expires_in) from ex
    return Token(value, expires_at)

def token_url(challenge: Challenge,
              scopes: Optional[Sequence[str]]=None,
              account: Optional[str]=None,
              auth_host: Optional[str]=None) -> str:
    """
    Build the URL used to ask ``challenge.realm`` for a token.
    The scope entries are joined by a single space.
    """
    url_parts = list(urlparse.urlparse(challenge.realm))
    query = urlparse.parse_qsl(url_parts[4])
    if challenge.service:
        query.append(('service', challenge.service))
    scope = list(scopes) if scopes else list(challenge.scope)
    if scope:
        query.append(('scope', ' '.join(scope)))
    if account:
        query.append(('account', account))
    url_parts[4] = urlencode(query)
    if auth_host:
        url_parts[1] = auth_host
    return urlparse.urlunparse(url_parts)

def negotiate(challenge: Challenge,
              credentials: Optional[Tuple[str, str]]=None,
              scopes: Optional[Sequence[str]]=None,
              transport=requests,
              auth_host: Optional[str]=None,
              user_agent: Optional[str]=None,
              **kwargs) -> Token:
    # pylint: disable=too-many-arguments
    """
    Exchange a challenge (and optional credentials) for a bearer token.

    :param challenge: Parsed challenge from the registry.

    :param credentials: ``(username, password)`` to send as Basic auth to the realm.

    :param scopes: Scopes to request, e.g. ``['repository:library/busybox:pull']``. Defaults to the challenge's scope.

    :param transport: Object with a requests-style ``get`` method.

    :param auth_host: Host to use instead of the realm's host.

    :param user_agent: ``User-Agent`` header value.

    :param kwargs: Passed through to ``transport.get`` (e.g. ``verify``, ``timeout``).

    :raises regpull.exceptions.RegAuthFailedError: If the realm doesn't answer ``200``.

    :raises regpull.exceptions.RegAuthResponseMalformedError: If the answer has no token.
    """
    headers = {}
    account = None
    if credentials is not None:
        account = credentials[0]
        headers['Authorization'] = basic_authorization(*credentials)
    if user_agent:
        headers['User-Agent'] = user_agent
    url = token_url(challenge, scopes, account, auth_host)
    _logger.debug('requesting token from %s', url)
    r = transport.get(url, headers=headers, **kwargs)
    # pylint: disable=no-member
    if r.status_code != requests.codes.ok:
        raise exceptions.RegAuthFailedError(r.status_code)
    try:
        rjson = r.json()
    except ValueError as ex:
        raise exceptions.RegAuthResponseMalformedError('body is not JSON') from ex
    token = parse_token_response(rjson)
    _logger.info('obtained token for service %r', challenge.service)
    return token
