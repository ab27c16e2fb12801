import json
import threading
import time
import pytest
import requests
import responses
from conftest import challenge, token_body, bearer_protected, token_calls, blob_url
import regpull
from regpull import blobs
from regpull import exceptions

# pylint: disable=no-member,redefined-outer-name,protected-access

def test_authorize_anonymous(session):
    headers = session.authorize({'Accept': 'x'})
    assert headers['Accept'] == 'x'
    assert 'Authorization' not in headers
    assert not session.authenticated

def test_authorize_basic(auth_session):
    assert auth_session.authorize()['Authorization'] == pytest.authorization

def test_authorize_bearer(auth_session):
    auth_session.token = 'abc'
    assert auth_session.token == regpull.Token('abc')
    assert auth_session.authorize()['Authorization'] == 'Bearer abc'
    auth_session.token = None
    assert auth_session.authorize()['Authorization'] == pytest.authorization

def test_authorize_keeps_caller_header(session):
    session.token = 'abc'
    assert session.authorize({'Authorization': 'Other'})['Authorization'] == 'Other'

def test_max_workers():
    with pytest.raises(ValueError):
        regpull.Session(pytest.host, max_workers=0)
    assert regpull.Session(pytest.host, max_workers=2).max_workers == 2

def test_insecure_base_url():
    assert regpull.Session('localhost:5000', insecure=True).base_url == 'http://localhost:5000/v2/'
    assert regpull.Session(pytest.host).base_url == pytest.base_url

def test_repo_name():
    hub = regpull.Session('registry-1.docker.io')
    assert hub.repo_name('busybox') == 'library/busybox'
    assert hub.repo_name('foo/bar') == 'foo/bar'
    assert hub.pull_scope('busybox') == 'repository:library/busybox:pull'
    assert regpull.Session(pytest.host).repo_name('busybox') == 'busybox'

def test_request_negotiates_on_401(rsps, session):
    url = blob_url(pytest.layer1_hash)
    rsps.add_callback(responses.GET, url, callback=bearer_protected(pytest.layer1))
    rsps.add(responses.GET, pytest.realm, body=token_body('tok', expires_in=300))
    r = session.request('get', pytest.repo + '/blobs/' + pytest.layer1_hash)
    assert r.status_code == 200
    assert r.content == pytest.layer1
    assert session.token.value == 'tok'
    assert session.token.expires_at is not None
    assert session.authenticated
    assert len(token_calls(rsps)) == 1
    assert rsps.calls[-1].request.headers['Authorization'] == 'Bearer tok'

def test_request_sends_credentials_to_realm(rsps, auth_session):
    url = blob_url(pytest.layer1_hash)
    rsps.add_callback(responses.GET, url, callback=bearer_protected(pytest.layer1))
    rsps.add(responses.GET, pytest.realm, body=token_body('tok'))
    auth_session.request('get', url)
    assert rsps.calls[0].request.headers['Authorization'] == pytest.authorization
    assert token_calls(rsps)[0].request.headers['Authorization'] == pytest.authorization

def test_request_uses_scopes_when_challenge_has_none(rsps, session):
    url = blob_url(pytest.layer1_hash)
    rsps.add_callback(responses.GET, url, callback=bearer_protected(pytest.layer1, scope=None))
    rsps.add(responses.GET, pytest.realm, body=token_body('tok'))
    session.request('get', url, scopes=['repository:library/busybox:pull'])
    assert 'scope=repository%3Alibrary%2Fbusybox%3Apull' in token_calls(rsps)[0].request.url

def test_request_refreshes_expired_token(rsps, session):
    session.token = 'stale'
    url = blob_url(pytest.layer1_hash)
    rsps.add_callback(responses.GET, url, callback=bearer_protected(pytest.layer1))
    rsps.add(responses.GET, pytest.realm, body=token_body('tok'))
    assert session.request('get', url).content == pytest.layer1
    assert rsps.calls[0].request.headers['Authorization'] == 'Bearer stale'
    assert session.token.value == 'tok'
    assert len(token_calls(rsps)) == 1

def test_request_second_401_fails(rsps, session):
    url = blob_url(pytest.layer1_hash)
    rsps.add(responses.GET, url, status=401, headers={'WWW-Authenticate': challenge()})
    rsps.add(responses.GET, pytest.realm, body=token_body('tok'))
    with pytest.raises(exceptions.RegAuthFailedError) as ex:
        session.request('get', url)
    assert ex.value.status == 401
    assert len(token_calls(rsps)) == 1
    assert len(rsps.calls) == 3
    assert not session.authenticated

def test_request_basic_challenge(rsps, auth_session):
    url = blob_url(pytest.layer1_hash)
    rsps.add(responses.GET, url, status=401,
             headers={'WWW-Authenticate': 'Basic realm="Registry Realm"'})
    with pytest.raises(exceptions.RegAuthFailedError):
        auth_session.request('get', url)
    assert len(rsps.calls) == 1

def test_request_bad_challenge(rsps, session):
    url = blob_url(pytest.layer1_hash)
    rsps.add(responses.GET, url, status=401,
             headers={'WWW-Authenticate': 'Bearer service="x"'})
    with pytest.raises(exceptions.RegChallengeParseError):
        session.request('get', url)

def test_request_other_status_returned(rsps, session):
    url = blob_url(pytest.layer1_hash)
    rsps.add(responses.GET, url, status=404)
    assert session.request('get', url).status_code == 404

def test_request_transport_error_propagates(rsps, session):
    rsps.add(responses.GET, pytest.base_url,
             body=requests.exceptions.ConnectionError('refused'))
    with pytest.raises(exceptions.TransportError):
        session.request('get', '')

def test_on_unauthorized(rsps, session):
    rsps.add(responses.GET, pytest.realm, body=token_body('forced'))
    response = requests.Response()
    response.status_code = 401
    response.headers['WWW-Authenticate'] = challenge()
    assert session.on_unauthorized(response).value == 'forced'
    assert session.token.value == 'forced'

def test_login(rsps, auth_session):
    rsps.add(responses.GET, pytest.base_url, status=401,
             headers={'WWW-Authenticate': challenge(None)})
    rsps.add(responses.GET, pytest.realm, body=token_body('tok'))
    token = auth_session.login([pytest.scope])
    assert token.value == 'tok'
    assert auth_session.token is token
    assert auth_session.authenticated
    url = token_calls(rsps)[0].request.url
    assert 'scope=repository%3Alibrary%2Fbusybox%3Apull' in url
    assert 'account=fred' in url

def test_login_not_needed(rsps, session):
    rsps.add(responses.GET, pytest.base_url, body='{}')
    assert session.login([pytest.scope]) is None
    assert session.token is None
    assert session.authenticated

def test_login_unexpected_status(rsps, session):
    rsps.add(responses.GET, pytest.base_url, status=500)
    with pytest.raises(exceptions.RegUnexpectedStatusCodeError) as ex:
        session.login()
    assert ex.value.status == 500
    assert ex.value.expected == 401

def test_login_rejected(rsps, auth_session):
    rsps.add(responses.GET, pytest.base_url, status=401,
             headers={'WWW-Authenticate': challenge(None)})
    rsps.add(responses.GET, pytest.realm, status=401)
    with pytest.raises(exceptions.RegAuthFailedError):
        auth_session.login([pytest.scope])
    assert auth_session.token is None
    assert not auth_session.authenticated

def test_authenticated_flag_written_under_lock(rsps, session):
    rsps.add(responses.GET, pytest.base_url, body='{}')
    # pylint: disable=protected-access
    session._auth_lock.acquire()
    try:
        t = threading.Thread(target=session.is_authenticated)
        t.start()
        t.join(0.5)
        assert t.is_alive()
        assert not session.authenticated
    finally:
        session._auth_lock.release()
    t.join()
    assert session.authenticated

def test_is_authenticated(rsps, session):
    session.token = 'tok'
    rsps.add_callback(responses.GET, pytest.base_url,
                      callback=bearer_protected('{}', scope=None))
    assert session.is_authenticated()
    assert session.authenticated
    session.token = 'bad'
    with pytest.raises(exceptions.RegAuthFailedError) as ex:
        session.is_authenticated()
    assert ex.value.status == 401
    assert not session.authenticated

def test_api_version_check(rsps, session):
    rsps.add(responses.GET, pytest.base_url, body='{}',
             headers={'Docker-Distribution-API-Version': 'registry/2.0'})
    assert session.api_version_check() == regpull.ApiVersion(True, True)
    assert regpull.check(session) == (True, True)

def test_api_version_check_unauthenticated(rsps, session):
    rsps.add(responses.GET, pytest.base_url, status=401,
             headers={'WWW-Authenticate': challenge(None)})
    api = session.api_version_check()
    assert api.supported
    assert not api.authenticated
    assert not token_calls(rsps)

@pytest.mark.parametrize('status', [404, 500, 302])
def test_api_version_check_unsupported(rsps, session, status):
    rsps.add(responses.GET, pytest.base_url, status=status)
    with pytest.raises(exceptions.RegUnsupportedApiVersionError) as ex:
        session.api_version_check()
    assert ex.value.status == status

def test_api_version_check_wrong_version(rsps, session):
    rsps.add(responses.GET, pytest.base_url, body='{}',
             headers={'Docker-Distribution-API-Version': 'registry/1.0'})
    with pytest.raises(exceptions.RegUnsupportedApiVersionError) as ex:
        session.api_version_check()
    assert ex.value.version == 'registry/1.0'

def test_api_version_check_transport_error(rsps, session):
    rsps.add(responses.GET, pytest.base_url,
             body=requests.exceptions.ConnectionError('refused'))
    with pytest.raises(requests.exceptions.ConnectionError):
        session.api_version_check()

def test_context_manager(rsps, session):
    rsps.add(responses.GET, pytest.base_url, body='{}')
    with session as s:
        assert s is session
        assert isinstance(session._sessions[0], requests.Session)
        assert s.api_version_check().authenticated
    assert session._sessions == [requests]

class _Response(object):
    def __init__(self, status_code, headers=None, content=b''):
        self.status_code = status_code
        self.headers = requests.structures.CaseInsensitiveDict(headers or {})
        self.content = content

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        return json.loads(self.content.decode('utf-8'))

    def close(self):
        pass

class _Transport(object):
    """
    Answers 401 to every unauthorized blob request, but only once all
    ``waiters`` requests have arrived, so they all see the 401 together.
    """
    def __init__(self, waiters, token_status=200):
        self._barrier = threading.Barrier(waiters, timeout=10)
        self._lock = threading.Lock()
        self._token_status = token_status
        self.token_requests = 0

    def get(self, url, headers=None, **kwargs):
        # pylint: disable=unused-argument
        if url.startswith(pytest.realm):
            with self._lock:
                self.token_requests += 1
            time.sleep(0.1)
            return _Response(self._token_status, {}, token_body('fresh').encode('utf-8'))
        if headers.get('Authorization') == 'Bearer fresh':
            return _Response(200, {}, pytest.layer1)
        self._barrier.wait()
        return _Response(401, {'WWW-Authenticate': challenge()})

@pytest.mark.parametrize('stale', [None, 'expired'])
def test_single_flight_refresh(session, stale):
    session.token = stale
    transport = _Transport(8)
    session._sessions[0] = transport
    results = blobs.fetch_many(session, pytest.repo, [pytest.layer1_hash] * 8, max_workers=8)
    assert results == [pytest.layer1] * 8
    assert transport.token_requests == 1
    assert session.token.value == 'fresh'

def test_single_flight_failure_shared(session):
    transport = _Transport(6, token_status=503)
    session._sessions[0] = transport
    errors = []
    def fetch():
        try:
            blobs.fetch(session, pytest.repo, pytest.layer1_hash)
        except exceptions.RegAuthFailedError as ex:
            errors.append(ex)
    threads = [threading.Thread(target=fetch) for _ in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(errors) == 6
    assert all(ex.status == 503 for ex in errors)
    # Each thread gets its own exception, chained to the one that failed the negotiation.
    assert len(set(id(ex) for ex in errors)) == 6
    first = [ex for ex in errors if ex.__cause__ is None]
    assert len(first) == 1
    assert all(ex.__cause__ is first[0] for ex in errors if ex is not first[0])
    assert transport.token_requests == 1
    assert session.token is None
