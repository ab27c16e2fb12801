import base64
import hashlib
import json
import pytest
import responses
from jwcrypto import jwk, jws
import regpull

_host = 'registry.example.com'
_base_url = 'https://' + _host + '/v2/'
_realm = 'https://auth.example.com/token'
_service = 'registry.example.com'
_repo = 'library/busybox'
_scope = 'repository:library/busybox:pull'
_username = 'fred'
_password = '!WordPass0$'

_layer1 = b'base layer ' * 1000
_layer2 = b'top layer ' * 500
_config = b'{"architecture": "amd64", "os": "linux"}'

def _sha256(buf):
    return 'sha256:' + hashlib.sha256(buf).hexdigest()

def pytest_configure(config):
    setattr(pytest, 'host', _host)
    setattr(pytest, 'base_url', _base_url)
    setattr(pytest, 'realm', _realm)
    setattr(pytest, 'service', _service)
    setattr(pytest, 'repo', _repo)
    setattr(pytest, 'scope', _scope)
    setattr(pytest, 'username', _username)
    setattr(pytest, 'password', _password)
    setattr(pytest, 'authorization', 'Basic ' + base64.b64encode((_username + ':' + _password).encode('utf-8')).decode('utf-8'))

    setattr(pytest, 'layer1', _layer1)
    setattr(pytest, 'layer2', _layer2)
    setattr(pytest, 'config_blob', _config)
    setattr(pytest, 'layer1_hash', _sha256(_layer1))
    setattr(pytest, 'layer2_hash', _sha256(_layer2))
    setattr(pytest, 'config_hash', _sha256(_config))

def challenge(scope=_scope, realm=_realm, service=_service):
    r = 'Bearer realm="%s",service="%s"' % (realm, service)
    if scope:
        r += ',scope="%s"' % scope
    return r

def manifest_url(reference, repo=_repo):
    return _base_url + repo + '/manifests/' + reference

def blob_url(dgst, repo=_repo):
    return _base_url + repo + '/blobs/' + dgst

def schema2_manifest(config=None, layers=None):
    config = config or _config
    layers = layers if layers is not None else [_layer1, _layer2]
    return json.dumps({
        'schemaVersion': 2,
        'mediaType': 'application/vnd.docker.distribution.manifest.v2+json',
        'config': {
            'mediaType': 'application/vnd.docker.container.image.v1+json',
            'size': len(config),
            'digest': _sha256(config)
        },
        'layers': [{
            'mediaType': 'application/vnd.docker.image.rootfs.diff.tar.gzip',
            'size': len(layer),
            'digest': _sha256(layer)
        } for layer in layers]
    }, sort_keys=True)

def schema1_manifest(layers=None, tag='latest'):
    # fsLayers lists the top layer first
    layers = layers if layers is not None else [_layer2, _layer1]
    return json.dumps({
        'schemaVersion': 1,
        'name': _repo,
        'tag': tag,
        'architecture': 'amd64',
        'fsLayers': [{'blobSum': _sha256(layer)} for layer in layers],
        'history': [{'v1Compatibility': '{}'} for _ in layers]
    }, sort_keys=True)

def manifest_list(entries):
    return json.dumps({
        'schemaVersion': 2,
        'mediaType': 'application/vnd.docker.distribution.manifest.list.v2+json',
        'manifests': [{
            'mediaType': 'application/vnd.docker.distribution.manifest.v2+json',
            'size': len(body),
            'digest': _sha256(body.encode('utf-8')),
            'platform': platform
        } for body, platform in entries]
    }, sort_keys=True)

def _urlsafe_b64encode(s):
    if isinstance(s, str):
        s = s.encode('utf-8')
    return base64.urlsafe_b64encode(s).rstrip(b'=').decode('utf-8')

def _urlsafe_b64decode(s):
    s = s.encode('utf-8')
    return base64.urlsafe_b64decode(s + b'=' * (-len(s) % 4))

def sign_manifest(manifest_json):
    format_length = manifest_json.rfind('}')
    format_tail = manifest_json[format_length:]
    key = jwk.JWK.generate(kty='EC', crv='P-256')
    jwstoken = jws.JWS(manifest_json.encode('utf-8'))
    jkey = json.loads(key.export_public())
    # Docker expects 32 bytes for x and y
    jkey['x'] = _urlsafe_b64encode(_urlsafe_b64decode(jkey['x']).rjust(32, b'\0'))
    jkey['y'] = _urlsafe_b64encode(_urlsafe_b64decode(jkey['y']).rjust(32, b'\0'))
    jwstoken.add_signature(key, None, {
        'formatLength': format_length,
        'formatTail': _urlsafe_b64encode(format_tail)
    }, {
        'jwk': jkey,
        'alg': 'ES256'
    })
    return manifest_json[:format_length] + \
           ', "signatures": [' + jwstoken.serialize() + ']' + \
           format_tail

def token_body(token='tok', **kwargs):
    body = {'token': token}
    body.update(kwargs)
    return json.dumps(body)

def bearer_protected(body, token='tok', content_type='application/octet-stream',
                     headers=None, scope=_scope):
    """
    Callback that answers 401 with a challenge unless the request carries
    ``Bearer <token>``.
    """
    def callback(request):
        if request.headers.get('Authorization') != 'Bearer ' + token:
            return (401, {'WWW-Authenticate': challenge(scope)}, '')
        h = {'Content-Type': content_type}
        h.update(headers or {})
        return (200, h, body)
    return callback

def token_calls(rsps):
    return [c for c in rsps.calls if c.request.url.startswith(_realm)]

@pytest.fixture
def rsps():
    with responses.RequestsMock(assert_all_requests_are_fired=False) as r:
        yield r

@pytest.fixture
def session():
    return regpull.Session(_host)

@pytest.fixture
def auth_session():
    return regpull.Session(_host, _username, _password)
