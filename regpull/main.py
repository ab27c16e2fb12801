import os
import sys
import errno
import logging
import argparse
import threading
import tqdm
import regpull
from regpull import exceptions
from regpull.session import DEFAULT_MAX_WORKERS

# pylint: disable=wrong-import-position,wrong-import-order,superfluous-parens

choices = ['check',
           'auth',
           'get-manifest',
           'get-layers',
           'blob-exists',
           'pull-blob',
           'pull']

parser = argparse.ArgumentParser(prog='regpull')
subparsers = parser.add_subparsers(dest='op')
subparsers.required = True
for c in choices:
    sp = subparsers.add_parser(c)
    if c == 'check':
        continue
    sp.add_argument('repo')
    if c in ('get-manifest', 'get-layers', 'pull'):
        sp.add_argument('reference')
    if c in ('blob-exists', 'pull-blob'):
        sp.add_argument('digests', nargs='+')
    if c == 'pull':
        sp.add_argument('directory')
    if c in ('get-layers', 'pull'):
        sp.add_argument('--platform', help='os/architecture[/variant]')

def _flag(environ, name):
    return environ.get(name) not in (None, '', '0', 'false', 'False')

def _session(environ):
    if _flag(environ, 'REGPULL_SKIPTLSVERIFY'):
        tlsverify = False
    else:
        tlsverify = environ.get('REGPULL_TLSVERIFY') or True
    timeout = environ.get('REGPULL_TIMEOUT')
    session = regpull.Session(environ['REGPULL_HOST'],
                              environ.get('REGPULL_USERNAME'),
                              environ.get('REGPULL_PASSWORD'),
                              _flag(environ, 'REGPULL_INSECURE'),
                              environ.get('REGPULL_AUTH_HOST'),
                              tlsverify,
                              float(timeout) if timeout else None,
                              max_workers=int(environ.get('REGPULL_MAX_WORKERS') or
                                              DEFAULT_MAX_WORKERS))
    token = environ.get('REGPULL_TOKEN')
    if token:
        session.token = token
    return session

def _platform(s):
    parts = s.split('/')
    if len(parts) not in (2, 3):
        parser.error('invalid platform: ' + s)
    return parts[0], parts[1], parts[2] if len(parts) == 3 else None

class _Progress(object):
    def __init__(self):
        self._bars = {}
        self._lock = threading.Lock()

    def __call__(self, dgst, chunk, total):
        with self._lock:
            bar = self._bars.get(dgst)
            if bar is None:
                bar = tqdm.tqdm(desc=dgst[:19],
                                total=total,
                                unit='B',
                                unit_scale=True,
                                leave=False,
                                file=sys.stderr)
                self._bars[dgst] = bar
            bar.update(len(chunk))

    def close(self):
        for bar in self._bars.values():
            bar.close()

def _resolve(repo, args):
    manifest = repo.get_manifest(args.reference)
    if not manifest.is_list:
        return manifest
    if not args.platform:
        return manifest
    desc = manifest.find_platform(*_platform(args.platform))
    if desc is None:
        raise exceptions.RegManifestNotFoundError(args.repo, args.reference + ' ' + args.platform)
    return repo.get_manifest(str(desc.digest))

def _print_descriptors(manifest):
    for desc in manifest.manifests:
        platform = desc.platform or {}
        print('%s %s/%s%s' % (desc.digest,
                              platform.get('os', '?'),
                              platform.get('architecture', '?'),
                              '/' + platform['variant'] if platform.get('variant') else ''))

def _pull(session, repo, args, environ):
    api = session.api_version_check()
    if not api.authenticated and session.token is None:
        if repo.login() is not None:
            session.is_authenticated()
    manifest = _resolve(repo, args)
    if manifest.is_list:
        sys.stderr.write('%s:%s is a manifest list, choose one with --platform\n' %
                         (args.repo, args.reference))
        _print_descriptors(manifest)
        return errno.EINVAL
    for dgst in manifest.layers:
        if not repo.blob_exists(dgst):
            raise exceptions.RegBlobNotFoundError(args.repo, str(dgst))
    os.makedirs(args.directory, exist_ok=True)
    progress = _Progress() if _flag(environ, 'REGPULL_PROGRESS') else None
    try:
        paths = repo.download_blobs(manifest.layers, args.directory, progress=progress)
    finally:
        if progress:
            progress.close()
    with open(os.path.join(args.directory, 'manifest.json'), 'w', encoding='utf8') as f:
        f.write(manifest.content)
    for path in paths:
        print(path)
    return 0

def _doit(args, environ):
    # pylint: disable=too-many-branches,too-many-return-statements
    session = _session(environ)

    with session:
        if args.op == 'check':
            api = session.api_version_check()
            print('supported: %s' % str(api.supported).lower())
            print('authenticated: %s' % str(api.authenticated).lower())
            return 0

        repo = regpull.Repository(session, args.repo)

        if args.op == 'auth':
            token = repo.login()
            print(token.value if token else '')
            return 0

        if args.op == 'get-manifest':
            print(repo.get_manifest(args.reference).content)
            return 0

        if args.op == 'get-layers':
            manifest = _resolve(repo, args)
            if manifest.is_list:
                _print_descriptors(manifest)
            else:
                for dgst in manifest.layers:
                    print(dgst)
            return 0

        if args.op == 'blob-exists':
            for dgst in args.digests:
                print('%s %s' % (dgst, str(repo.blob_exists(dgst)).lower()))
            return 0

        if args.op == 'pull-blob':
            out = getattr(sys.stdout, 'buffer', sys.stdout)
            for dgst in args.digests:
                out.write(repo.fetch_blob(dgst))
            out.flush()
            return 0

        return _pull(session, repo, args, environ)

def doit(args, environ):
    args = parser.parse_args(args)
    level = environ.get('REGPULL_LOG_LEVEL')
    if level:
        logging.basicConfig(level=level.upper(),
                            format='%(levelname)s %(name)s: %(message)s')
    try:
        return _doit(args, environ)
    except (exceptions.RegAuthFailedError,
            exceptions.RegChallengeParseError,
            exceptions.RegAuthResponseMalformedError) as ex:
        sys.stderr.write('%s\n' % ex)
        return errno.EACCES
    except (exceptions.RegManifestNotFoundError,
            exceptions.RegBlobNotFoundError) as ex:
        sys.stderr.write('%s\n' % ex)
        return errno.ENOENT
    except (exceptions.RegMalformedDigestError,
            exceptions.RegUnsupportedDigestAlgorithmError) as ex:
        sys.stderr.write('%s\n' % ex)
        return errno.EINVAL
    except exceptions.RegError as ex:
        sys.stderr.write('%s\n' % ex)
        return errno.EIO

def main():
    sys.exit(doit(sys.argv[1:], os.environ))
