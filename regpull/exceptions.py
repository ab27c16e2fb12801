import requests

# Transport failures come straight from requests and are never wrapped.
TransportError = requests.exceptions.RequestException

class RegError(Exception):
    pass

class RegUnexpectedError(RegError):
    def __init__(self, got, expected):
        super(RegUnexpectedError, self).__init__(got, expected)
        self.got = got
        self.expected = expected

class RegUnexpectedStatusCodeError(RegUnexpectedError):
    @property
    def status(self):
        return self.got

    def __str__(self):
        return 'expected status code %s, got %d' % (self.expected, self.got)

class RegDigestMismatchError(RegUnexpectedError):
    def __str__(self):
        return 'expected digest %s, got %s' % (self.expected, self.got)

class RegUnexpectedKeyTypeError(RegUnexpectedError):
    def __str__(self):
        return 'expected key type %s, got %s' % (self.expected, self.got)

class RegUnsupportedApiVersionError(RegError):
    def __init__(self, status, version=None):
        super(RegUnsupportedApiVersionError, self).__init__(status, version)
        self.status = status
        self.version = version

    def __str__(self):
        if self.version is not None:
            return 'registry does not speak v2 (API version %s)' % self.version
        return 'registry does not speak v2 (status code %d)' % self.status

class RegChallengeParseError(RegError):
    def __init__(self, header, reason):
        super(RegChallengeParseError, self).__init__(header, reason)
        self.header = header
        self.reason = reason

    def __str__(self):
        return 'bad WWW-Authenticate challenge %r: %s' % (self.header, self.reason)

class RegAuthFailedError(RegError):
    def __init__(self, status):
        super(RegAuthFailedError, self).__init__(status)
        self.status = status

    def __str__(self):
        return 'authentication failed (status code %d)' % self.status

class RegAuthResponseMalformedError(RegError):
    def __init__(self, reason):
        super(RegAuthResponseMalformedError, self).__init__(reason)
        self.reason = reason

    def __str__(self):
        return 'malformed token response: %s' % self.reason

class RegUnknownMediaTypeError(RegError):
    def __init__(self, media_type):
        super(RegUnknownMediaTypeError, self).__init__(media_type)
        self.media_type = media_type

    def __str__(self):
        return 'unknown media type: %s' % self.media_type

class RegMalformedDigestError(RegError):
    def __init__(self, digest, reason):
        super(RegMalformedDigestError, self).__init__(digest, reason)
        self.digest = digest
        self.reason = reason

    def __str__(self):
        return 'malformed digest %r: %s' % (self.digest, self.reason)

class RegUnsupportedDigestAlgorithmError(RegError):
    def __init__(self, algorithm):
        super(RegUnsupportedDigestAlgorithmError, self).__init__(algorithm)
        self.algorithm = algorithm

    def __str__(self):
        return 'unsupported digest algorithm: %s' % self.algorithm

class RegManifestNotFoundError(RegError):
    def __init__(self, name, reference):
        super(RegManifestNotFoundError, self).__init__(name, reference)
        self.name = name
        self.reference = reference

    def __str__(self):
        return 'manifest not found: %s:%s' % (self.name, self.reference)

class RegManifestParseError(RegError):
    def __init__(self, reason):
        super(RegManifestParseError, self).__init__(reason)
        self.reason = reason

    def __str__(self):
        return 'cannot parse manifest: %s' % self.reason

class RegManifestSignatureError(RegManifestParseError):
    pass

class RegDisallowedSignatureAlgorithmError(RegManifestParseError):
    def __init__(self, alg):
        super(RegDisallowedSignatureAlgorithmError, self).__init__(
            'disallowed signature algorithm: %s' % alg)
        self.alg = alg

class RegSignatureChainNotImplementedError(RegManifestParseError):
    def __init__(self):
        super(RegSignatureChainNotImplementedError, self).__init__(
            'verification with a cert chain is not implemented')

class RegBlobNotFoundError(RegError):
    def __init__(self, name, digest):
        super(RegBlobNotFoundError, self).__init__(name, digest)
        self.name = name
        self.digest = digest

    def __str__(self):
        return 'blob not found: %s@%s' % (self.name, self.digest)
