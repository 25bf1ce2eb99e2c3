"""
Shared fakes for the zap tests.

Network access goes through requests.get / requests.post, which are replaced
by a recording FakeHttp so every call made by the pipeline can be asserted.
"""
from collections import namedtuple
import json
import urllib.parse

import pytest
import requests
from nostr.key import PrivateKey

import zaperrors as errors
import zaplnurl as lnurl
import zaprequest as request
import zapwallet as wallets

RECIPIENT = "f7234bd4c1394dda46d09f35bd384dd30cc552ad5541990f98844fb06676e9ca"
EVENT_ID = "b" * 64
DISCOVERY_URL = "https://example.com/.well-known/lnurlp/alice"
CALLBACK_URL = "https://example.com/lnurlp/alice/callback"
INVOICE = "lnbc1u1pjtestinvoice"

Call = namedtuple("Call", ["method", "url", "data", "kwargs"])


class FakeResponse:
    def __init__(self, body=None, status_code=200, lines=None):
        self.body = body
        self.status_code = status_code
        self.lines = lines or []
        self.closed = False

    @property
    def ok(self):
        return 200 <= self.status_code < 400

    @property
    def text(self):
        return self.body if isinstance(self.body, str) else json.dumps(self.body)

    def json(self):
        if isinstance(self.body, str):
            return json.loads(self.body)
        return self.body

    def iter_lines(self):
        for line in self.lines:
            if isinstance(line, Exception):
                raise line
            yield json.dumps(line).encode()

    def close(self):
        self.closed = True


class FakeHttp:
    """Routes requests by method and url prefix; unrouted calls fail the test."""

    def __init__(self):
        self.calls = []
        self.routes = []

    def route(self, method, prefix, *responses, when=None):
        self.routes.append({"method": method, "prefix": prefix, "when": when,
                            "responses": list(responses)})

    def get(self, url, **kwargs):
        return self.dispatch("GET", url, None, kwargs)

    def post(self, url, data=None, **kwargs):
        return self.dispatch("POST", url, data, kwargs)

    def dispatch(self, method, url, data, kwargs):
        self.calls.append(Call(method, url, data, kwargs))
        for r in self.routes:
            if r["method"] != method or not url.startswith(r["prefix"]):
                continue
            if r["when"] is not None and not r["when"](url, data):
                continue
            responses = r["responses"]
            response = responses.pop(0) if len(responses) > 1 else responses[0]
            if isinstance(response, Exception):
                raise response
            return response
        raise AssertionError(f"unexpected {method} {url}")

    def callsTo(self, prefix):
        return [c for c in self.calls if c.url.startswith(prefix)]


def query(call):
    return {k: v[0] for k, v in urllib.parse.parse_qs(urllib.parse.urlsplit(call.url).query).items()}


def isZapGet(url, data):
    return "nostr=" in url


def isBareGet(url, data):
    return "nostr=" not in url


def payInfo(**overrides):
    info = {
        "tag": "payRequest",
        "callback": CALLBACK_URL,
        "minSendable": 10000,
        "maxSendable": 10000000,
        "metadata": "[[\"text/plain\",\"alice\"]]",
        "allowsNostr": True,
        "nostrPubkey": "c" * 64,
        "commentAllowed": 0,
    }
    info.update(overrides)
    return info


class RecordingSigner(request.PrivateKeySigner):
    def __init__(self):
        super().__init__(PrivateKey())
        self.signed = []

    def signRecord(self, unsigned):
        self.signed.append(unsigned)
        return super().signRecord(unsigned)


class DecliningSigner(request.Signer):
    def getPublicKey(self):
        return "d" * 64

    def signRecord(self, unsigned):
        raise RuntimeError("user declined to sign")


class ForbiddenSigner(request.Signer):
    def __init__(self):
        self.calls = 0

    def getPublicKey(self):
        self.calls += 1
        raise AssertionError("signer must not be used")

    def signRecord(self, unsigned):
        self.calls += 1
        raise AssertionError("signer must not be used")


class FakeWallet(wallets.Wallet):
    def __init__(self, enabled=True, reject=False, decoded=None):
        self.enabled = enabled
        self.reject = reject
        self.decoded = decoded
        self.paid = []

    def enable(self):
        self.enabled = True
        return True

    def decodeInvoice(self, paymentRequest):
        return self.decoded

    def payInvoice(self, paymentRequest):
        if not self.enabled:
            raise errors.WalletUnavailable("wallet not enabled")
        self.paid.append(paymentRequest)
        if self.reject:
            raise RuntimeError("payment declined by user")
        return {"preimage": "00" * 32}


@pytest.fixture(autouse=True)
def lnurlConfig(monkeypatch):
    monkeypatch.setattr(lnurl, "config", {})
    return lnurl.config


@pytest.fixture
def http(monkeypatch):
    fake = FakeHttp()
    monkeypatch.setattr(requests, "get", fake.get)
    monkeypatch.setattr(requests, "post", fake.post)
    return fake


@pytest.fixture
def signer():
    return RecordingSigner()


@pytest.fixture
def wallet():
    return FakeWallet()


@pytest.fixture
def target():
    return lnurl.resolveAddress("alice@example.com")


@pytest.fixture
def capabilities(target):
    return lnurl.validateLNURLPayInfo(payInfo(), target)
