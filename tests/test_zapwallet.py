import json

import pytest
import requests

import zaperrors as errors
import zapnegotiate as negotiate
import zapwallet as wallets

from conftest import INVOICE, FakeResponse, FakeWallet

LND_CONFIG = {"address": "node.local", "port": 8080, "macaroon": "0201abcd", "feeLimit": 5, "paymentTimeout": 20}
LND_URL = "https://node.local:8080"
PAYMENT_HASH = "ab" * 32
DENIED = {"code": 2, "message": "verification failed: signature mismatch after caveat verification"}


def invoiceResult(compliant=True):
    return negotiate.InvoiceResult(INVOICE, compliant, "ZAPGET", None)


class TestSettleInvoice:

    def test_pays_invoice(self, wallet):
        assert wallets.settleInvoice(wallet, invoiceResult(), 100) == {"preimage": "00" * 32}
        assert wallet.paid == [INVOICE]

    def test_missing_wallet(self):
        with pytest.raises(errors.WalletUnavailable):
            wallets.settleInvoice(None, invoiceResult(), 100)

    def test_wallet_not_enabled(self):
        wallet = FakeWallet(enabled=False)
        with pytest.raises(errors.WalletUnavailable):
            wallets.settleInvoice(wallet, invoiceResult(), 100)
        assert wallet.paid == []

    def test_wallet_error_is_payment_rejected(self):
        wallet = FakeWallet(reject=True)
        with pytest.raises(errors.PaymentRejected) as excinfo:
            wallets.settleInvoice(wallet, invoiceResult(), 100)
        assert isinstance(excinfo.value.__cause__, RuntimeError)
        assert len(wallet.paid) == 1

    def test_invoice_with_different_amount_is_not_paid(self):
        wallet = FakeWallet(decoded={"num_satoshis": "1000", "num_msat": "1000000"})
        with pytest.raises(errors.InvoiceAmountMismatch):
            wallets.settleInvoice(wallet, invoiceResult(), 100)
        assert wallet.paid == []

    def test_invoice_with_different_sats_amount_is_not_paid(self):
        wallet = FakeWallet(decoded={"num_satoshis": "99", "num_msat": "100000"})
        with pytest.raises(errors.InvoiceAmountMismatch):
            wallets.settleInvoice(wallet, invoiceResult(), 100)
        assert wallet.paid == []

    def test_invoice_with_matching_amount_is_paid(self):
        wallet = FakeWallet(decoded={"num_satoshis": "100", "num_msat": "100000"})
        wallets.settleInvoice(wallet, invoiceResult(), 100)
        assert wallet.paid == [INVOICE]


class TestLndWallet:

    def test_enable(self, http):
        http.route("GET", f"{LND_URL}/v1/getinfo", FakeResponse({"identity_pubkey": "02" + "a" * 64}))
        wallet = wallets.LndWallet(LND_CONFIG)
        assert wallet.enable()
        assert wallet.enabled
        assert http.calls[0].kwargs["headers"]["Grpc-Metadata-macaroon"] == "0201abcd"
        assert http.calls[0].kwargs["verify"] is False

    def test_enable_fails_on_permission_denied(self, http):
        http.route("GET", f"{LND_URL}/v1/getinfo", FakeResponse({"code": 2, "message": "permission denied"}))
        wallet = wallets.LndWallet(LND_CONFIG)
        assert not wallet.enable()
        assert not wallet.enabled

    def test_enable_fails_when_node_unreachable(self, http):
        http.route("GET", f"{LND_URL}/v1/getinfo", requests.exceptions.ConnectionError("refused"))
        assert not wallets.LndWallet(LND_CONFIG).enable()

    def test_enable_requires_connection_settings(self, http):
        assert not wallets.LndWallet({}).enable()
        assert http.calls == []

    def test_active_server_selection(self):
        wallet = wallets.LndWallet({"activeServer": "b", "feeLimit": 3,
                                    "servers": {"a": {"address": "a.local", "port": 1, "macaroon": "m"},
                                                "b": {"address": "b.local", "port": 2, "macaroon": "m"}}})
        assert wallet.getUrl("/v1/getinfo") == "https://b.local:2/v1/getinfo"
        assert wallet.getServerConfig()["feeLimit"] == 3

    def test_pay_requires_enable(self):
        with pytest.raises(errors.WalletUnavailable):
            wallets.LndWallet(LND_CONFIG).payInvoice(INVOICE)

    def test_pay_succeeds(self, http):
        stream = FakeResponse(lines=[
            {"result": {"status": "IN_FLIGHT", "payment_hash": PAYMENT_HASH}},
            {"result": {"status": "SUCCEEDED", "payment_hash": PAYMENT_HASH,
                        "payment_preimage": "cd" * 32, "fee_msat": "1500"}},
        ])
        http.route("POST", f"{LND_URL}/v2/router/send", stream)
        wallet = wallets.LndWallet(LND_CONFIG)
        wallet.enabled = True
        receipt = wallet.payInvoice(INVOICE)
        assert receipt == {"status": "SUCCEEDED", "fee_msat": 1500,
                           "payment_hash": PAYMENT_HASH, "payment_preimage": "cd" * 32}
        sent = json.loads(http.calls[0].data)
        assert sent == {"payment_request": INVOICE, "fee_limit_sat": 5, "timeout_seconds": 20}
        assert stream.closed

    def test_pay_failure_is_rejected(self, http):
        http.route("POST", f"{LND_URL}/v2/router/send", FakeResponse(lines=[
            {"result": {"status": "FAILED", "failure_reason": "FAILURE_REASON_NO_ROUTE"}},
        ]))
        wallet = wallets.LndWallet(LND_CONFIG)
        wallet.enabled = True
        with pytest.raises(errors.PaymentRejected) as excinfo:
            wallet.payInvoice(INVOICE)
        assert "FAILURE_REASON_NO_ROUTE" in excinfo.value.reason

    def test_pay_error_message_is_rejected(self, http):
        http.route("POST", f"{LND_URL}/v2/router/send", FakeResponse(lines=[
            {"error": {"code": 2, "message": "invoice is already paid"}},
        ]))
        wallet = wallets.LndWallet(LND_CONFIG)
        wallet.enabled = True
        with pytest.raises(errors.PaymentRejected):
            wallet.payInvoice(INVOICE)

    def test_pay_submit_failure_is_rejected(self, http):
        http.route("POST", f"{LND_URL}/v2/router/send", requests.exceptions.ConnectionError("refused"))
        wallet = wallets.LndWallet(LND_CONFIG)
        wallet.enabled = True
        with pytest.raises(errors.PaymentRejected):
            wallet.payInvoice(INVOICE)

    def test_pay_stream_timeout_is_pending(self, http):
        http.route("POST", f"{LND_URL}/v2/router/send", FakeResponse(lines=[
            {"result": {"status": "IN_FLIGHT", "payment_hash": PAYMENT_HASH}},
            requests.exceptions.ReadTimeout("read timed out"),
        ]))
        wallet = wallets.LndWallet(LND_CONFIG)
        wallet.enabled = True
        receipt = wallet.payInvoice(INVOICE)
        assert receipt["status"] == "TIMEOUT"
        assert receipt["payment_hash"] == PAYMENT_HASH
        assert receipt["fee_msat"] == 5000

    def test_decode_invoice(self, http):
        http.route("GET", f"{LND_URL}/v1/payreq/{INVOICE}", FakeResponse({"num_satoshis": "100", "num_msat": "100000", "payment_hash": PAYMENT_HASH}))
        assert wallets.LndWallet(LND_CONFIG).decodeInvoice(INVOICE)["num_msat"] == "100000"

    def test_decode_invoice_error_reply_is_not_an_invoice(self, http):
        http.route("GET", f"{LND_URL}/v1/payreq/{INVOICE}", FakeResponse(DENIED, 500))
        assert wallets.LndWallet(LND_CONFIG).decodeInvoice(INVOICE) is None

    def test_settle_with_node_that_failed_to_enable(self, http):
        http.route("GET", f"{LND_URL}/v1/getinfo", FakeResponse(DENIED, 500))
        http.route("GET", f"{LND_URL}/v1/payreq/", FakeResponse(DENIED, 500))
        wallet = wallets.LndWallet(LND_CONFIG)
        assert not wallet.enable()
        with pytest.raises(errors.WalletUnavailable):
            wallets.settleInvoice(wallet, invoiceResult(), 100)
        assert http.callsTo(f"{LND_URL}/v2/router/send") == []

    def test_track_payment(self, http):
        http.route("GET", f"{LND_URL}/v2/router/track/", FakeResponse(lines=[
            {"result": {"status": "SUCCEEDED", "fee_msat": "2000"}},
        ]))
        assert wallets.LndWallet(LND_CONFIG).trackPayment(PAYMENT_HASH) == ("SUCCEEDED", 2000)

    def test_track_payment_timeout(self, http):
        http.route("GET", f"{LND_URL}/v2/router/track/", requests.exceptions.ReadTimeout("slow"))
        assert wallets.LndWallet(LND_CONFIG).trackPayment(PAYMENT_HASH) == ("TIMEOUT", None)
