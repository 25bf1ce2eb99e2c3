#!/usr/bin/env python3
from collections import namedtuple, OrderedDict
import logging
import requests
import zaperrors as errors
import zaplnurl as lnurl

logger = logging.getLogger("zapper")

InvoiceResult = namedtuple("InvoiceResult", ["paymentRequest", "compliant", "strategy", "verifyUrl"])
# everything a strategy needs to build its request
InvoiceRequest = namedtuple("InvoiceRequest",
    ["capabilities", "target", "amountMillisats", "zapRequestJson", "comment"])

SUCCESS = "SUCCESS"
TRANSPORTFAIL = "TRANSPORTFAIL"
RESPONSEFAIL = "RESPONSEFAIL"

def sendZapRequestGet(invoiceRequest, timeout):
    params = [("amount", invoiceRequest.amountMillisats),
              ("nostr", invoiceRequest.zapRequestJson),
              ("lnurl", invoiceRequest.target.locator)]
    url = lnurl.makeCallbackUrl(invoiceRequest.capabilities.callbackUrl, params)
    return lnurl.geturl(url, invoiceRequest.target.useTor, timeout)

def sendZapRequestPost(invoiceRequest, timeout):
    formData = {"amount": str(invoiceRequest.amountMillisats),
                "nostr": invoiceRequest.zapRequestJson,
                "lnurl": invoiceRequest.target.locator}
    return lnurl.posturl(invoiceRequest.capabilities.callbackUrl, formData, invoiceRequest.target.useTor, timeout)

def sendBareGet(invoiceRequest, timeout):
    params = [("amount", invoiceRequest.amountMillisats)]
    comment = invoiceRequest.comment
    commentAllowed = invoiceRequest.capabilities.commentAllowed
    if comment and commentAllowed > 0 and len(comment) <= commentAllowed:
        params.append(("comment", comment))
    url = lnurl.makeCallbackUrl(invoiceRequest.capabilities.callbackUrl, params)
    return lnurl.geturl(url, invoiceRequest.target.useTor, timeout)

# A transport failure means the route to the callback is broken, so skip
# straight to the bare request rather than resending the zap request.
strategies = OrderedDict([
    ("ZAPGET",  {"send": sendZapRequestGet,  "compliant": True,
                 "onTransportFail": "BAREGET", "onResponseFail": "ZAPPOST"}),
    ("ZAPPOST", {"send": sendZapRequestPost, "compliant": True,
                 "onTransportFail": "BAREGET", "onResponseFail": "BAREGET"}),
    ("BAREGET", {"send": sendBareGet,        "compliant": False,
                 "onTransportFail": None,      "onResponseFail": None}),
])

def isValidInvoiceResponse(invoiceResponse):
    if type(invoiceResponse) is not dict: return False, "response was not a json object"
    if "status" in invoiceResponse:
        if invoiceResponse["status"] == "ERROR":
            errReason = lnurl.getReason(invoiceResponse)
            logger.warning(f"Invoice request error: {errReason}")
            return False, errReason
    if "pr" not in invoiceResponse: return False, "no invoice in response"
    if type(invoiceResponse["pr"]) is not str or len(invoiceResponse["pr"]) == 0:
        return False, "empty invoice in response"
    return True, None

def classifyResponse(resp):
    try:
        invoiceResponse = resp.json()
    except ValueError:
        return RESPONSEFAIL, None, f"HTTP {resp.status_code} with a body that is not json"
    if not resp.ok:
        return RESPONSEFAIL, None, f"HTTP {resp.status_code}"
    valid, errReason = isValidInvoiceResponse(invoiceResponse)
    if not valid:
        return RESPONSEFAIL, None, errReason
    return SUCCESS, invoiceResponse, None

def attemptStrategy(name, invoiceRequest, timeout):
    strategy = strategies[name]
    try:
        resp = strategy["send"](invoiceRequest, timeout)
    except requests.exceptions.RequestException as e:
        return TRANSPORTFAIL, None, str(e)
    return classifyResponse(resp)

def negotiateInvoice(capabilities, target, amountMillisats, zapRequestJson, comment=None, checkpoint=None):
    invoiceRequest = InvoiceRequest(capabilities, target, amountMillisats, zapRequestJson, comment)
    attempts = []
    name = next(iter(strategies))
    while name is not None:
        timeout = checkpoint(f"invoice request {name}") if checkpoint is not None else lnurl.gettimeouts()
        logger.debug(f"Requesting invoice from LNURL service using strategy {name}")
        outcome, invoiceResponse, detail = attemptStrategy(name, invoiceRequest, timeout)
        attempts.append((name, outcome, detail))
        strategy = strategies[name]
        if outcome == SUCCESS:
            if not strategy["compliant"]:
                logger.warning("Payment will be sent but may not appear as a zap on Nostr")
            return InvoiceResult(invoiceResponse["pr"], strategy["compliant"], name, invoiceResponse.get("verify"))
        logger.warning(f"Invoice strategy {name} for {target.username}@{target.serviceDomain} failed ({outcome}): {detail}")
        if outcome == TRANSPORTFAIL:
            name = strategy["onTransportFail"]
        else:
            name = strategy["onResponseFail"]
    raise errors.NegotiationFailed(attempts)
