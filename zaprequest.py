#!/usr/bin/env python3
from nostr.event import Event
from nostr.key import PrivateKey, PublicKey
import json
import logging
import zaperrors as errors
import zaputils as utils

logger = logging.getLogger("zapper")

ZAP_REQUEST_KIND = 9734
maxRelayHints = 10

class Signer:
    """Signing authority for zap requests (NIP-07 style getPublicKey/signEvent)."""

    def getPublicKey(self):
        raise NotImplementedError

    def signRecord(self, unsigned):
        raise NotImplementedError

class PrivateKeySigner(Signer):

    def __init__(self, privateKey):
        self.privateKey = privateKey

    def getPublicKey(self):
        return self.privateKey.public_key.hex()

    def signRecord(self, unsigned):
        self.privateKey.sign_event(unsigned)
        return unsigned

def getPrivateKey(d, k):
    thePrivateKey = None
    if k not in d:
        logger.warning(f"{k} not defined. Zaps will be sent anonymously")
    else:
        v = d[k]
        if v is None:
            logger.warning(f"{k} is empty. Zaps will be sent anonymously")
        elif len(v) == 64 and utils.isHex(v): # assumes in hex format
            thePrivateKey = PrivateKey(raw_secret=bytes.fromhex(v))
        elif str(v).startswith("nsec"): # in user friendly nsec bech32
            thePrivateKey = PrivateKey.from_nsec(v)
        else:
            logger.warning(f"{k} is not in nsec or hex format. Zaps will be sent anonymously")
    if thePrivateKey is None:
        # throwaway key for an anonymous zap
        thePrivateKey = PrivateKey()
    return thePrivateKey

def makeSigner(nostrConfig):
    return PrivateKeySigner(getPrivateKey(nostrConfig, "nsec"))

def isValidSignature(event):
    sig = event.signature
    id = event.id
    publisherPubkey = event.public_key
    if sig is None or publisherPubkey is None: return False
    try:
        pubkey = PublicKey(raw_bytes=bytes.fromhex(publisherPubkey))
        return pubkey.verify_signed_message_hash(hash=id, sig=sig)
    except Exception as e:
        logger.warning(f"Unable to verify signature of zap request: {str(e)}")
        return False

def getRelayHints(relays):
    hints = []
    for relay in relays or []:
        if len(hints) >= maxRelayHints: break
        url = None
        if type(relay) is str:
            url = relay
        if type(relay) is dict:
            canread = relay["read"] if "read" in relay else True
            if canread and "url" in relay: url = relay["url"]
        if url is None or len(url) == 0: continue
        if not url.startswith(("wss://", "ws://")): url = f"wss://{url}"
        if url not in hints: hints.append(url)
    return hints

def checkAmount(amountSats, capabilities):
    amountMillisatoshi = amountSats*1000
    minSendable = capabilities.minSendableMillisats
    maxSendable = capabilities.maxSendableMillisats
    if amountMillisatoshi < minSendable or amountMillisatoshi > maxSendable:
        logger.debug(f"Zap of {amountMillisatoshi} msat is outside of provider range {minSendable}..{maxSendable} msat")
        raise errors.AmountOutOfRange(amountMillisatoshi, minSendable, maxSendable)
    return amountMillisatoshi

def normalizeRecipient(recipientKey):
    recipientHex = utils.normalizeToHex(recipientKey)
    if not utils.isHexKey(recipientHex):
        raise errors.InvalidRecipient(f"Recipient {recipientKey} is not a hex pubkey or npub")
    return recipientHex

def makeTargetTag(targetReference):
    if targetReference is None or len(str(targetReference).strip()) == 0: return None
    ref = str(targetReference).strip()
    if ref.startswith("nostr:"): ref = ref[6:]
    # replaceable events are referenced as kind:pubkey:identifier
    if ":" in ref:
        refParts = ref.split(":", 2)
        if len(refParts) == 3 and refParts[0].isdigit() and utils.isHexKey(refParts[1]):
            return ["a", ref]
        raise errors.InvalidRecipient(f"Target {targetReference} is not a valid event coordinate")
    eventHex = utils.normalizeToHex(ref)
    if not utils.isHexKey(eventHex):
        raise errors.InvalidRecipient(f"Target {targetReference} is not a valid event id")
    return ["e", eventHex]

def makeZapRequest(signer, amountSats, recipientKey, capabilities, target,
                   targetReference=None, comment=None, relays=None):
    amountMillisatoshi = checkAmount(amountSats, capabilities)
    recipientHex = normalizeRecipient(recipientKey)
    targetTag = makeTargetTag(targetReference)
    zapTags = []
    relaysTagList = ["relays"]
    relaysTagList.extend(getRelayHints(relays))
    zapTags.append(relaysTagList)
    zapTags.append(["amount", str(amountMillisatoshi)])
    zapTags.append(["lnurl", target.locator])
    zapTags.append(["p", recipientHex])
    if targetTag is not None: zapTags.append(targetTag)
    if signer is None: raise errors.SigningDenied("No signer available")
    try:
        payerKey = signer.getPublicKey()
    except Exception as e:
        raise errors.SigningDenied(f"Signer did not provide a public key: {str(e)}") from e
    createdAt, _ = utils.getTimes()
    zapRequest = Event(public_key=payerKey, created_at=createdAt, content=comment or "",
                       kind=ZAP_REQUEST_KIND, tags=zapTags)
    try:
        signed = signer.signRecord(zapRequest)
    except Exception as e:
        logger.warning(f"Signer declined zap request: {str(e)}")
        raise errors.SigningDenied(f"Signer declined zap request: {str(e)}") from e
    if not isinstance(signed, Event) or not isValidSignature(signed):
        raise errors.SigningDenied("Signer returned an unsigned or invalid zap request")
    logger.debug(f"Signed zap request {signed.id} for {amountMillisatoshi} msat to {recipientHex}")
    return signed

def encodeZapRequest(zapRequest):
    o = {
            "id": zapRequest.id,
            "pubkey": zapRequest.public_key,
            "created_at": zapRequest.created_at,
            "kind": zapRequest.kind,
            "tags": zapRequest.tags,
            "content": zapRequest.content,
            "sig": zapRequest.signature,
        }
    return json.dumps(o)
