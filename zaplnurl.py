#!/usr/bin/env python3
from collections import namedtuple
import logging
import re
import requests
import urllib.parse
import zaperrors as errors
import zaputils as utils

logger = logging.getLogger("zapper")
config = {}

PaymentTarget = namedtuple("PaymentTarget",
    ["username", "serviceDomain", "discoveryUrl", "locator", "useTor"])
ServiceCapabilities = namedtuple("ServiceCapabilities",
    ["minSendableMillisats", "maxSendableMillisats", "supportsSignedRecord",
     "callbackUrl", "nostrPubkey", "commentAllowed"])

lightningAddressPattern = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
jsonHeaders = {"Accept": "application/json"}

def gettimeouts(readTimeout=None):
    connectTimeout = 5
    configReadTimeout = 30
    if "connectTimeout" in config: connectTimeout = config["connectTimeout"]
    if "readTimeout" in config: configReadTimeout = config["readTimeout"]
    if readTimeout is None: readTimeout = configReadTimeout
    return (min(connectTimeout, readTimeout), readTimeout)

def gettorproxies():
    # with tor service installed, default port is 9050
    # to find the port to use, can run the following
    #     cat /etc/tor/torrc | grep SOCKSPort | grep -v "#" | awk '{print $2}'
    return {'http': 'socks5h://127.0.0.1:9050','https': 'socks5h://127.0.0.1:9050'}

def geturl(url, useTor=False, timeout=None):
    proxies = gettorproxies() if useTor else {}
    if timeout is None: timeout = gettimeouts()
    return requests.get(url,timeout=timeout,allow_redirects=True,proxies=proxies,headers=jsonHeaders,verify=True)

def posturl(url, formData, useTor=False, timeout=None):
    proxies = gettorproxies() if useTor else {}
    if timeout is None: timeout = gettimeouts()
    headers = dict(jsonHeaders)
    headers["Content-Type"] = "application/x-www-form-urlencoded"
    return requests.post(url,data=formData,timeout=timeout,allow_redirects=True,proxies=proxies,headers=headers,verify=True)

def makeCallbackUrl(callback, params):
    if "?" in callback:
        url = f"{callback}&"
    else:
        url = f"{callback}?"
    return url + "&".join(f"{k}={urllib.parse.quote(str(v), safe='')}" for k, v in params)

def isLNURLProviderAllowed(domainname):
    if "denyProviders" in config:
        if domainname in config["denyProviders"]:
            return False
    return True

def makeLightningIdFromLNURL(lnurl):
    hrp, du = utils.decodeBech32Text(lnurl)
    if hrp != "lnurl" or du is None:
        raise errors.InvalidAddressFormat(lnurl)
    # 'https://walletofsatoshi.com/.well-known/lnurlp/username'
    parsed = urllib.parse.urlsplit(du)
    pathParts = parsed.path.split("/")
    if len(pathParts) < 2 or "/.well-known/lnurlp/" not in parsed.path:
        raise errors.InvalidAddressFormat(lnurl)
    lightningId = f"{pathParts[-1]}@{parsed.hostname}"
    logger.debug(f"Decoded {lightningId} from lnurl")
    return lightningId

def decodeLocator(locator):
    hrp, url = utils.decodeBech32Text(locator)
    if hrp != "lnurl": return None
    return url

def resolveAddress(address):
    if address is None: raise errors.InvalidAddressFormat(address)
    lightningId = str(address).strip()
    if lightningId.lower().startswith("lightning:"): lightningId = lightningId[10:]
    if lightningId.lower().startswith("lnurl1") and "@" not in lightningId:
        lightningId = makeLightningIdFromLNURL(lightningId)
    identityParts = lightningId.split("@")
    if len(identityParts) != 2 or not all(identityParts):
        raise errors.InvalidAddressFormat(address)
    if not lightningAddressPattern.match(lightningId):
        raise errors.InvalidAddressFormat(address)
    username = identityParts[0]
    domainname = identityParts[1].lower()
    if not isLNURLProviderAllowed(domainname):
        raise errors.ProviderNotAllowed(domainname)
    useTor = False
    protocol = "https"
    if domainname.endswith(".onion"):
        protocol = "http"
        useTor = True
    url = f"{protocol}://{domainname}/.well-known/lnurlp/{username}"
    locator = utils.encodeBech32Text("lnurl", url).upper()
    return PaymentTarget(username, domainname, url, locator, useTor)

def getReason(response, default="unreported reason"):
    if "reason" in response and response["reason"]: return str(response["reason"])
    return default

def probeService(target, timeout=None):
    logger.debug(f"Requesting LNURL pay info from {target.discoveryUrl}")
    try:
        resp = geturl(target.discoveryUrl, target.useTor, timeout)
    except requests.exceptions.RequestException as e:
        logger.warning(f"Error getting data from LN URL Provider from url ({target.discoveryUrl}): {str(e)}")
        raise errors.ServiceUnreachable(target.discoveryUrl, str(e)) from e
    try:
        lnurlPayInfo = resp.json()
    except ValueError:
        lnurlPayInfo = None
    if type(lnurlPayInfo) is dict and lnurlPayInfo.get("status") == "ERROR":
        errReason = getReason(lnurlPayInfo, "Lightning service error")
        logger.warning(f"LNURL pay info error for {target.username}@{target.serviceDomain}: {errReason}")
        raise errors.ServiceError(errReason)
    if not resp.ok:
        raise errors.ServiceError(f"Lightning address not found or invalid (HTTP {resp.status_code})")
    if type(lnurlPayInfo) is not dict:
        raise errors.ServiceError(f"Provider for {target.serviceDomain} did not return meta info")
    return validateLNURLPayInfo(lnurlPayInfo, target)

def validateLNURLPayInfo(lnurlPayInfo, target):
    lightningId = f"{target.username}@{target.serviceDomain}"
    if "tag" in lnurlPayInfo and lnurlPayInfo["tag"] != "payRequest":
        raise errors.ServiceError(f"Provider for {lightningId} returned unexpected tag {lnurlPayInfo['tag']}")
    if not lnurlPayInfo.get("allowsNostr"):
        logger.debug(f"LN Provider of identity {lightningId} does not allow nostr. Zap not supported")
        raise errors.UnsupportedCapability(f"Provider for {lightningId} does not support Nostr zaps")
    nostrPubkey = lnurlPayInfo.get("nostrPubkey")
    if nostrPubkey is None:
        logger.warning(f"LN Provider of identity {lightningId} does not have nostrPubkey. Publisher of receipt could be anyone")
    if not all(k in lnurlPayInfo for k in ("callback","minSendable","maxSendable")):
        logger.debug(f"LN Provider of identity {lightningId} does not have proper callback, minSendable, or maxSendable info")
        raise errors.ServiceError(f"Provider for {lightningId} does not provide expected response format")
    callback = lnurlPayInfo["callback"]
    if type(callback) is not str or not callback.lower().startswith(("https://", "http://")):
        raise errors.ServiceError(f"Provider for {lightningId} returned an invalid callback")
    try:
        minSendable = int(lnurlPayInfo["minSendable"])
        maxSendable = int(lnurlPayInfo["maxSendable"])
        commentAllowed = int(lnurlPayInfo.get("commentAllowed") or 0)
    except (TypeError, ValueError) as e:
        raise errors.ServiceError(f"Provider for {lightningId} returned non numeric limits") from e
    return ServiceCapabilities(minSendable, maxSendable, True, callback, nostrPubkey, commentAllowed)
