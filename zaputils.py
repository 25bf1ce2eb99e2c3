#!/usr/bin/env python3
import bech32
import datetime
import os
import sys

def bech32ToHex(bech32Input):
    hrp, e2 = bech32.bech32_decode(bech32Input)
    if hrp is None: return ""
    tlv_bytes = bech32.convertbits(e2, 5, 8)[:-1]
    if len(tlv_bytes) > 32:
        tlv_length = tlv_bytes[1]
        tlv_value = tlv_bytes[2:tlv_length+2]
        hexOutput = bytes(tlv_value).hex()
    else:
        hexOutput = bytes(tlv_bytes).hex()
    return hexOutput

def hexToBech32(hexInput, hrp):
    b = bytes.fromhex(hexInput)
    bits = bech32.convertbits(b,8,5)
    bech32output = bech32.bech32_encode(hrp, bits)
    return bech32output

def isHex(s):
    return set(s).issubset(set('abcdefABCDEF0123456789'))

def normalizeToHex(v):
    if v is None: return None
    v = str(v).strip()
    if v.startswith("nostr:"): v = v[6:]
    if len(v) == 0: return ""
    if v.startswith("n"):
        v = bech32ToHex(v)
        if len(v) == 0: return None
    if isHex(v): return v.lower()
    return None

def isHexKey(v):
    return v is not None and len(v) == 64 and isHex(v)

def encodeBech32Text(hrp, text):
    textBits = bech32.convertbits(bytes(text, 'utf-8'), 8, 5)
    return bech32.bech32_encode(hrp, textBits)

def decodeBech32Text(value):
    # bech32_decode refuses anything over 90 characters, lnurls are longer
    v = str(value).strip()
    if v.lower() != v and v.upper() != v: return None, None
    v = v.lower()
    pos = v.rfind("1")
    if pos < 1 or pos + 7 > len(v): return None, None
    hrp = v[:pos]
    data = [bech32.CHARSET.find(c) for c in v[pos+1:]]
    if -1 in data: return None, None
    if bech32.bech32_polymod(bech32.bech32_hrp_expand(hrp) + data) != 1: return None, None
    decoded = bech32.convertbits(data[:-6], 5, 8, False)
    if decoded is None: return None, None
    try:
        return hrp, bytes(decoded).decode('utf-8')
    except UnicodeDecodeError:
        return None, None

def getCommandArg(p):
    b = False
    v = None
    l = str(p).lower()
    for a in sys.argv:
        if b:
            v = a
            b = False
        elif f"--{l}" == str(a).lower():
            b = True
    return v

def getTimes(aDate=None):
    theDate = aDate
    if aDate is None: theDate = datetime.datetime.now(datetime.timezone.utc)
    secTime = int(theDate.timestamp())
    isoTime = datetime.datetime.fromtimestamp(secTime, datetime.timezone.utc).isoformat(timespec="seconds")
    return secTime, isoTime

def makeFolderIfNotExists(path):
    if not os.path.exists(path): os.makedirs(path)
