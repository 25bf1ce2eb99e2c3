#!/usr/bin/env python3
from urllib3.exceptions import InsecureRequestWarning
import base64
import json
import logging
import requests
import urllib.parse
import zaperrors as errors

# suppress warnings as verify will be set to false for self-signed nodes
requests.packages.urllib3.disable_warnings(category=InsecureRequestWarning)

logger = logging.getLogger("zapper")

class Wallet:
    """Local payment capability. Must be enabled before invoices are paid."""

    enabled = False

    def isEnabled(self):
        return self.enabled

    def enable(self):
        raise NotImplementedError

    def payInvoice(self, paymentRequest):
        raise NotImplementedError

    def decodeInvoice(self, paymentRequest):
        return None

class LndWallet(Wallet):
    """Pays invoices through the REST interface of an LND node."""

    def __init__(self, config):
        self.config = config or {}
        self.enabled = False

    def getServerConfig(self):
        config = self.config
        if not all(k in config for k in ("activeServer","servers")): return config
        activeServerId = config["activeServer"]
        servers = config["servers"]
        if activeServerId is None or activeServerId not in servers: return config
        activeServer = dict(servers[activeServerId])
        for k in ("feeLimit","paymentTimeout"):
            if k not in activeServer and k in config: activeServer[k] = config[k]
        return activeServer

    def getUrl(self, suffix):
        lndServerConfig = self.getServerConfig()
        serverAddress = lndServerConfig["address"]
        serverPort = lndServerConfig["port"]
        return f"https://{serverAddress}:{serverPort}{suffix}"

    def getHeaders(self):
        lndServerConfig = self.getServerConfig()
        return {
            "Grpc-Metadata-macaroon": lndServerConfig["macaroon"],
            "Connection": "close"
            }

    def getTimeouts(self):
        lndServerConfig = self.getServerConfig()
        connectTimeout = 5
        readTimeout = 30
        if "connectTimeout" in lndServerConfig: connectTimeout = lndServerConfig["connectTimeout"]
        if "readTimeout" in lndServerConfig: readTimeout = lndServerConfig["readTimeout"]
        return (connectTimeout, readTimeout)

    def getProxies(self):
        lndServerConfig = self.getServerConfig()
        if str(lndServerConfig["address"]).endswith(".onion"):
            return {'http': 'socks5h://127.0.0.1:9050','https': 'socks5h://127.0.0.1:9050'}
        return {}

    def restGET(self, suffix):
        try:
            response = requests.get(url=self.getUrl(suffix),timeout=self.getTimeouts(),proxies=self.getProxies(),headers=self.getHeaders(),verify=False)
            return json.loads(response.text)
        except (requests.exceptions.RequestException, ValueError, KeyError) as e:
            logger.warning(f"Error retrieving data from LND for {suffix}: {e}")
            return None

    def enable(self):
        if not all(k in self.getServerConfig() for k in ("address","port","macaroon")):
            logger.warning("LND configuration is missing address, port, or macaroon")
            return False
        info = self.restGET("/v1/getinfo")
        if info is None or "identity_pubkey" not in info:
            message = info.get("message") if type(info) is dict else None
            logger.warning(f"Unable to enable LND wallet: {message}")
            return False
        logger.debug(f"LND wallet enabled for node {info['identity_pubkey']}")
        self.enabled = True
        return True

    def decodeInvoice(self, paymentRequest):
        decodedInvoice = self.restGET(f"/v1/payreq/{paymentRequest}")
        # error replies such as {"code":2,"message":...} are not invoices
        if type(decodedInvoice) is not dict or "payment_hash" not in decodedInvoice: return None
        return decodedInvoice

    def payInvoice(self, paymentRequest):
        if not self.enabled: raise errors.WalletUnavailable("LND wallet has not been enabled")
        lndServerConfig = self.getServerConfig()
        logger.debug(f"Paying invoice")
        feeLimit = 2
        paymentTimeout = 30
        if "feeLimit" in lndServerConfig: feeLimit = lndServerConfig["feeLimit"]
        if "paymentTimeout" in lndServerConfig: paymentTimeout = lndServerConfig["paymentTimeout"]
        lndPostData = {
            "payment_request": paymentRequest,
            "fee_limit_sat": feeLimit,
            "timeout_seconds": paymentTimeout
        }
        resultStatus = "UNKNOWNPAYING"
        resultFeeMSat = 0
        failureReason = None
        json_response = None
        payment_hash = None
        payment_preimage = None
        try:
            r = requests.post(url=self.getUrl("/v2/router/send"),stream=True,data=json.dumps(lndPostData),timeout=self.getTimeouts(),proxies=self.getProxies(),headers=self.getHeaders(),verify=False)
        except requests.exceptions.RequestException as e:
            # nothing reached the node, so nothing was paid
            raise errors.PaymentRejected(f"Unable to submit payment to LND: {str(e)}") from e
        try:
            for raw_response in r.iter_lines():
                if not raw_response: continue
                json_response = json.loads(raw_response)
                if "result" in json_response: json_response = json_response["result"]
                if "error" in json_response:
                    failureReason = json_response["error"].get("message", "unknown error")
                    resultStatus = "FAILED"
                    break
                if "status" in json_response: resultStatus = json_response["status"]
                if "fee_msat" in json_response: resultFeeMSat = int(json_response["fee_msat"])
                if "payment_hash" in json_response: payment_hash = json_response["payment_hash"]
                if "payment_preimage" in json_response: payment_preimage = json_response["payment_preimage"]
                if resultStatus == "SUCCEEDED":
                    logger.debug(f" - {resultStatus}, routing fee paid: {resultFeeMSat} msat")
                elif resultStatus == "FAILED":
                    failureReason = json_response.get("failure_reason", "unknown failure reason")
                    logger.warning(f" - {resultStatus} : {failureReason}")
                elif resultStatus == "IN_FLIGHT":
                    logger.debug(f" - {resultStatus}")
                else:
                    logger.info(f" - {resultStatus}")
        except (requests.exceptions.RequestException, ValueError) as rte:
            # payment was submitted and may still settle, report it as pending
            logger.warning(f"Error reading payment status from LND: {str(rte)}")
            if json_response is not None: logger.debug(json_response)
            resultStatus = "TIMEOUT"
            resultFeeMSat = feeLimit * 1000
        finally:
            try:
                r.close()
            except Exception as e:
                logger.warning(f"Error closing connection in payInvoice: {str(e)}")
        if resultStatus == "FAILED":
            raise errors.PaymentRejected(f"Payment failed: {failureReason}")
        return {"status": resultStatus, "fee_msat": resultFeeMSat,
                "payment_hash": payment_hash, "payment_preimage": payment_preimage}

    # Returns payment status and fee_msat paid
    def trackPayment(self, paymentHash):
        base64paymentHash = base64.urlsafe_b64encode(bytes.fromhex(paymentHash))
        base64paymentHash = urllib.parse.quote(base64paymentHash)
        suffix = f"/v2/router/track/{base64paymentHash}?no_inflight_updates=True"
        fee_msat = None
        response = None
        try:
            response = requests.get(url=self.getUrl(suffix),stream=True,timeout=self.getTimeouts(),proxies=self.getProxies(),headers=self.getHeaders(),verify=False)
            for raw_response in response.iter_lines():
                if not raw_response: continue
                json_response = json.loads(raw_response)
                if "result" in json_response: json_response = json_response["result"]
                if "status" not in json_response:
                    return "NOTFOUND", fee_msat
                status = json_response["status"]
                if status == "FAILED":
                    logger.warning(f"{status}:{json_response.get('failure_reason', 'unknown failure reason')}")
                if "fee_msat" in json_response: fee_msat = int(json_response["fee_msat"])
                return status, fee_msat
        except (requests.exceptions.RequestException, ValueError) as rte:
            logger.warning(f"Error tracking payment: {str(rte)}")
            return "TIMEOUT", fee_msat
        finally:
            if response is not None: response.close()
        return "NOTFOUND", fee_msat

def isValidInvoiceAmount(decodedInvoice, amountSats):
    logger.debug(f"Checking if invoice is valid")
    amountMillisatoshi = amountSats*1000
    if not all(k in decodedInvoice for k in ("num_satoshis","num_msat")):
        logger.warning(f"Invoice did not set amount")
        return False
    num_satoshis = int(decodedInvoice["num_satoshis"])
    if num_satoshis != amountSats:
        logger.warning(f"Invoice amount ({num_satoshis}) does not match requested amount ({amountSats}) to zap")
        return False
    num_msat = int(decodedInvoice["num_msat"])
    if num_msat != amountMillisatoshi:
        logger.warning(f"Invoice amount of msats ({num_msat}) does not match requested amount ({amountMillisatoshi}) to zap")
        return False
    return True

def settleInvoice(wallet, invoiceResult, amountSats):
    if wallet is None: raise errors.WalletUnavailable("No wallet available to pay the invoice")
    if not wallet.isEnabled(): raise errors.WalletUnavailable("Wallet has not been enabled")
    paymentRequest = invoiceResult.paymentRequest
    decodedInvoice = wallet.decodeInvoice(paymentRequest)
    if decodedInvoice is not None and not isValidInvoiceAmount(decodedInvoice, amountSats):
        raise errors.InvoiceAmountMismatch("Provider returned unacceptable invoice with different amount. Possible scam.")
    try:
        receipt = wallet.payInvoice(paymentRequest)
    except (errors.WalletUnavailable, errors.PaymentRejected):
        raise
    except Exception as e:
        logger.warning(f"Wallet failed to pay invoice: {str(e)}")
        raise errors.PaymentRejected(f"Wallet failed to pay invoice: {str(e)}") from e
    return receipt
