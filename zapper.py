#!/usr/bin/env python3
from collections import namedtuple
from logging.handlers import RotatingFileHandler
import logging
import os
import sys
import time
import zaperrors as errors
import zapfiles as files
import zaplnurl as lnurl
import zapnegotiate as negotiate
import zaprequest as request
import zaputils as utils
import zapwallet as wallets

logger = logging.getLogger("zapper")

SettlementOutcome = namedtuple("SettlementOutcome",
    ["succeeded", "compliant", "providerReceipt", "paymentRequest", "verifyUrl"])

def makeCheckpoint(deadline=None, attemptTimeout=None, cancelEvent=None):
    """Return a callable consulted before each stage of a zap.

    It raises ZapCancelled once cancelEvent is set and DeadlineExceeded once
    the overall deadline has passed. Otherwise it returns the requests timeout
    tuple to use for the next network attempt, capped by the time remaining.
    """
    expiresAt = None if deadline is None else time.monotonic() + deadline
    def checkpoint(stage):
        if cancelEvent is not None and cancelEvent.is_set():
            logger.info(f"Zap cancelled before {stage}")
            raise errors.ZapCancelled(stage)
        readTimeout = attemptTimeout
        if expiresAt is not None:
            remaining = expiresAt - time.monotonic()
            if remaining <= 0:
                logger.warning(f"Zap deadline passed before {stage}")
                raise errors.DeadlineExceeded(stage)
            readTimeout = remaining if readTimeout is None else min(readTimeout, remaining)
        return lnurl.gettimeouts(readTimeout)
    return checkpoint

def reportResult(invoiceResult, receipt):
    # receipts without a status come from wallets that only return once paid
    paymentStatus = receipt.get("status", "SUCCEEDED") if isinstance(receipt, dict) else "SUCCEEDED"
    return SettlementOutcome(paymentStatus == "SUCCEEDED", invoiceResult.compliant, receipt,
                             invoiceResult.paymentRequest, invoiceResult.verifyUrl)

class Zapper:
    """Sends zaps to lightning addresses with an injected signer and wallet."""

    def __init__(self, signer, wallet, relays=None, deadline=None, attemptTimeout=None):
        self.signer = signer
        self.wallet = wallet
        self.relays = relays or []
        self.deadline = deadline
        self.attemptTimeout = attemptTimeout

    def sendZap(self, address, amountSats, recipientKey, targetReference=None, comment=None, cancelEvent=None):
        checkpoint = makeCheckpoint(self.deadline, self.attemptTimeout, cancelEvent)
        # everything that can be checked locally is checked before the network
        target = lnurl.resolveAddress(address)
        if type(amountSats) is not int or amountSats < 1:
            raise errors.AmountOutOfRange(amountSats * 1000 if type(amountSats) is int else amountSats,
                                          reason=f"Amount {amountSats!r} is not a positive whole number of sats")
        request.normalizeRecipient(recipientKey)
        request.makeTargetTag(targetReference)
        lightningId = f"{target.username}@{target.serviceDomain}"

        capabilities = lnurl.probeService(target, checkpoint("discovery"))
        checkpoint("signing")
        logger.debug(f"Preparing zap request for {amountSats} sats to {lightningId}")
        zapRequest = request.makeZapRequest(self.signer, amountSats, recipientKey, capabilities, target,
                                            targetReference, comment, self.relays)
        zapRequestJson = request.encodeZapRequest(zapRequest)

        invoiceResult = negotiate.negotiateInvoice(capabilities, target, amountSats * 1000,
                                                   zapRequestJson, comment, checkpoint)
        checkpoint("settlement")
        receipt = wallets.settleInvoice(self.wallet, invoiceResult, amountSats)
        outcome = reportResult(invoiceResult, receipt)
        if not outcome.succeeded:
            logger.warning(f"Payment of {amountSats} sats to {lightningId} is not confirmed yet ({receipt.get('status')})")
        elif outcome.compliant:
            logger.info(f"Zapped {amountSats} sats to {lightningId}")
        else:
            logger.info(f"Payment of {amountSats} sats sent to {lightningId} without a zap request")
        return outcome

def setupLogging():
    formatter = logging.Formatter(fmt="%(asctime)s %(name)s.%(levelname)s: %(message)s", datefmt="%Y.%m.%d %H:%M:%S")
    logging.Formatter.converter = time.gmtime
    logger.setLevel(logging.DEBUG)
    stdoutLoggingHandler = logging.StreamHandler(stream=sys.stdout)
    stdoutLoggingHandler.setFormatter(formatter)
    logger.addHandler(stdoutLoggingHandler)
    logFile = f"{files.logFolder}zapper.log"
    fileLoggingHandler = RotatingFileHandler(logFile, mode='a', maxBytes=10*1024*1024,
                                 backupCount=21, encoding=None, delay=0)
    fileLoggingHandler.setFormatter(formatter)
    logger.addHandler(fileLoggingHandler)

def main():
    files.makeFolders()
    setupLogging()

    # Load config
    config = files.getConfig()
    if len(config.keys()) == 0:
        if not os.path.exists(files.defaultConfigFile):
            files.copySampleConfig()
        logger.info("You will need to modify this file to setup your nostr key and LND connection settings")
        sys.exit(1)
    lnurl.config = files.getConfigSection(config, "lnurl")
    nostrConfig = files.getConfigSection(config, "nostr")
    zapConfig = files.getConfigSection(config, "zap")

    address = utils.getCommandArg("address")
    amount = utils.getCommandArg("amount")
    recipient = utils.getCommandArg("recipient")
    if address is None or amount is None or recipient is None:
        logger.error("Usage: zapper --address <name@domain> --amount <sats> --recipient <npub> [--target <note or event id>] [--comment <text>] [--config <file>]")
        sys.exit(2)
    try:
        amountSats = int(amount)
    except ValueError:
        logger.error(f"Amount {amount} is not a whole number of sats")
        sys.exit(2)

    wallet = wallets.LndWallet(files.getConfigSection(config, "lnd"))
    if not wallet.enable():
        logger.warning("Wallet is not enabled. An invoice may be requested but it cannot be paid")
    zapper = Zapper(request.makeSigner(nostrConfig), wallet,
                    relays=nostrConfig.get("relays", []),
                    deadline=zapConfig.get("deadline", 120),
                    attemptTimeout=zapConfig.get("attemptTimeout", 30))
    try:
        outcome = zapper.sendZap(address, amountSats, recipient,
                                 targetReference=utils.getCommandArg("target"),
                                 comment=utils.getCommandArg("comment"))
    except errors.ZapError as e:
        logger.error(f"Unable to zap: {e.reason}")
        sys.exit(1)

    receipt = outcome.providerReceipt or {}
    paymentStatus = receipt.get("status")
    paymentHash = receipt.get("payment_hash")
    if paymentStatus in ("IN_FLIGHT","TIMEOUT") and paymentHash is not None:
        logger.info(f"Tracking LND payment with payment_hash {paymentHash}")
        paymentStatus, feeMSat = wallet.trackPayment(paymentHash)
        logger.info(f"Payment status now {paymentStatus}, fees: {feeMSat} msat")
    if paymentStatus == "FAILED":
        logger.error("Payment failed after it was submitted")
        sys.exit(1)
    if not outcome.compliant:
        logger.warning("Payment was sent but may not appear as a zap on Nostr")
    if outcome.verifyUrl is not None:
        logger.info(f"Payment can be verified at {outcome.verifyUrl}")

if __name__ == '__main__':
    main()
