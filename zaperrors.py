#!/usr/bin/env python3

class ZapError(Exception):
    """Base for every failure surfaced by the zap pipeline."""

    def __init__(self, reason=None):
        self.reason = reason if reason is not None else self.__class__.__name__
        super().__init__(self.reason)

class InvalidAddressFormat(ZapError):
    def __init__(self, address):
        self.address = address
        super().__init__(f"Lightning address {address} is invalid - not in username@domain format")

class ProviderNotAllowed(ZapError):
    def __init__(self, domainname):
        self.domainname = domainname
        super().__init__(f"Provider {domainname} is on the denyProviders list")

class InvalidRecipient(ZapError):
    pass

class ServiceUnreachable(ZapError):
    def __init__(self, url, reason=None):
        self.url = url
        super().__init__(f"Unable to reach LNURL service at {url}: {reason}")

class ServiceError(ZapError):
    pass

class UnsupportedCapability(ZapError):
    pass

class AmountOutOfRange(ZapError):
    def __init__(self, amountMillisats, minSendable=None, maxSendable=None, reason=None):
        self.amountMillisats = amountMillisats
        self.minSendable = minSendable
        self.maxSendable = maxSendable
        if reason is None:
            reason = f"Amount of {amountMillisats} msat is outside of the permitted range {minSendable}..{maxSendable} msat"
        super().__init__(reason)

class SigningDenied(ZapError):
    pass

class NegotiationFailed(ZapError):
    def __init__(self, attempts):
        # list of (strategy, outcome, detail)
        self.attempts = list(attempts)
        tried = ", ".join(f"{s}={o}" for s, o, _ in self.attempts)
        super().__init__(f"Failed to obtain a lightning invoice ({tried})")

class InvoiceAmountMismatch(ZapError):
    pass

class WalletUnavailable(ZapError):
    pass

class PaymentRejected(ZapError):
    pass

class ZapCancelled(ZapError):
    def __init__(self, stage):
        self.stage = stage
        super().__init__(f"Zap cancelled before {stage}")

class DeadlineExceeded(ZapError):
    def __init__(self, stage):
        self.stage = stage
        super().__init__(f"Deadline passed before {stage}")
