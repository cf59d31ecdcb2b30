"""Shared test doubles."""
from signtags import WalletProvider


class FakeProvider(WalletProvider):
    """Records every call; optionally fails on the signing/sending step."""

    def __init__(self, available=True, account="0xAbC0000000000000000000000000000000000001",
                 fail_with=None):
        self.available = available
        self.account = account
        self.fail_with = fail_with
        self.calls = []

    def is_available(self):
        return self.available

    def request_accounts(self):
        self.calls.append(("request_accounts",))
        return self.account

    def sign_personal_message(self, message, account):
        self.calls.append(("sign_personal_message", message, account))
        if self.fail_with:
            raise self.fail_with
        return "0x" + "ab" * 65

    def send_transaction(self, to, value, data, sender=None):
        self.calls.append(("send_transaction", to, value, data, sender))
        if self.fail_with:
            raise self.fail_with
        return "0x" + "cd" * 32

    def actions(self):
        return [c for c in self.calls if c[0] != "request_accounts"]
