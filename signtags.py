#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
signtags — tag wallet signing requests with a risk category before they are sent.

Features
- classify: map a signing request to a category tag + tone + detail:
  * PAYMENT            transfer / transferFrom, or bare native value
  * APPROVAL           approve / increaseAllowance / decreaseAllowance
  * INFINITE APPROVAL  caller flagged the allowance as 2**256-1
  * PERMIT             EIP-2612 permit
  * SWAP, STAKE, DEPOSIT
  * LOGIN              Sign-In With Ethereum message
  * DATA               personal_sign message
  * CONTRACT CALL      anything else
- ApprovalGate: classify -> present -> confirm/reject, one pending request at a
  time. The wallet provider is only ever called from confirm().
- JsonRpcProvider: eth_requestAccounts / personal_sign / eth_sendTransaction over
  HTTP. Without a reachable provider the gate runs in mock mode.
- classify-tx: build a request from a raw legacy, type-1 or type-2 transaction.

Examples
  $ python signtags.py classify --data 0x095ea7b3... --detect
  $ python signtags.py classify-tx 0x02f8...
  $ python signtags.py demo approve --rpc-url http://127.0.0.1:8545

Tip
- Classification only looks at the first 4 bytes of calldata. Extend SIGNATURES
  for your own contracts.
"""

import sys
import json
import logging
import re
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from itertools import count
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

import click
import requests
import rlp

from eth_utils import keccak, to_checksum_address, is_hex, remove_0x_prefix
from eth_abi import decode as abi_decode

logger = logging.getLogger("signtags")

UINT256_MAX = (1 << 256) - 1

# ---- Types ----


class RequestKind(str, Enum):
    TRANSACTION = "TX"
    SIGN_IN_MESSAGE = "SIWE"
    PERSONAL_MESSAGE = "PERSONAL_SIGN"


class Tone(str, Enum):
    WARN = "warn"
    SAFE = "safe"
    INFO = "info"


class Category(str, Enum):
    PAYMENT = "PAYMENT"
    APPROVAL = "APPROVAL"
    INFINITE_APPROVAL = "INFINITE APPROVAL"
    PERMIT = "PERMIT"
    SWAP = "SWAP"
    STAKE = "STAKE"
    DEPOSIT = "DEPOSIT"
    LOGIN = "LOGIN"
    DATA = "DATA"
    CONTRACT_CALL = "CONTRACT CALL"


@dataclass(frozen=True)
class SigningRequest:
    """One pending signing/transaction intent, as the dapp asked for it."""

    kind: RequestKind
    to: Optional[str] = None
    data: Optional[str] = None
    value: Optional[str] = None
    is_approval_unlimited: bool = False


@dataclass(frozen=True)
class Classification:
    category: Category
    detail: Optional[str] = None
    selector: str = ""

    @property
    def tone(self) -> Tone:
        return CATEGORY_TONES[self.category]


@dataclass(frozen=True)
class PendingApproval:
    request: SigningRequest
    classification: Classification

    @property
    def action(self) -> str:
        return action_label(self.classification.category)


# ---- Errors ----


class SigntagsError(Exception):
    """Base exception for signtags."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class InvalidRequestError(SigntagsError):
    """Raw input could not be turned into a SigningRequest."""
    pass


class ProviderError(SigntagsError):
    """Wallet provider refused the call or could not be reached."""

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message, {"code": code})
        self.code = code


class GateBusyError(SigntagsError):
    """The gate is waiting on the provider and cannot take another call."""
    pass


# ---- Lookup tables (selectors computed at import time) ----

SIGNATURES = {
    "transfer(address,uint256)": "ERC20_TRANSFER",
    "approve(address,uint256)": "ERC20_APPROVE",
    "transferFrom(address,address,uint256)": "ERC20_TRANSFER_FROM",
    # EIP-2612: permit(owner, spender, value, deadline, v, r, s)
    "permit(address,address,uint256,uint256,uint8,bytes32,bytes32)": "ERC20_PERMIT",
    "increaseAllowance(address,uint256)": "ERC20_INCREASE_ALLOWANCE",
    "decreaseAllowance(address,uint256)": "ERC20_DECREASE_ALLOWANCE",
    # Uniswap V2 router
    "swapExactTokensForTokens(uint256,uint256,address[],address,uint256)": "DEX_SWAP",
    "stake(uint256)": "STAKE_GENERIC",
    "deposit(uint256)": "DEPOSIT_GENERIC",
}

UNKNOWN = "UNKNOWN"


def selector_for(sig: str) -> str:
    return "0x" + keccak(text=sig)[:4].hex()


SELECTORS: Mapping[str, str] = MappingProxyType(
    {selector_for(sig): op for sig, op in SIGNATURES.items()}
)

OPERATION_CATEGORIES: Mapping[str, Category] = MappingProxyType({
    "ERC20_TRANSFER": Category.PAYMENT,
    "ERC20_TRANSFER_FROM": Category.PAYMENT,
    "ERC20_APPROVE": Category.APPROVAL,
    "ERC20_INCREASE_ALLOWANCE": Category.APPROVAL,
    "ERC20_DECREASE_ALLOWANCE": Category.APPROVAL,
    "ERC20_PERMIT": Category.PERMIT,
    "DEX_SWAP": Category.SWAP,
    "STAKE_GENERIC": Category.STAKE,
    "DEPOSIT_GENERIC": Category.DEPOSIT,
    UNKNOWN: Category.CONTRACT_CALL,
})

CATEGORY_TONES: Mapping[Category, Tone] = MappingProxyType({
    Category.PAYMENT: Tone.INFO,
    Category.APPROVAL: Tone.WARN,
    Category.INFINITE_APPROVAL: Tone.WARN,
    Category.PERMIT: Tone.WARN,
    Category.SWAP: Tone.INFO,
    Category.STAKE: Tone.INFO,
    Category.DEPOSIT: Tone.INFO,
    Category.LOGIN: Tone.SAFE,
    Category.DATA: Tone.INFO,
    Category.CONTRACT_CALL: Tone.INFO,
})

ACTION_LABELS: Mapping[Category, str] = MappingProxyType({
    Category.PAYMENT: "Send tokens / native asset",
    Category.APPROVAL: "Grant spending permission",
    Category.INFINITE_APPROVAL: "Grant unlimited token spending",
    Category.PERMIT: "Sign a token spending permit",
    Category.SWAP: "Swap on a DEX",
    Category.STAKE: "Stake tokens",
    Category.DEPOSIT: "Deposit into protocol",
    Category.LOGIN: "Sign in with Ethereum",
    Category.DATA: "Sign a data message",
})

DEFAULT_ACTION = "Contract interaction"

# amount argument position per operation, for unlimited-allowance detection
ALLOWANCE_ARGS = {
    "ERC20_APPROVE": (["address", "uint256"], 1),
    "ERC20_INCREASE_ALLOWANCE": (["address", "uint256"], 1),
    "ERC20_PERMIT": (["address", "address", "uint256", "uint256", "uint8", "bytes32", "bytes32"], 2),
}

_ZERO_DATA = re.compile(r"^0x0+$")

# ---- Utilities ----


def to_selector(data: Optional[str]) -> str:
    if not isinstance(data, str) or len(data) < 10:
        return ""
    h = data.lower()
    if not h.startswith("0x"):
        return ""
    return h[:10]


def is_zeroish(data: Optional[str]) -> bool:
    if not isinstance(data, str):
        return not data
    h = data.lower()
    return not h or h == "0x" or bool(_ZERO_DATA.match(h))


def hex_to_int(value: Optional[str]) -> int:
    """Parse a 0x quantity; anything unparseable counts as zero."""
    if isinstance(value, int):
        return value
    if not isinstance(value, str) or not is_hex(value):
        return 0
    digits = remove_0x_prefix(value)
    return int(digits, 16) if digits else 0


def action_label(category: Category) -> str:
    return ACTION_LABELS.get(category, DEFAULT_ACTION)


# ---- Classification ----


def classify(request: SigningRequest) -> Classification:
    """
    Map a signing request to a category. Never raises; unknown input
    falls through to CONTRACT CALL.
    """
    if request.kind == RequestKind.SIGN_IN_MESSAGE:
        return Classification(Category.LOGIN, "sign-in with wallet message")
    if request.kind == RequestKind.PERSONAL_MESSAGE:
        return Classification(Category.DATA, "personal message signature")

    sel = to_selector(request.data)
    op = SELECTORS.get(sel, UNKNOWN)
    category = OPERATION_CATEGORIES.get(op, Category.CONTRACT_CALL)

    if is_zeroish(request.data) and hex_to_int(request.value) != 0:
        category = Category.PAYMENT
    if request.is_approval_unlimited:
        category = Category.INFINITE_APPROVAL

    logger.debug("classified selector=%r op=%s as %s", sel, op, category.value)
    return Classification(category, op.replace("_", " ").lower(), sel)


def detect_unlimited_approval(data: Optional[str]) -> bool:
    """
    True when approve / increaseAllowance / permit calldata carries an
    amount of 2**256-1. Other selectors and undecodable payloads give False.
    """
    op = SELECTORS.get(to_selector(data))
    if op not in ALLOWANCE_ARGS:
        return False
    types, idx = ALLOWANCE_ARGS[op]
    try:
        params = abi_decode(types, bytes.fromhex(data[10:]))
    except Exception as e:
        logger.debug("could not decode %s arguments: %s", op, e)
        return False
    return params[idx] == UINT256_MAX


# ---- Raw transaction intake (legacy, 0x01 & 0x02 typed) ----


def _as_int(b: bytes) -> int:
    return 0 if len(b) == 0 else int.from_bytes(b, byteorder="big")


def request_from_raw_tx(raw_hex: str) -> SigningRequest:
    """Build a TX request from a signed raw transaction."""
    if not raw_hex or not is_hex(raw_hex):
        raise InvalidRequestError("Provide a 0x-prefixed raw transaction hex.")
    try:
        b = bytes.fromhex(remove_0x_prefix(raw_hex))
    except ValueError as e:
        raise InvalidRequestError(f"Bad hex: {e}")
    if len(b) == 0:
        raise InvalidRequestError("Empty tx bytes")

    # [chainId, nonce, (gas fields...), to, value, data, accessList, v, r, s]
    if b[0] in (0x01, 0x02):
        tx_type, payload, min_fields = b[0], b[1:], (11 if b[0] == 0x01 else 12)
        offset = 4 if tx_type == 0x01 else 5
    else:
        tx_type, payload, min_fields, offset = 0, b, 9, 3
    try:
        lst = rlp.decode(payload, strict=False)
    except rlp.exceptions.DecodingError as e:
        raise InvalidRequestError(f"RLP decode error: {e}", {"tx_type": tx_type})
    if not isinstance(lst, list) or len(lst) < min_fields:
        raise InvalidRequestError("Malformed transaction", {"tx_type": tx_type})

    to, value, data = lst[offset:offset + 3]
    if not all(isinstance(f, bytes) for f in (to, value, data)) or len(to) not in (0, 20):
        raise InvalidRequestError("Malformed transaction fields", {"tx_type": tx_type})
    calldata = "0x" + data.hex() if len(data) > 0 else None
    return SigningRequest(
        kind=RequestKind.TRANSACTION,
        to=None if len(to) == 0 else to_checksum_address("0x" + to.hex()),
        data=calldata,
        value=hex(_as_int(value)),
        is_approval_unlimited=detect_unlimited_approval(calldata),
    )


# ---- Wallet providers ----


class WalletProvider(ABC):
    """What the gate needs from a wallet. Everything else is the wallet's business."""

    @abstractmethod
    def is_available(self) -> bool:
        ...

    @abstractmethod
    def request_accounts(self) -> str:
        ...

    @abstractmethod
    def sign_personal_message(self, message: str, account: Optional[str]) -> str:
        ...

    @abstractmethod
    def send_transaction(self, to: Optional[str], value: str, data: str,
                         sender: Optional[str] = None) -> str:
        ...


class JsonRpcProvider(WalletProvider):
    """
    Wallet provider speaking JSON-RPC 2.0 over HTTP, e.g. a local dev node
    with unlocked accounts or a wallet bridge.
    """

    METHOD_NOT_FOUND = -32601

    def __init__(self, url: str, timeout: float = 120.0,
                 session: Optional[requests.Session] = None):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()
        self._ids = count(1)
        self._available: Optional[bool] = None

    def _call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        body = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params or []}
        logger.debug("rpc -> %s", method)
        try:
            resp = self.session.post(self.url, json=body, timeout=self.timeout)
            resp.raise_for_status()
            reply = resp.json()
        except requests.RequestException as e:
            raise ProviderError(f"{method} failed: {e}")
        except ValueError as e:
            raise ProviderError(f"{method} returned invalid JSON: {e}")
        if not isinstance(reply, dict):
            raise ProviderError(f"{method} returned a non-object reply")
        err = reply.get("error")
        if err:
            raise ProviderError(err.get("message", str(err)), code=err.get("code"))
        return reply.get("result")

    def is_available(self) -> bool:
        if self._available is None:
            try:
                self._call("eth_chainId")
                self._available = True
            except ProviderError as e:
                logger.info("provider at %s unavailable: %s", self.url, e.message)
                self._available = False
        return self._available

    def request_accounts(self) -> str:
        try:
            accounts = self._call("eth_requestAccounts")
        except ProviderError as e:
            if e.code != self.METHOD_NOT_FOUND:
                raise
            accounts = self._call("eth_accounts")
        if not accounts:
            raise ProviderError("Provider returned no accounts")
        return accounts[0]

    def sign_personal_message(self, message: str, account: Optional[str]) -> str:
        return self._call("personal_sign", ["0x" + message.encode("utf-8").hex(), account])

    def send_transaction(self, to: Optional[str], value: str, data: str,
                         sender: Optional[str] = None) -> str:
        tx = {"value": value, "data": data}
        if to:
            tx["to"] = to
        if sender:
            tx["from"] = sender
        return self._call("eth_sendTransaction", [tx])


# ---- Approval gate ----


class GateState(str, Enum):
    IDLE = "IDLE"
    AWAITING_DECISION = "AWAITING_DECISION"
    IN_FLIGHT = "IN_FLIGHT"


@dataclass(frozen=True)
class EventLogEntry:
    timestamp: datetime
    message: str

    def __str__(self) -> str:
        return f"{self.timestamp.strftime('%H:%M:%S')}  {self.message}"


class EventLog:
    """Most-recent-first list of outcome lines, capped at maxlen."""

    def __init__(self, maxlen: int = 500, clock=None):
        self._entries = deque(maxlen=maxlen)
        self._clock = clock or datetime.now

    def add(self, message: str) -> EventLogEntry:
        entry = EventLogEntry(self._clock(), message)
        self._entries.appendleft(entry)
        return entry

    def messages(self) -> List[str]:
        return [e.message for e in self._entries]

    def __iter__(self):
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __str__(self) -> str:
        return "\n".join(str(e) for e in self._entries)


PERSONAL_SIGN_MESSAGE = "Demo personal sign message (no onchain effect)."
PLACEHOLDER_ACCOUNT = "0x0000..."


def sample_siwe_message(address: str, issued_at: Optional[datetime] = None) -> str:
    issued_at = issued_at or datetime.now(timezone.utc)
    return (
        "demo.example.xyz wants you to sign in with your Ethereum account:\n"
        f"{address}\n\n"
        "URI: https://demo.example.xyz\n"
        "Version: 1\n"
        "Chain ID: 1\n"
        "Nonce: 0xDEMO\n"
        f"Issued At: {issued_at.isoformat()}"
    )


class ApprovalGate:
    """
    Owns the single pending request and the event log.

    submit() classifies and parks a request; confirm() hands it to the
    provider exactly once; reject() drops it. Nothing reaches the provider
    any other way.
    """

    def __init__(self, provider: Optional[WalletProvider] = None,
                 log: Optional[EventLog] = None):
        self.provider = provider
        self.log = log or EventLog()
        self.account: Optional[str] = None
        self.pending: Optional[PendingApproval] = None
        self._in_flight = False

    @property
    def state(self) -> GateState:
        if self._in_flight:
            return GateState.IN_FLIGHT
        if self.pending is not None:
            return GateState.AWAITING_DECISION
        return GateState.IDLE

    def _provider_ready(self) -> bool:
        return self.provider is not None and self.provider.is_available()

    def connect(self) -> Optional[str]:
        if not self._provider_ready():
            self.log.add("Wallet provider not detected. Running in mock mode.")
            return None
        self.account = self.provider.request_accounts()
        self.log.add(f"Connected {self.account}")
        logger.info("connected %s", self.account)
        return self.account

    def submit(self, request: SigningRequest) -> PendingApproval:
        if self._in_flight:
            raise GateBusyError("A confirmed request is still waiting on the provider")
        if self.pending is not None:
            tag = self.pending.classification.category.value
            self.log.add(f"Discarded pending {tag} request.")
            logger.warning("pending %s request replaced before a decision", tag)
        self.pending = PendingApproval(request, classify(request))
        logger.debug("awaiting decision on %s", self.pending.classification.category.value)
        return self.pending

    def reject(self) -> None:
        if self._in_flight:
            raise GateBusyError("Cannot reject a request already sent to the provider")
        if self.pending is None:
            return
        self.log.add("User rejected.")
        logger.info("rejected %s", self.pending.classification.category.value)
        self.pending = None

    def confirm(self) -> Optional[str]:
        if self._in_flight:
            raise GateBusyError("A confirmed request is still waiting on the provider")
        if self.pending is None:
            return None
        request = self.pending.request
        self._in_flight = True
        try:
            return self._execute(request)
        except Exception as e:
            logger.exception("provider call for %s failed", request.kind.value)
            self.log.add(f"Error: {e}")
            return None
        finally:
            self._in_flight = False
            self.pending = None

    def _execute(self, request: SigningRequest) -> Optional[str]:
        live = self._provider_ready()
        if live and self.account is None:
            self.account = self.provider.request_accounts()

        if request.kind == RequestKind.SIGN_IN_MESSAGE:
            if not live:
                self.log.add("[mock] SIWE signed.")
                return None
            message = sample_siwe_message(self.account or PLACEHOLDER_ACCOUNT)
            sig = self.provider.sign_personal_message(message, self.account)
            self.log.add(f"SIWE signed. Sig: {sig[:20]}...")
            return sig

        if request.kind == RequestKind.PERSONAL_MESSAGE:
            if not live:
                self.log.add("[mock] personal_sign done.")
                return None
            sig = self.provider.sign_personal_message(PERSONAL_SIGN_MESSAGE, self.account)
            self.log.add(f"personal_sign: {sig[:20]}...")
            return sig

        if not live:
            self.log.add("[mock] TX sent.")
            return None
        tx_hash = self.provider.send_transaction(
            request.to, request.value or "0x0", request.data or "0x", sender=self.account)
        self.log.add(f"TX sent: {tx_hash}")
        return tx_hash


# ---- CLI ----

PRESETS = {
    "pay": SigningRequest(RequestKind.TRANSACTION, to="0x000000000000000000000000000000000000dead",
                          value="0x2386F26FC10000"),
    "approve": SigningRequest(RequestKind.TRANSACTION, to="0xDeAdDeAdDeAdDeAdDeAdDeAdDeAdDeAdDeAd0001",
                              data="0x095ea7b3" + "0" * 64 + "f" * 64, is_approval_unlimited=True),
    "swap": SigningRequest(RequestKind.TRANSACTION, to="0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE",
                           data="0x38ed1739" + "0" * 8),
    "login": SigningRequest(RequestKind.SIGN_IN_MESSAGE),
    "data": SigningRequest(RequestKind.PERSONAL_MESSAGE),
}

KIND_CHOICES = {"tx": RequestKind.TRANSACTION, "siwe": RequestKind.SIGN_IN_MESSAGE,
                "personal": RequestKind.PERSONAL_MESSAGE}


def describe(request: SigningRequest, cls: Classification) -> Dict:
    return {
        "kind": request.kind.value,
        "category": cls.category.value,
        "tone": cls.tone.value,
        "action": action_label(cls.category),
        "detail": cls.detail,
        "selector": cls.selector,
    }


def render_card(pending: PendingApproval) -> str:
    cls, req = pending.classification, pending.request
    marker = "!" if cls.tone == Tone.WARN else "*"
    lines = [f"[{marker}] {cls.category.value} ({cls.tone.value})", f"Action: {pending.action}"]
    if req.kind == RequestKind.TRANSACTION:
        data = req.data or "0x"
        lines.append(f"To: {req.to or '(contract)'}")
        lines.append(f"Value (wei): {req.value or '0x0'}")
        lines.append(f"Calldata: {data[:66]}{'…' if len(data) > 66 else ''}")
    if cls.detail:
        lines.append(f"Detected: {cls.detail}")
    return "\n".join(lines)


@click.group(context_settings=dict(help_option_names=["-h", "--help"]))
@click.option("-v", "--verbose", is_flag=True, help="Debug logging to stderr.")
def cli(verbose):
    """signtags — tag signing requests by risk before they reach the wallet."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )


@cli.command("classify")
@click.option("--kind", type=click.Choice(sorted(KIND_CHOICES)), default="tx", show_default=True)
@click.option("--to", "to_addr", type=str, default=None, help="Destination address.")
@click.option("--data", "calldata_hex", type=str, default=None, help="0x calldata.")
@click.option("--value", "value_hex", type=str, default=None, help="0x native value in wei.")
@click.option("--unlimited/--no-unlimited", default=False, help="Caller asserts the approval is unlimited.")
@click.option("--detect", is_flag=True, help="Decode the allowance amount to set --unlimited.")
def classify_cmd(kind, to_addr, calldata_hex, value_hex, unlimited, detect):
    """
    Classify a single request and print JSON.
    """
    unlimited = unlimited or (detect and detect_unlimited_approval(calldata_hex))
    req = SigningRequest(KIND_CHOICES[kind], to=to_addr, data=calldata_hex,
                         value=value_hex, is_approval_unlimited=unlimited)
    click.echo(json.dumps(describe(req, classify(req)), indent=2))


@cli.command("classify-tx")
@click.argument("raw_tx_hex", type=str)
def classify_tx_cmd(raw_tx_hex: str):
    """
    Classify a raw Ethereum transaction hex (legacy or typed).
    """
    try:
        req = request_from_raw_tx(raw_tx_hex)
    except InvalidRequestError as e:
        click.echo(f"Decode error: {e.message}", err=True)
        sys.exit(2)
    out = describe(req, classify(req))
    out["to"] = req.to
    out["value"] = req.value
    click.echo(json.dumps(out, indent=2))


@cli.command("demo")
@click.argument("preset", type=click.Choice(list(PRESETS)), default="approve")
@click.option("--rpc-url", envvar="SIGNTAGS_RPC_URL", default=None,
              help="JSON-RPC wallet endpoint. Mock mode when omitted.")
@click.option("--timeout", envvar="SIGNTAGS_TIMEOUT", type=float, default=120.0, show_default=True,
              help="Seconds to wait on the provider.")
@click.option("--yes", "assume_yes", is_flag=True, help="Confirm without prompting.")
def demo_cmd(preset, rpc_url, timeout, assume_yes):
    """
    Walk one preset request through the approval gate.
    """
    provider = JsonRpcProvider(rpc_url, timeout=timeout) if rpc_url else None
    gate = ApprovalGate(provider)
    try:
        gate.connect()
    except ProviderError as e:
        gate.log.add(f"Error: {e.message}")

    pending = gate.submit(PRESETS[preset])
    click.echo(render_card(pending))
    if assume_yes or click.confirm("Confirm?", default=False):
        gate.confirm()
    else:
        gate.reject()
    click.echo("\nEvent log:")
    click.echo(str(gate.log))


if __name__ == "__main__":
    cli()
