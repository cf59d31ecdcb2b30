"""
Tests for request classification and the lookup tables.
"""
import pytest

from signtags import (
    Category, Tone, RequestKind, SigningRequest, Classification,
    classify, action_label, detect_unlimited_approval, to_selector, is_zeroish,
    hex_to_int, SELECTORS, OPERATION_CATEGORIES, CATEGORY_TONES, UINT256_MAX,
)

ZERO_WORD = "0" * 64
MAX_WORD = "f" * 64


def tx(**kw):
    return SigningRequest(RequestKind.TRANSACTION, **kw)


@pytest.mark.parametrize("extra", [
    {},
    {"data": "0x095ea7b3" + ZERO_WORD + MAX_WORD},
    {"value": "0x1", "is_approval_unlimited": True},
])
def test_siwe_is_always_login(extra):
    cls = classify(SigningRequest(RequestKind.SIGN_IN_MESSAGE, **extra))
    assert cls.category == Category.LOGIN
    assert cls.tone == Tone.SAFE
    assert cls.detail == "sign-in with wallet message"


@pytest.mark.parametrize("extra", [{}, {"data": "0xa9059cbb" + ZERO_WORD * 2}, {"is_approval_unlimited": True}])
def test_personal_sign_is_data(extra):
    cls = classify(SigningRequest(RequestKind.PERSONAL_MESSAGE, **extra))
    assert cls.category == Category.DATA
    assert cls.tone == Tone.INFO
    assert cls.detail == "personal message signature"


def test_erc20_transfer_is_payment():
    cls = classify(tx(data="0xa9059cbb" + ZERO_WORD, value="0x0"))
    assert (cls.category, cls.tone) == (Category.PAYMENT, Tone.INFO)
    assert cls.detail == "erc20 transfer"
    assert cls.selector == "0xa9059cbb"


def test_approve_and_unlimited_override():
    data = "0x095ea7b3" + ZERO_WORD + "0" * 63 + "1"
    cls = classify(tx(data=data))
    assert (cls.category, cls.tone) == (Category.APPROVAL, Tone.WARN)
    assert cls.detail == "erc20 approve"

    cls = classify(tx(data=data, is_approval_unlimited=True))
    assert (cls.category, cls.tone) == (Category.INFINITE_APPROVAL, Tone.WARN)


def test_bare_value_transfer_is_payment():
    cls = classify(tx(to="0x000000000000000000000000000000000000dead", data="0x", value="0x2386F26FC10000"))
    assert (cls.category, cls.tone) == (Category.PAYMENT, Tone.INFO)
    assert cls.detail == "unknown"


@pytest.mark.parametrize("data", [None, "", "0x", "0x00", "0x0000000000"])
def test_zeroish_calldata_with_value_is_payment(data):
    assert classify(tx(data=data, value="0x1")).category == Category.PAYMENT


def test_bare_value_with_zero_value_is_contract_call():
    assert classify(tx(data="0x", value="0x00")).category == Category.CONTRACT_CALL


def test_unlimited_beats_bare_value_transfer():
    cls = classify(tx(data="0x", value="0x1", is_approval_unlimited=True))
    assert cls.category == Category.INFINITE_APPROVAL


def test_unknown_selector_is_contract_call():
    cls = classify(tx(data="0xdeadbeef"))
    assert cls.category == Category.CONTRACT_CALL
    assert cls.tone == Tone.INFO


def test_short_calldata_does_not_partially_match():
    # prefix of the transfer selector only
    cls = classify(tx(data="0xa9059c"))
    assert cls.category == Category.CONTRACT_CALL
    assert cls.selector == ""


def test_selector_case_is_normalized():
    cls = classify(tx(data="0X095EA7B3" + ZERO_WORD + MAX_WORD.upper()))
    assert cls.category == Category.APPROVAL
    assert cls.selector == "0x095ea7b3"


@pytest.mark.parametrize("selector,category,detail", [
    ("0x23b872dd", Category.PAYMENT, "erc20 transfer from"),
    ("0xd505accf", Category.PERMIT, "erc20 permit"),
    ("0x39509351", Category.APPROVAL, "erc20 increase allowance"),
    ("0xa457c2d7", Category.APPROVAL, "erc20 decrease allowance"),
    ("0x38ed1739", Category.SWAP, "dex swap"),
    ("0xa694fc3a", Category.STAKE, "stake generic"),
    ("0xb6b55f25", Category.DEPOSIT, "deposit generic"),
])
def test_known_selectors(selector, category, detail):
    cls = classify(tx(data=selector + ZERO_WORD))
    assert cls.category == category
    assert cls.detail == detail


def test_garbage_value_counts_as_zero():
    assert classify(tx(data="0x", value="lots")).category == Category.CONTRACT_CALL


def test_classify_is_pure():
    req = tx(data="0x38ed1739" + "0" * 8, value="0x5")
    assert classify(req) == classify(req)


def test_tone_follows_category():
    assert Classification(Category.PERMIT).tone == Tone.WARN
    assert Classification(Category.LOGIN).tone == Tone.SAFE
    assert set(CATEGORY_TONES) == set(Category)


def test_tables_are_read_only():
    with pytest.raises(TypeError):
        SELECTORS["0xdeadbeef"] = "NOPE"
    with pytest.raises(TypeError):
        OPERATION_CATEGORIES["NOPE"] = Category.PAYMENT
    assert set(SELECTORS.values()) <= set(OPERATION_CATEGORIES)


@pytest.mark.parametrize("category", list(Category))
def test_action_label_is_exhaustive(category):
    assert action_label(category)


def test_action_labels():
    assert action_label(Category.INFINITE_APPROVAL) == "Grant unlimited token spending"
    assert action_label(Category.CONTRACT_CALL) == "Contract interaction"


def test_helpers():
    assert to_selector("0xA9059CBB00") == "0xa9059cbb"
    assert to_selector("a9059cbb00") == ""
    assert is_zeroish("0x000")
    assert not is_zeroish("0x01")
    assert hex_to_int("0x") == 0
    assert hex_to_int("0x10") == 16


def test_detect_unlimited_approval():
    assert detect_unlimited_approval("0x095ea7b3" + ZERO_WORD + MAX_WORD)
    assert detect_unlimited_approval("0x39509351" + ZERO_WORD + MAX_WORD)
    assert not detect_unlimited_approval("0x095ea7b3" + ZERO_WORD + "0" * 63 + "1")
    # transfer of a max amount is not an approval
    assert not detect_unlimited_approval("0xa9059cbb" + ZERO_WORD + MAX_WORD)
    # truncated payload
    assert not detect_unlimited_approval("0x095ea7b3" + ZERO_WORD)
    assert not detect_unlimited_approval(None)


def test_detect_unlimited_permit():
    words = [ZERO_WORD, ZERO_WORD, format(UINT256_MAX, "064x"), ZERO_WORD, "0" * 62 + "1b", ZERO_WORD, ZERO_WORD]
    assert detect_unlimited_approval("0xd505accf" + "".join(words))


@pytest.mark.parametrize("value", [1, 10 ** 16])
def test_int_value_does_not_raise(value):
    assert classify(tx(value=value)).category == Category.PAYMENT


def test_non_string_fields_degrade_to_contract_call():
    assert classify(tx(data=12345, value=object())).category == Category.CONTRACT_CALL


def test_uppercase_empty_prefix_is_bare_payment():
    assert classify(tx(data="0X", value="0x1")).category == Category.PAYMENT
