from app.core.signature import verify_payment_signature, verify_webhook_signature

from conftest import KEY_SECRET, compute_signature, sign


def test_valid_payment_signature():
    assert verify_payment_signature("order_1", "pay_1", sign("order_1", "pay_1"), KEY_SECRET)


def test_signature_from_other_secret_is_rejected():
    forged = sign("order_1", "pay_1", secret="someone_else")
    assert not verify_payment_signature("order_1", "pay_1", forged, KEY_SECRET)


def test_signature_for_other_payment_is_rejected():
    assert not verify_payment_signature("order_1", "pay_2", sign("order_1", "pay_1"), KEY_SECRET)


def test_malformed_input_fails_closed():
    assert not verify_payment_signature("order_1", "pay_1", None, KEY_SECRET)
    assert not verify_payment_signature("order_1", "pay_1", "", KEY_SECRET)
    assert not verify_payment_signature("order_1", "pay_1", sign("order_1", "pay_1"), "")
    assert not verify_payment_signature("order_1", "pay_1", 12345, KEY_SECRET)
    assert not verify_payment_signature("order_1", "pay_1", "ünïcode", KEY_SECRET)


def test_webhook_signature_over_raw_body():
    body = b'{"event":"payment.captured"}'
    signature = compute_signature(body, "whsec")
    assert verify_webhook_signature(body, signature, "whsec")
    assert not verify_webhook_signature(body + b" ", signature, "whsec")
    assert not verify_webhook_signature(body, signature, "other")
    assert not verify_webhook_signature(body, None, "whsec")
    assert not verify_webhook_signature(body, signature, "")


def test_undecodable_webhook_body_fails_closed():
    body = b"\xff\xfe\x00"
    assert not verify_webhook_signature(body, compute_signature(body, "whsec"), "whsec")
