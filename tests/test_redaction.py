import logging

from services.redaction import mask_account, redact_dict, redact_headers, redact_text


def test_redact_text_masks_phone_email_and_tokens():
    text = "Doctor achieng@example.com phone +254712345678 token Bearer abcdef"
    redacted = redact_text(text)
    assert "achieng@example.com" not in redacted
    assert "+254712345678" not in redacted
    assert redacted == "[REDACTED]"


def test_redact_text_masks_msisdn_without_plus():
    redacted = redact_text("PartyB=254712345678 ok")
    assert "254712345678" not in redacted
    assert redacted == "PartyB=254712****78 ok"


def test_redact_dict_masks_sensitive_keys():
    payload = {
        "email": "achieng@example.com",
        "phone": "+254712345678",
        "access_token": "abc",
        "SecurityCredential": "xyz",
        "X-Signature": "sha256=deadbeef",
        "bank": {"account_number": "0011223344", "bank_code": "01"},
    }
    redacted = redact_dict(payload)
    assert redacted["email"] == "a***@example.com"
    assert redacted["phone"] == "+25471****78"
    assert redacted["access_token"] == "[REDACTED]"
    assert redacted["SecurityCredential"] == "[REDACTED]"
    assert redacted["X-Signature"] == "[REDACTED]"
    assert redacted["bank"]["account_number"] == "******3344"
    assert redacted["bank"]["bank_code"] == "01"


def test_redact_dict_keeps_amounts_and_references():
    payload = {"ConversationID": "AG_20260301_00004e48cf7e3533f581", "TransactionAmount": 1500}
    assert redact_dict(payload) == payload


def test_log_line_uses_redaction_helper(caplog):
    logger = logging.getLogger("redaction-test")
    caplog.set_level(logging.INFO)
    msg = redact_text("email achieng@example.com phone +254712345678 token Bearer abcdef")
    logger.info("payload=%s", msg)
    assert "achieng@example.com" not in caplog.text
    assert "+254712345678" not in caplog.text


def test_mask_account_keeps_last_four():
    assert mask_account("GB29NWBK60161331926819") == "*" * 18 + "6819"
    assert mask_account("123") == "****"
    assert mask_account(None) == "****"


def test_redact_headers_masks_signatures_and_auth():
    headers = {"Authorization": "Bearer x", "Stripe-Signature": "t=1,v1=ab", "X-Request-ID": "r-1"}
    assert redact_headers(headers) == {"Authorization": "***", "Stripe-Signature": "***", "X-Request-ID": "r-1"}
