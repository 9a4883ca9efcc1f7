import json
import logging

from darktides.core import SecurityFilter, StructuredFormatter, set_request_context
from darktides.core.logging_config import order_number_var, request_id_var, session_id_var

def make_record(msg, **extra):
    record = logging.LogRecord("darktides.test", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record

def test_security_filter_redacts_secrets():
    record = make_record("calling resend with api_key=re_live_123 and signature: abcdef")
    assert SecurityFilter().filter(record) is True
    assert "re_live_123" not in record.msg
    assert "abcdef" not in record.msg
    assert record.msg.count("***REDACTED***") == 2

def test_formatter_includes_request_context():
    tokens = [
        request_id_var.set(None), session_id_var.set(None), order_number_var.set(None),
    ]
    try:
        set_request_context(request_id="req-1", session_id="session_1_abc", order_number="DT-ABC123")
        line = StructuredFormatter().format(make_record("Order placed", extra_fields={"total": "40.00"}))
    finally:
        for var, token in zip((request_id_var, session_id_var, order_number_var), tokens):
            var.reset(token)

    payload = json.loads(line)
    assert payload["message"] == "Order placed"
    assert payload["trace"] == {"request_id": "req-1", "session_id": "session_1_abc", "order_number": "DT-ABC123"}
    assert payload["custom"] == {"total": "40.00"}
    assert payload["level"] == "INFO"

def test_formatter_without_context():
    token = request_id_var.set(None)
    session_token = session_id_var.set(None)
    order_token = order_number_var.set(None)
    try:
        payload = json.loads(StructuredFormatter().format(make_record("plain")))
    finally:
        request_id_var.reset(token)
        session_id_var.reset(session_token)
        order_number_var.reset(order_token)
    assert "trace" not in payload
