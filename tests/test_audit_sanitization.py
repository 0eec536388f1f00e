from settlement.models.audit import AuditLog
from settlement.utils.audit import log_audit, sanitize_payload_for_audit


def test_audit_log_masks_sensitive_fields(db_session):
    payload = {
        "email": "buyer@example.com",
        "buyer_ref": "acme-steel-0042",
        "amount": "150000.00",
        "nested": [{"wallet_ref": "w1"}],
    }

    log_audit(
        db_session,
        actor="test",
        action="MASK_TEST",
        entity="Transaction",
        entity_id=1,
        data=payload,
    )
    db_session.commit()

    entry = (
        db_session.query(AuditLog)
        .filter(AuditLog.action == "MASK_TEST")
        .order_by(AuditLog.id.desc())
        .first()
    )
    assert entry is not None
    assert entry.data_json["email"] == "***@example.com"
    assert entry.data_json["buyer_ref"] == "***0042"
    assert entry.data_json["amount"] == "150000.00"
    assert entry.data_json["nested"][0]["wallet_ref"] == "***"


def test_sanitize_leaves_input_untouched():
    payload = {"seller_ref": "seller-1", "evidence_ref": None}

    cleaned = sanitize_payload_for_audit(payload)

    assert cleaned == {"seller_ref": "***er-1", "evidence_ref": None}
    assert payload["seller_ref"] == "seller-1"
