"""
Tests for the JVZoo IPN webhook route.

The route always answers 200; the body says what happened.
"""

from unittest.mock import patch

from adgenius.entitlements.catalog import PRO_LICENSE
from adgenius.models import JVZooTransaction, LicenseStatus, UserLicense


class TestIpnWebhook:
    """POST /webhooks/jvzoo/ipn"""

    def test_form_post_sale(self, client, db_session, ipn):
        response = client.post("/webhooks/jvzoo/ipn", data=ipn(receipt="TXN-FORM"))

        assert response.status_code == 200
        assert response.json() == {"status": "processed", "transaction_id": "TXN-FORM"}
        assert db_session.query(UserLicense).one().product_id == PRO_LICENSE

    def test_json_post_sale(self, client, db_session, ipn):
        response = client.post("/webhooks/jvzoo/ipn", json=ipn(receipt="TXN-JSON"))

        assert response.status_code == 200
        assert response.json()["status"] == "processed"

    def test_replay_reports_already_processed(self, client, ipn):
        payload = ipn(receipt="TXN-REPLAY")
        client.post("/webhooks/jvzoo/ipn", data=payload)

        response = client.post("/webhooks/jvzoo/ipn", data=payload)

        assert response.status_code == 200
        assert response.json()["status"] == "already_processed"

    def test_forged_request_acknowledged_not_applied(self, client, db_session, ipn):
        payload = ipn(receipt="TXN-FORGED")
        payload["cverify"] = "00000000"

        response = client.post("/webhooks/jvzoo/ipn", data=payload)

        assert response.status_code == 200
        assert response.json()["status"] == "verification_failed"
        assert db_session.query(JVZooTransaction).count() == 0

    def test_refund_over_webhook(self, client, db_session, ipn):
        client.post("/webhooks/jvzoo/ipn", data=ipn(receipt="TXN-WR"))

        response = client.post("/webhooks/jvzoo/ipn", data=ipn(transaction_type="RFND", receipt="TXN-WR"))

        assert response.json()["status"] == "processed"
        assert db_session.query(UserLicense).one().status == LicenseStatus.REFUNDED

    def test_unknown_product_reports_error(self, client, ipn):
        response = client.post("/webhooks/jvzoo/ipn", data=ipn(product_item="123", receipt="TXN-BAD"))

        assert response.status_code == 200
        assert response.json()["status"] == "error"

    def test_empty_body_is_acknowledged(self, client):
        response = client.post("/webhooks/jvzoo/ipn", data={})

        assert response.status_code == 200
        assert response.json() == {"status": "verification_failed"}

    def test_invalid_json_is_acknowledged(self, client):
        response = client.post(
            "/webhooks/jvzoo/ipn",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 200
        assert response.json()["status"] == "verification_failed"

    def test_unexpected_error_still_returns_200(self, client, ipn):
        with patch(
            "adgenius.api.routes.webhooks_jvzoo.PurchaseEventProcessor.apply_transaction",
            side_effect=RuntimeError("boom"),
        ):
            response = client.post("/webhooks/jvzoo/ipn", data=ipn(receipt="TXN-BOOM"))

        assert response.status_code == 200
        assert response.json()["status"] == "error"
