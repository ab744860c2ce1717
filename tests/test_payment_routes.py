import unittest
from unittest.mock import patch

from fastapi import HTTPException
from fastapi.testclient import TestClient

from apis.invite_codes import get_invite_codes
from apis.payment import get_config, update_config
from core.auth import create_access_token
from core.db import DB
from core.invite_code_service import create_invite_codes
from core.order_service import create_order, get_order
from core.payment_config_service import save_payment_config
from core.secret import SECRET_PLACEHOLDER
from core.signature import sign
from tests import reset_database
from web import app

APP_ID = "201906120001"
APP_SECRET = "test-app-secret"
CALLBACK_URL = "/api/v1/payment/callback/xorpay"
ADMIN = {"username": "admin", "role": "admin"}
USER = {"username": "alice", "role": "user"}


class XorpayCallbackRouteTestCase(unittest.TestCase):
    def setUp(self):
        reset_database()
        self.session = DB.get_session()
        save_payment_config(
            self.session,
            {"enabled": True, "method": "xorpay_wechat", "xorpay": {"app_id": APP_ID, "app_secret": APP_SECRET}},
        )
        create_invite_codes(self.session, "monthly", count=1)
        self.order = create_order(self.session, "monthly", "buyer@example.com")
        self.client = TestClient(app)

    def tearDown(self):
        self.session.close()

    def _signed(self, **fields):
        data = {"appid": APP_ID, "trade_order_id": self.order.order_id, "status": "OD", "transaction_id": "T100"}
        data.update(fields)
        data["hash"] = sign(data, APP_SECRET)
        return data

    @patch("core.payment_callback_service.send_invite_code_email", return_value=True)
    def test_paid_callback_acknowledged_with_plain_text(self, _):
        resp = self.client.post(CALLBACK_URL, data=self._signed())
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.text, "success")
        self.assertTrue(resp.headers["content-type"].startswith("text/plain"))

        self.session.expire_all()
        order = get_order(self.session, self.order.order_id)
        self.assertEqual(order.status, "completed")
        self.assertEqual(order.transaction_id, "T100")
        self.assertTrue(order.email_sent)

        resp = self.client.post(CALLBACK_URL, data=self._signed())
        self.assertEqual(resp.text, "success")

    def test_bad_signature_returns_fail(self):
        data = self._signed()
        data["hash"] = "0" * 32
        resp = self.client.post(CALLBACK_URL, data=data)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.text, "fail")
        self.session.expire_all()
        self.assertEqual(get_order(self.session, self.order.order_id).status, "pending")

    def test_unknown_order_returns_fail(self):
        resp = self.client.post(CALLBACK_URL, data=self._signed(trade_order_id="ORD_NOT_EXIST"))
        self.assertEqual(resp.text, "fail")

    def test_json_callback_body(self):
        resp = self.client.post(CALLBACK_URL, json=self._signed(status="WP"))
        self.assertEqual(resp.text, "success")
        self.session.expire_all()
        self.assertEqual(get_order(self.session, self.order.order_id).status, "pending")

    @patch("core.payment_callback_service.send_invite_code_email", return_value=True)
    def test_json_numbers_and_booleans_keep_signed_text(self, _):
        data = self._signed(total_fee="0.10", is_test="true", attach="")
        body = (
            "{"
            f'"appid":"{APP_ID}","trade_order_id":"{self.order.order_id}","status":"OD",'
            f'"transaction_id":"T100","total_fee":0.10,"is_test":true,"attach":null,"hash":"{data["hash"]}"'
            "}"
        )
        resp = self.client.post(CALLBACK_URL, content=body, headers={"Content-Type": "application/json"})
        self.assertEqual(resp.text, "success")
        self.session.expire_all()
        self.assertEqual(get_order(self.session, self.order.order_id).status, "completed")

    def test_callback_info_and_public_status(self):
        resp = self.client.get(CALLBACK_URL)
        self.assertEqual(resp.json()["code"], 0)
        resp = self.client.get("/api/v1/payment/status")
        self.assertEqual(resp.json()["data"]["enabled"], True)
        self.assertEqual(resp.json()["data"]["method"], "xorpay_wechat")

    def test_admin_route_requires_login(self):
        resp = self.client.get("/api/v1/payment/config")
        self.assertEqual(resp.status_code, 401)

    def test_admin_token_reads_masked_config(self):
        headers = {"Authorization": "Bearer " + create_access_token({"sub": "admin", "role": "admin"})}
        resp = self.client.get("/api/v1/payment/config", headers=headers)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["data"]["xorpay"]["app_secret"], SECRET_PLACEHOLDER)

        headers = {"Authorization": "Bearer " + create_access_token({"sub": "alice", "role": "user"})}
        resp = self.client.get("/api/v1/payment/config", headers=headers)
        self.assertEqual(resp.status_code, 403)


class PaymentAdminApiTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        reset_database()
        session = DB.get_session()
        try:
            save_payment_config(
                session,
                {"enabled": True, "method": "xorpay_alipay", "xorpay": {"app_id": APP_ID, "app_secret": APP_SECRET}},
            )
        finally:
            session.close()

    async def test_config_masks_secret(self):
        result = await get_config(current_user=ADMIN)
        self.assertEqual(result.get("code"), 0)
        self.assertEqual(result["data"]["xorpay"]["app_id"], APP_ID)
        self.assertEqual(result["data"]["xorpay"]["app_secret"], SECRET_PLACEHOLDER)

    async def test_non_admin_forbidden(self):
        with self.assertRaises(HTTPException) as ctx:
            await get_config(current_user=USER)
        self.assertEqual(ctx.exception.status_code, 403)
        with self.assertRaises(HTTPException) as ctx:
            await get_invite_codes(membership_type="", status="", current_user=USER)
        self.assertEqual(ctx.exception.status_code, 403)

    async def test_invalid_config_returns_400(self):
        with self.assertRaises(HTTPException) as ctx:
            await update_config({"enabled": True, "method": "paypal"}, current_user=ADMIN)
        self.assertEqual(ctx.exception.status_code, 400)


if __name__ == "__main__":
    unittest.main()
