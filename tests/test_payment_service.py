import unittest
from unittest.mock import MagicMock

from core.db import DB
from core.invite_code_service import create_invite_codes, get_invite_code
from core.order_service import create_order, get_order
from core.payment_callback_service import handle_xorpay_callback
from core.payment_config_service import save_payment_config
from core.payment_service import query_payment, refund_order, request_qrcode
from core.signature import sign
from core.xorpay_client import GatewayApiError, GatewayUnreachableError
from tests import reset_database

APP_ID = "201906120001"
APP_SECRET = "test-app-secret"


class PaymentServiceTestCase(unittest.TestCase):
    def setUp(self):
        reset_database()
        self.session = DB.get_session()
        save_payment_config(
            self.session,
            {
                "enabled": True,
                "method": "xorpay_wechat",
                "xorpay": {"app_id": APP_ID, "app_secret": APP_SECRET, "notify_url": "https://shop/notify"},
            },
        )
        create_invite_codes(self.session, "monthly", count=2)
        self.order = create_order(self.session, "monthly", "buyer@example.com")
        self.client = MagicMock()

    def tearDown(self):
        self.session.close()

    def _complete_order(self):
        data = {"appid": APP_ID, "trade_order_id": self.order.order_id, "status": "OD", "transaction_id": "T1"}
        data["hash"] = sign(data, APP_SECRET)
        handle_xorpay_callback(self.session, data, send_email=MagicMock(return_value=True))
        return get_order(self.session, self.order.order_id)

    def test_request_qrcode_updates_payment_method(self):
        self.client.create_payment.return_value = {"errcode": 0, "url_qrcode": "https://qr", "url": "https://pay"}
        result = request_qrcode(self.session, self.order.order_id, "alipay", client=self.client)
        self.assertEqual(result["qrcode"], "https://qr")
        self.assertEqual(result["url"], "https://pay")
        self.assertEqual(result["amount"], 25.0)
        self.assertEqual(get_order(self.session, self.order.order_id).payment_method, "xorpay_alipay")

        kwargs = self.client.create_payment.call_args[1]
        self.assertEqual(kwargs["notify_url"], "https://shop/notify")
        self.assertEqual(kwargs["payment_type"], "alipay")
        self.assertIn(self.order.order_id, kwargs["return_url"])

    def test_request_qrcode_validation(self):
        with self.assertRaises(ValueError):
            request_qrcode(self.session, self.order.order_id, "paypal", client=self.client)
        with self.assertRaises(LookupError):
            request_qrcode(self.session, "ORD_NOT_EXIST", "wechat", client=self.client)
        self._complete_order()
        with self.assertRaises(ValueError):
            request_qrcode(self.session, self.order.order_id, "wechat", client=self.client)

    def test_request_qrcode_gateway_error_propagates(self):
        self.client.create_payment.side_effect = GatewayUnreachableError("支付接口连接超时", [])
        with self.assertRaises(GatewayUnreachableError):
            request_qrcode(self.session, self.order.order_id, "wechat", client=self.client)
        self.assertEqual(get_order(self.session, self.order.order_id).payment_method, "xorpay_wechat")

    def test_query_short_circuits_for_completed(self):
        self._complete_order()
        result = query_payment(self.session, self.order.order_id, client=self.client)
        self.assertEqual(result["status"], "OD")
        self.client.query_order.assert_not_called()

    def test_query_returns_remote_status(self):
        self.client.query_order.return_value = {"errcode": 0, "data": {"status": "OD", "open_order_id": "X1"}}
        result = query_payment(self.session, self.order.order_id, client=self.client)
        self.assertEqual(result["status"], "OD")
        self.assertEqual(result["local_status"], "pending")
        self.assertEqual(result["open_order_id"], "X1")

    def test_query_gateway_error_means_waiting(self):
        self.client.query_order.side_effect = GatewayApiError("订单不存在", errcode=1)
        result = query_payment(self.session, self.order.order_id, client=self.client)
        self.assertEqual(result["status"], "WP")

    def test_refund_completed_order_disables_code(self):
        order = self._complete_order()
        self.client.refund.return_value = {
            "errcode": 0,
            "refund_status": "CD",
            "out_refund_no": "R1",
            "refund_fee": "25.00",
            "refund_time": "2024-01-01 00:00:00",
        }
        result = refund_order(self.session, order.order_id, reason="用户申请", client=self.client)
        self.assertEqual(result["refund_status"], "CD")

        order = get_order(self.session, order.order_id)
        self.assertEqual(order.status, "refunded")
        self.assertEqual(order.refund_status, "refunded")
        self.assertEqual(order.refund_no, "R1")
        self.assertEqual(order.refund_reason, "用户申请")
        code = get_invite_code(self.session, order.invite_code)
        self.assertEqual(code.status, "disabled")
        self.assertTrue(code.note.endswith("[订单退款已禁用]"))

        with self.assertRaises(ValueError):
            refund_order(self.session, order.order_id, client=self.client)

    def test_refund_in_progress_keeps_code(self):
        order = self._complete_order()
        self.client.refund.return_value = {"errcode": 0, "refund_status": "RD", "out_refund_no": "R2"}
        refund_order(self.session, order.order_id, client=self.client)
        order = get_order(self.session, order.order_id)
        self.assertEqual(order.status, "completed")
        self.assertEqual(order.refund_status, "refunding")
        self.assertEqual(get_invite_code(self.session, order.invite_code).status, "unused")

    def test_refund_requires_completed_order(self):
        with self.assertRaises(ValueError):
            refund_order(self.session, self.order.order_id, client=self.client)
        self.client.refund.assert_not_called()


if __name__ == "__main__":
    unittest.main()
