import unittest
from unittest.mock import MagicMock, patch

import requests

from core.signature import verify
from core.xorpay_client import (
    GatewayApiError,
    GatewayResponseError,
    GatewayUnreachableError,
    XorpayClient,
    format_amount,
)

HOSTS = ["https://api.xunhupay.com", "https://api.dpweixin.com"]


def _response(status_code=200, json_data=None, json_error=False):
    resp = MagicMock()
    resp.status_code = status_code
    if json_error:
        resp.json.side_effect = ValueError("not json")
    else:
        resp.json.return_value = json_data
    return resp


class XorpayClientTestCase(unittest.TestCase):
    def setUp(self):
        self.client = XorpayClient("201906120001", "secret", hosts=HOSTS, timeout=30)

    def test_format_amount(self):
        self.assertEqual(format_amount(0.1), "0.10")
        self.assertEqual(format_amount(25), "25.00")
        self.assertEqual(format_amount("19.999"), "20.00")

    @patch("core.xorpay_client.requests.post")
    def test_create_payment_signs_request(self, mock_post):
        mock_post.return_value = _response(json_data={"errcode": 0, "url_qrcode": "https://qr", "url": "https://pay"})
        title = "会员" * 30
        result = self.client.create_payment("ORD1", 0.1, title, "https://notify", "https://return", payment_type="wechat")
        self.assertEqual(result["url_qrcode"], "https://qr")

        args, kwargs = mock_post.call_args
        self.assertEqual(args[0], "https://api.xunhupay.com/payment/do.html")
        self.assertEqual(kwargs["timeout"], 30)
        data = kwargs["data"]
        self.assertEqual(data["version"], "1.1")
        self.assertEqual(data["total_fee"], "0.10")
        self.assertEqual(len(data["title"]), 42)
        self.assertEqual(data["type"], "wechat")
        self.assertEqual(len(data["nonce_str"]), 32)
        self.assertNotIn("secret", data.values())
        self.assertTrue(verify(data, "secret"))

    @patch("core.xorpay_client.requests.post")
    def test_falls_through_to_mirror(self, mock_post):
        mock_post.side_effect = [
            requests.ConnectionError("refused"),
            _response(json_data={"errcode": 0, "data": {"status": "OD"}}),
        ]
        result = self.client.query_order("ORD1")
        self.assertEqual(result["data"]["status"], "OD")
        self.assertEqual(mock_post.call_count, 2)
        self.assertEqual(mock_post.call_args[0][0], "https://api.dpweixin.com/payment/query.html")
        self.assertEqual(mock_post.call_args[1]["data"]["out_trade_order"], "ORD1")

    @patch("core.xorpay_client.requests.post")
    def test_all_hosts_time_out(self, mock_post):
        mock_post.side_effect = requests.Timeout("slow")
        with self.assertRaises(GatewayUnreachableError) as ctx:
            self.client.create_payment("ORD1", 1, "title", "https://notify")
        self.assertIn("超时", str(ctx.exception))
        self.assertEqual([x["kind"] for x in ctx.exception.failures], ["timeout", "timeout"])

    @patch("core.xorpay_client.requests.post")
    def test_mixed_failures_report_connection_error(self, mock_post):
        mock_post.side_effect = [requests.Timeout("slow"), requests.ConnectionError("refused")]
        with self.assertRaises(GatewayUnreachableError) as ctx:
            self.client.query_order("ORD1")
        self.assertIn("连接失败", str(ctx.exception))
        self.assertIn("https://api.dpweixin.com: connection", str(ctx.exception))

    @patch("core.xorpay_client.requests.post")
    def test_first_reachable_answer_is_final(self, mock_post):
        mock_post.return_value = _response(status_code=500)
        with self.assertRaises(GatewayResponseError) as ctx:
            self.client.query_order("ORD1")
        self.assertEqual(str(ctx.exception), "支付接口请求失败: 500")
        self.assertEqual(mock_post.call_count, 1)

    @patch("core.xorpay_client.requests.post")
    def test_non_json_body(self, mock_post):
        mock_post.return_value = _response(json_error=True)
        with self.assertRaises(GatewayResponseError) as ctx:
            self.client.query_order("ORD1")
        self.assertEqual(str(ctx.exception), "支付接口返回格式错误")

    @patch("core.xorpay_client.requests.post")
    def test_errcode_raises_api_error(self, mock_post):
        mock_post.return_value = _response(json_data={"errcode": 1001, "errmsg": "appid 不存在"})
        with self.assertRaises(GatewayApiError) as ctx:
            self.client.refund("ORD1")
        self.assertEqual(str(ctx.exception), "appid 不存在")
        self.assertEqual(ctx.exception.errcode, 1001)

    @patch("core.xorpay_client.requests.post")
    def test_refund_reason_truncated(self, mock_post):
        mock_post.return_value = _response(json_data={"errcode": 0, "refund_status": "CD"})
        self.client.refund("ORD1", reason="原" * 100)
        data = mock_post.call_args[1]["data"]
        self.assertEqual(len(data["reason"]), 80)
        self.assertEqual(data["trade_order_id"], "ORD1")
        self.assertEqual(mock_post.call_args[0][0], "https://api.xunhupay.com/payment/refund.html")

    @patch("core.xorpay_client.socket.getaddrinfo")
    @patch("core.xorpay_client.requests.get")
    def test_diagnose_reports_each_host(self, mock_get, mock_dns):
        mock_dns.return_value = [(None, None, None, "", ("1.2.3.4", 443))]
        mock_get.side_effect = [_response(status_code=200), requests.Timeout("slow")]
        result = self.client.diagnose(timeout=10)
        self.assertTrue(result["dns"]["api.xunhupay.com"]["success"])
        self.assertEqual(result["dns"]["api.xunhupay.com"]["addresses"], ["1.2.3.4"])
        self.assertEqual(result["https"]["https://api.xunhupay.com/payment/do.html"]["status"], 200)
        self.assertFalse(result["https"]["https://api.dpweixin.com/payment/do.html"]["success"])
        self.assertEqual(mock_get.call_args[1]["timeout"], 10)


if __name__ == "__main__":
    unittest.main()
