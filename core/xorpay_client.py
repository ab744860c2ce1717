"""
虎皮椒（xunhupay / xorpay）支付网关客户端

主域名不可达时依次尝试镜像域名，第一个能连上的域名的响应即为最终结果。
"""

import secrets
import socket
import time
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Optional

import requests

from core.config import cfg
from core.events import E, log_event
from core.log import get_logger
from core.signature import signed_params

logger = get_logger(__name__)

DEFAULT_GATEWAY_HOSTS = ["https://api.xunhupay.com", "https://api.dpweixin.com"]
API_VERSION = "1.1"
MAX_TITLE_LENGTH = 42
MAX_REASON_LENGTH = 80


class GatewayError(Exception):
    """支付网关错误基类"""


class GatewayUnreachableError(GatewayError):
    """所有网关域名均无法连接"""

    def __init__(self, message: str, failures: List[Dict]):
        super().__init__(message)
        self.failures = failures


class GatewayResponseError(GatewayError):
    """网关返回非 2xx 或无法解析的响应"""


class GatewayApiError(GatewayError):
    """网关返回 errcode != 0"""

    def __init__(self, message: str, errcode=None, payload: Optional[Dict] = None):
        super().__init__(message)
        self.errcode = errcode
        self.payload = payload or {}


def format_amount(amount) -> str:
    """金额固定两位小数，如 0.1 → "0.10" """
    return str(Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def gateway_hosts() -> List[str]:
    hosts = cfg.get("payment.gateway_hosts") or DEFAULT_GATEWAY_HOSTS
    if isinstance(hosts, str):
        hosts = [x.strip() for x in hosts.split(",") if x.strip()]
    return [str(x).rstrip("/") for x in hosts]


def _unreachable_message(failures: List[Dict]) -> str:
    detail = "；".join(f"{x['host']}: {x['kind']}" for x in failures)
    if failures and all(x["kind"] == "timeout" for x in failures):
        return f"支付接口连接超时，所有网关均无响应（{detail}）"
    return f"支付接口连接失败，请检查服务器网络（{detail}）"


class XorpayClient:
    """虎皮椒 API 客户端"""

    def __init__(self, app_id: str, app_secret: str, hosts: List[str] = None, timeout: float = None):
        """
        Args:
            app_id: 虎皮椒 appid
            app_secret: 虎皮椒 appsecret，只用于签名，不会出现在请求参数里
            hosts: 网关域名列表，按顺序尝试
            timeout: 单次请求超时（秒）
        """
        self.app_id = app_id
        self.app_secret = app_secret
        self.hosts = list(hosts) if hosts else gateway_hosts()
        self.timeout = float(timeout if timeout is not None else cfg.get("payment.timeout_seconds", 30))

    def _base_params(self) -> Dict[str, str]:
        return {
            "appid": self.app_id,
            "time": str(int(time.time())),
            "nonce_str": secrets.token_hex(16),
        }

    def _post(self, path: str, params: Dict) -> Dict:
        payload = signed_params(params, self.app_secret)
        failures = []
        for host in self.hosts:
            url = f"{host}{path}"
            try:
                resp = requests.post(url, data=payload, timeout=self.timeout)
            except requests.Timeout:
                failures.append({"host": host, "kind": "timeout"})
                log_event(logger, E.PAYMENT_GATEWAY_FAIL, level="warning", host=host, path=path, kind="timeout")
                continue
            except requests.RequestException as e:
                failures.append({"host": host, "kind": "connection", "error": str(e)})
                log_event(logger, E.PAYMENT_GATEWAY_FAIL, level="warning", host=host, path=path, kind="connection", error=e)
                continue

            if resp.status_code < 200 or resp.status_code >= 300:
                raise GatewayResponseError(f"支付接口请求失败: {resp.status_code}")
            try:
                data = resp.json()
            except ValueError:
                raise GatewayResponseError("支付接口返回格式错误")
            if not isinstance(data, dict):
                raise GatewayResponseError("支付接口返回格式错误")
            if str(data.get("errcode")) != "0":
                raise GatewayApiError(data.get("errmsg") or "支付接口返回错误", errcode=data.get("errcode"), payload=data)
            return data
        raise GatewayUnreachableError(_unreachable_message(failures), failures)

    def create_payment(
        self,
        order_id: str,
        amount,
        title: str,
        notify_url: str,
        return_url: str = "",
        payment_type: str = None,
    ) -> Dict:
        """下单，返回 {url_qrcode, url, ...}"""
        params = {
            "version": API_VERSION,
            **self._base_params(),
            "trade_order_id": order_id,
            "total_fee": format_amount(amount),
            "title": (title or "会员购买")[:MAX_TITLE_LENGTH],
            "notify_url": notify_url,
            "return_url": return_url,
        }
        if payment_type:
            params["type"] = payment_type
        return self._post("/payment/do.html", params)

    def query_order(self, order_id: str) -> Dict:
        params = {**self._base_params(), "out_trade_order": order_id}
        return self._post("/payment/query.html", params)

    def refund(self, order_id: str, reason: str = "") -> Dict:
        params = {**self._base_params(), "trade_order_id": order_id}
        if reason:
            params["reason"] = reason[:MAX_REASON_LENGTH]
        return self._post("/payment/refund.html", params)

    def diagnose(self, timeout: float = None) -> Dict:
        """逐个网关做 DNS 解析与 HTTPS 探测"""
        timeout = float(timeout if timeout is not None else cfg.get("payment.diagnose_timeout_seconds", 10))
        results = {"dns": {}, "https": {}}
        for host in self.hosts:
            domain = host.split("://", 1)[-1].split("/", 1)[0]
            try:
                infos = socket.getaddrinfo(domain, 443, proto=socket.IPPROTO_TCP)
                results["dns"][domain] = {"success": True, "addresses": sorted({x[4][0] for x in infos})}
            except OSError as e:
                results["dns"][domain] = {"success": False, "error": str(e)}

            url = f"{host}/payment/do.html"
            start = time.monotonic()
            try:
                resp = requests.get(url, timeout=timeout, headers={"User-Agent": "membership-shop/1.0 (Connection Test)"})
                results["https"][url] = {
                    "success": True,
                    "status": resp.status_code,
                    "duration": int((time.monotonic() - start) * 1000),
                }
            except requests.RequestException as e:
                results["https"][url] = {
                    "success": False,
                    "error": str(e),
                    "name": type(e).__name__,
                    "duration": int((time.monotonic() - start) * 1000),
                }
        return results
