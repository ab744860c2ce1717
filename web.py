from fastapi import FastAPI, Request, APIRouter
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import json
from typing import Any
from apis.orders import router as orders_router
from apis.payment import router as payment_router
from apis.invite_codes import router as invite_codes_router
from apis.membership import router as membership_router
from apis.admin_email import router as admin_email_router
from apis.subscriptions import router as subscriptions_router
from core.config import cfg, VERSION, API_BASE
from core.db import DB
from core.events import E, log_event
from core.log import get_logger, set_trace_id

logger = get_logger(__name__)


class UnicodeJSONResponse(JSONResponse):
    """自定义 JSON 响应类，确保中文不被转义"""
    def render(self, content: Any) -> bytes:
        return json.dumps(
            content,
            ensure_ascii=False,
            allow_nan=False,
            indent=None,
            separators=(",", ":"),
        ).encode("utf-8")


app = FastAPI(
    title="Membership Shop API",
    description="会员邀请码售卖与虎皮椒支付接口文档",
    version=VERSION,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    swagger_ui_parameters={
        "persistAuthorization": True,
        "withCredentials": True,
    },
    # 使用自定义 JSONResponse 确保中文不被转义为 \uXXXX
    default_response_class=UnicodeJSONResponse,
)

# CORS配置
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_custom_header(request: Request, call_next):
    trace_id = set_trace_id(request.headers.get("X-Request-Id", ""))
    response = await call_next(request)
    response.headers["X-Version"] = VERSION
    response.headers["X-Request-Id"] = trace_id
    response.headers["Server"] = cfg.get("app_name", "MembershipShop")
    return response


# 创建API路由分组
api_router = APIRouter(prefix=f"{API_BASE}")
api_router.include_router(orders_router)
api_router.include_router(payment_router)
api_router.include_router(invite_codes_router)
api_router.include_router(membership_router)
api_router.include_router(admin_email_router)
api_router.include_router(subscriptions_router)
app.include_router(api_router)


@app.on_event("startup")
async def ensure_tables():
    DB.create_tables()
    log_event(logger, E.SYSTEM_DB_INIT, url=DB.engine.url.render_as_string(hide_password=True))
    log_event(logger, E.SYSTEM_STARTUP, version=VERSION)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("web:app", host=cfg.get("host", "0.0.0.0"), port=int(cfg.get("port", 8001)), reload=False)
