"""FastAPI 应用主入口"""
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.endpoints import snapshots
from app.core.config import settings
from app.core.errors import AuthFailure, UpstreamFailure, ValidationFailure

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description="HLP vault NAV tracking & signal scoring API",
)

# CORS 配置 - 允许前端跨域访问
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 注册路由
# 路由路径: /latest, /snapshots, /collect
app.include_router(
    snapshots.router,
    tags=["Snapshots"],
)


@app.exception_handler(ValidationFailure)
async def validation_failure_handler(request: Request, exc: ValidationFailure):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(AuthFailure)
async def auth_failure_handler(request: Request, exc: AuthFailure):
    return JSONResponse(status_code=401, content={"detail": str(exc)})


@app.exception_handler(UpstreamFailure)
async def upstream_failure_handler(request: Request, exc: UpstreamFailure):
    logger.error("❌ 上游请求失败: %s", exc)
    return JSONResponse(status_code=502, content={"detail": str(exc)})


@app.on_event("startup")
async def startup_event():
    """应用启动事件"""
    logger.info("🚀 %s Ready", settings.PROJECT_NAME)
    logger.info("📚 API Documentation: http://localhost:8000/docs")


@app.get("/")
async def root():
    """根路径"""
    return {
        "message": "HLP Vault Monitor API",
        "version": settings.VERSION,
        "docs": "/docs",
    }


@app.get("/health")
async def health():
    """健康检查"""
    return {"status": "healthy"}
