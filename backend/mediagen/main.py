import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from mediagen.config import get_settings
from mediagen.database import Base, SessionLocal, engine
from mediagen.errors import AppException
from mediagen.routes import assets, auth, credits, payment, prompts, tasks
from mediagen.services.orchestrator import get_orchestrator
from mediagen.services.reconciler import seed_credit_packages
from mediagen.services.task_queue import task_queue

settings = get_settings()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # 创建数据库表并写入默认套餐
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        seed_credit_packages(db)
    finally:
        db.close()

    orchestrator = get_orchestrator()
    if settings.RECOVER_ON_STARTUP:
        orchestrator.run_recovery()
    task_queue.start_maintenance(settings.MAINTENANCE_INTERVAL_SECONDS, orchestrator.run_recovery)
    logger.info("MediaGen API started")
    yield
    task_queue.shutdown(wait=False)


app = FastAPI(
    title="MediaGen API",
    description="AI 视频与图片生成服务",
    version="2.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        settings.FRONTEND_URL,
        "http://localhost:5173",  # Vite dev server
        "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AppException)
async def app_exception_handler(request: Request, exc: AppException):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.include_router(auth.router)
app.include_router(credits.router)
app.include_router(tasks.router)
app.include_router(assets.router)
app.include_router(payment.router)
app.include_router(prompts.router)

# 本地存储时由后端直接提供文件访问
if settings.STORAGE_BACKEND == "local":
    os.makedirs(settings.STORAGE_DIR, exist_ok=True)
    app.mount("/files", StaticFiles(directory=settings.STORAGE_DIR), name="files")


@app.get("/")
def root():
    return {"message": "MediaGen API", "status": "running"}


@app.get("/health")
def health_check():
    return {"status": "healthy"}
