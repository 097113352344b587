from fastapi import FastAPI

from server.admin.routes import admin_router
from server.api import enroll_router, enrollment_router, payment_router
from server.api.error_handlers import register_exception_handlers
from server.payment_log import configure_logging

configure_logging()
app = FastAPI(title="Course enrollment payments")

register_exception_handlers(app)

# Admin routes live outside /api
app.include_router(admin_router)
app.include_router(enroll_router.router, prefix="/api")
app.include_router(enrollment_router.router, prefix="/api")
app.include_router(payment_router.router, prefix="/api")


@app.get("/health")
async def health():
    return {"status": "ok"}
