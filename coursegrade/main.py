import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from coursegrade.core.database import init_db
from coursegrade.core.errors import CourseGradeError
from coursegrade.core.logging_config import configure_logging
from coursegrade.api.auth import router as auth_router
from coursegrade.api.author import router as author_router
from coursegrade.api.quizzes import router as quizzes_router
from coursegrade.api.reviews import router as reviews_router
from coursegrade.api.progress import router as progress_router
from coursegrade.api.certificates import router as certificates_router
from coursegrade.api.notifications import router as notifications_router

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="CourseGrade API", version="1.0.0")
app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_credentials=True, allow_methods=["*"], allow_headers=["*"])
app.include_router(auth_router, prefix="/v1/auth", tags=["auth"])
app.include_router(author_router, prefix="/v1/author", tags=["authoring"])
app.include_router(quizzes_router, prefix="/v1/quizzes", tags=["quizzes"])
app.include_router(reviews_router, prefix="/v1/reviews", tags=["reviews"])
app.include_router(progress_router, prefix="/v1", tags=["progress"])
app.include_router(certificates_router, prefix="/v1", tags=["certificates"])
app.include_router(notifications_router, prefix="/v1/notifications", tags=["notifications"])

@app.exception_handler(CourseGradeError)
async def course_grade_error_handler(request: Request, exc: CourseGradeError):
    if exc.status_code >= 500:
        logger.warning("%s on %s %s: %s", exc.kind, request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

@app.get("/health")
def health(): return {"status": "ok"}

if __name__ == "__main__":
    import uvicorn
    init_db()
    uvicorn.run("coursegrade.main:app", host="0.0.0.0", port=8000)
