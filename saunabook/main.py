from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from .api.errors import register_exception_handlers
from .api.routes import auth, sessions, templates, instances, bookings, waitlist
from .db.session import Base, engine
from .config import get_settings
from .core.logging import configure_logging
from .workers.scheduler import get_scheduler


app = FastAPI(title="Saunabook API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(auth.router, prefix="/api/v1")
app.include_router(sessions.router, prefix="/api/v1")
app.include_router(templates.router, prefix="/api/v1")
app.include_router(instances.router, prefix="/api/v1")
app.include_router(bookings.router, prefix="/api/v1")
app.include_router(waitlist.router, prefix="/api/v1")

scheduler = get_scheduler()


@app.on_event("startup")
async def startup_event() -> None:
    configure_logging(get_settings())
    Base.metadata.create_all(bind=engine)
    scheduler.start()


@app.on_event("shutdown")
async def shutdown_event() -> None:
    scheduler.shutdown(wait=False)
