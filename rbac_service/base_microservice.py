import logging
from typing import Any, Dict, Optional
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base

from rbac_service.config import get_settings

# Setup logging
logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s %(levelname)s %(message)s",
)
logger = logging.getLogger("rbac_service")

# SQLAlchemy async setup
DATABASE_URL = get_settings().database_url
engine = create_async_engine(DATABASE_URL, echo=False, pool_pre_ping=True)
AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
Base = declarative_base()


async def get_db_session():
    """Dependency for getting a database session."""
    async with AsyncSessionLocal() as session:
        yield session


class MCPResponse(JSONResponse):
    """
    Standard response envelope for all API endpoints.
    """
    def __init__(self, data: Any = None, message: str = "success", status: str = "ok", **kwargs):
        content = {
            "status": status,
            "message": message,
            "data": jsonable_encoder(data),
        }
        super().__init__(content=content, **kwargs)


class BaseMicroservice:
    """
    Base class for the service routers. Provides:
    - Audit event/error logging
    - The standard response envelope
    """
    def __init__(self, name: str = "rbac_service"):
        self.name = name
        self.logger = logger

    def mcp_response(
        self,
        data: Any = None,
        message: str = "success",
        status: str = "ok",
        status_code: int = 200,
        headers: Optional[Dict[str, str]] = None,
    ):
        """
        Return a standard protocol response.
        """
        return MCPResponse(data=data, message=message, status=status, status_code=status_code, headers=headers)

    def log_event(self, event: str, details: Dict[str, Any] = None):
        self.logger.info(f"EVENT: {event} | Service: {self.name} | Details: {details}")

    def log_error(self, error: Exception, context: str = ""):
        self.logger.error(f"ERROR: {error.__class__.__name__}: {error} | Service: {self.name} | Context: {context}")
