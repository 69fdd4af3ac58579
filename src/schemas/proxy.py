from pydantic import BaseModel


class IngestRequest(BaseModel):
    url: str


class ProxyResponse(BaseModel):
    success: bool
    url: str
    type: str
    size: int


class ErrorResponse(BaseModel):
    error: str


class HealthResponse(BaseModel):
    status: str
