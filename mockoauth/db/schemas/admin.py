from pydantic import BaseModel


class ClientMetrics(BaseModel):
    clientId: str
    perEndpointUsage: dict[str, int] = {}
    nextTokenTtlSeconds: int | float | None = None


class AdminMessage(BaseModel):
    message: str
    client_id: str
    ttlSeconds: int | float | None = None

    model_config = {"json_schema_extra": {"examples": [{"message": "reset ok", "client_id": "abc"}]}}
