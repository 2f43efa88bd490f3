from pydantic import BaseModel, ConfigDict


class InstructorUpdate(BaseModel):
    model_config = ConfigDict(extra="allow")

    OldEmail: str | None = None
    NewEmail: str | None = None
    FirstName: str | None = None
    LastName: str | None = None
    IsActive: bool = False
