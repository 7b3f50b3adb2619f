from pydantic import BaseModel, ConfigDict


class ReleaseReservationsResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")
    released: int
    aborted: bool
