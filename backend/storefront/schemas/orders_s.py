from typing import Literal

from pydantic import BaseModel, ConfigDict


class UpdateOrderStatusRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")
    status: Literal[
        "pending",
        "processed",
        "shipped",
        "out-for-delivery",
        "delivered",
        "cancelled",
        "on-hold",
        "expired",
    ]
