"""Device linking schemas"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class DeviceCodeRequest(BaseModel):
    """Poll/confirm body; accepts both snake_case and camelCase keys"""
    model_config = ConfigDict(populate_by_name=True)

    device_code: Optional[str] = Field(default=None, alias="deviceCode")


class DeviceCodeResponse(BaseModel):
    success: bool = True
    device_code: str
    expires_in: int


class DeviceStatusResponse(BaseModel):
    success: bool = True
    activated: bool
    user_id: Optional[int] = None
