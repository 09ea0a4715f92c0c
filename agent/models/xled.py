from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


# Device-level result code for a successful call.
CODE_OK = 1000


class LEDOperationMode(str, Enum):
    OFF = "off"
    COLOR = "color"
    DEMO = "demo"
    MOVIE = "movie"
    RT = "rt"
    EFFECT = "effect"
    PLAYLIST = "playlist"


class CodeResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    code: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.code is None or int(self.code) == CODE_OK


class LoginRequest(BaseModel):
    challenge: str


class LoginResponse(CodeResponse):
    authentication_token: str = Field(..., min_length=1)
    authentication_token_expires_in: Optional[int] = None
    challenge_response: Optional[str] = Field(default=None, alias="challenge-response")


class VerifyRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    challenge_response: Optional[str] = Field(default=None, alias="challenge-response")


class DeviceDetails(CodeResponse):
    product_name: str = ""
    device_name: str = ""
    hw_id: str = ""
    mac: str = ""
    number_of_led: int = Field(0, ge=0)
    led_profile: str = "RGB"
    fw_family: Optional[str] = None


class LEDOperationModeResponse(CodeResponse):
    mode: LEDOperationMode
    shop_mode: Optional[int] = None


class SetLEDOperationModeRequest(BaseModel):
    mode: LEDOperationMode
    effect_id: Optional[int] = None


class FirmwareVersion(CodeResponse):
    version: str = ""
