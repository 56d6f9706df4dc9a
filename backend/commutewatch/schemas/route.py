"""Pydantic schemas for routes and monitoring windows."""
from __future__ import annotations

from datetime import datetime, time
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from commutewatch.models.base import MonitoringStatusEnum, RouteProviderEnum


class RouteCreateRequest(BaseModel):
    origin_address: str = Field(..., min_length=1, max_length=500)
    destination_address: str = Field(..., min_length=1, max_length=500)
    provider: RouteProviderEnum = RouteProviderEnum.GOOGLE_MAPS


class RouteRead(BaseModel):
    route_id: int
    origin_address: str
    origin_coordinates: str
    destination_address: str
    destination_coordinates: str
    provider: RouteProviderEnum
    monitoring_status: MonitoringStatusEnum
    chain_handle: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class RouteUpdateRequest(BaseModel):
    origin_address: Optional[str] = Field(default=None, min_length=1, max_length=500)
    destination_address: Optional[str] = Field(default=None, min_length=1, max_length=500)
    provider: Optional[RouteProviderEnum] = None


class RoutePage(BaseModel):
    page: int
    page_size: int
    total: int
    items: list[RouteRead]


class WindowCreateRequest(BaseModel):
    start_time: time
    end_time: time
    # bit 0 = Monday … bit 6 = Sunday; default weekdays
    days_of_week_mask: int = Field(default=0b0011111, ge=1, le=127)

    @model_validator(mode="after")
    def _end_after_start(self):
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class WindowRead(BaseModel):
    window_id: int
    route_id: int
    start_time: time
    end_time: time
    days_of_week_mask: int
    days_of_week: list[str] = []
    is_active: bool

    model_config = {"from_attributes": True}
