"""Pydantic schemas for Microsoft Graph change notifications."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class ResourceData(BaseModel):
    """``resourceData`` block of a change notification."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    odata_type: str | None = Field(None, alias="@odata.type")
    odata_id: str | None = Field(None, alias="@odata.id")
    id: str | None = None


class ChangeNotification(BaseModel):
    """One Graph change notification."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    subscription_id: str | None = Field(None, alias="subscriptionId")
    change_type: str = Field("", alias="changeType")
    client_state: str | None = Field(None, alias="clientState")
    resource: str = ""
    resource_data: ResourceData = Field(default_factory=ResourceData, alias="resourceData")


class NotificationBatch(BaseModel):
    """Webhook POST body: ``{"value": [...]}``."""

    value: list[ChangeNotification] = Field(default_factory=list)
