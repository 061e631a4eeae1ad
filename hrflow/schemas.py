from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class DecisionRequest(CamelModel):
    reconciliation_id: str = Field(alias="reconciliationId", min_length=1, max_length=128)
    action: Literal["approve", "reject"]
    type: Literal["attendance", "breaktime"] = "attendance"


class BatchDecisionRequest(CamelModel):
    reconciliation_ids: list[str] = Field(alias="reconciliationIds", min_length=1, max_length=100)
    action: Literal["approve", "reject"]
    type: Literal["attendance", "breaktime"] = "attendance"

    @field_validator("reconciliation_ids")
    @classmethod
    def _strip_ids(cls, value: list[str]) -> list[str]:
        cleaned = [item.strip() for item in value if item and item.strip()]
        if not cleaned:
            raise ValueError("At least one reconciliation id is required.")
        return cleaned


class DecisionResponse(BaseModel):
    success: bool = True
    reconciliation_id: str = Field(serialization_alias="reconciliationId")
    status: str


class BatchDecisionResult(BaseModel):
    reconciliation_id: str = Field(serialization_alias="reconciliationId")
    success: bool
    code: str | None = None
    error: str | None = None


class BatchDecisionResponse(BaseModel):
    success: bool
    results: list[BatchDecisionResult]


class NotifyReconciliationRequest(CamelModel):
    reconciliation_id: str = Field(alias="reconciliationId", min_length=1, max_length=128)


class DecisionNotifyRequest(CamelModel):
    type: Literal["new_request", "decision"]
    request_id: str = Field(alias="requestId", min_length=1, max_length=128)
    status: str | None = None
    rejection_reason: str | None = Field(default=None, alias="rejectionReason", max_length=2000)


class TaskNotifyRequest(CamelModel):
    type: Literal["task_assigned", "task_update"]
    task_id: str = Field(alias="taskId", min_length=1, max_length=128)
    target_user_ids: list[str] = Field(alias="targetUserIds", min_length=1)


class PunchLocation(BaseModel):
    address: str | None = None
    latitude: float | None = None
    longitude: float | None = None


class AttendancePunchNotifyRequest(CamelModel):
    type: Literal["in_time", "out_time", "check_in", "check_out"]
    employee_id: str = Field(alias="employeeId", min_length=1)
    employee_name: str = Field(alias="employeeName", min_length=1)
    time: str = Field(min_length=1)
    employee_code: str | None = Field(default=None, alias="employeeCode")
    employee_email: str | None = Field(default=None, alias="employeeEmail")
    employee_phone: str | None = Field(default=None, alias="employeePhone")
    date: str | None = None
    flag: str | None = None
    location: PunchLocation | None = None
    company_name: str | None = Field(default=None, alias="companyName")
    remarks: str | None = None


class PushSubscriptionKeys(BaseModel):
    p256dh: str
    auth: str


class PushSubscriptionRequest(BaseModel):
    endpoint: str = Field(min_length=1)
    keys: PushSubscriptionKeys


class PushUnsubscribeRequest(BaseModel):
    endpoint: str = Field(min_length=1)


class HolidayNotifyRequest(CamelModel):
    holiday_id: str = Field(alias="holidayId", min_length=1, max_length=128)
