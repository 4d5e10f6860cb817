from datetime import datetime

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
        coerce_numbers_to_str=True,
        extra="ignore",
    )


class RegistrationPayload(CamelModel):
    """Fields accepted on create and update; only the keys a client sends count."""

    id: int | None = None
    email: str | None = None
    status: str | None = None
    phone1: str | None = None
    phone2: str | None = None
    name_prefix: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    name_suffix: str | None = None
    has_proxy: bool | None = None
    proxy_name: str | None = None
    proxy_phone: str | None = None
    proxy_email: str | None = None
    cancelled_attendance: bool | None = None
    cancellation_reason: str | None = None
    day1_attendee: bool | None = None
    day2_attendee: bool | None = None
    question1: str | None = None
    question2: str | None = None
    is_attendee: bool | None = None
    is_cancelled: bool | None = None
    is_monitor: bool | None = None
    is_organizer: bool | None = None
    is_presenter: bool | None = None
    is_sponsor: bool | None = None
    presenter_bio: str | None = None
    presenter_pic_url: str | None = None
    session1_title: str | None = None
    session1_description: str | None = None
    session2_title: str | None = None
    session2_description: str | None = None


class RegistrationView(CamelModel):
    id: int
    email: str
    status: str | None = None
    phone1: str | None = None
    phone2: str | None = None
    name_prefix: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    name_suffix: str | None = None
    has_proxy: bool = False
    proxy_name: str | None = None
    proxy_phone: str | None = None
    proxy_email: str | None = None
    cancelled_attendance: bool = False
    cancellation_reason: str | None = None
    day1_attendee: bool = False
    day2_attendee: bool = False
    question1: str
    question2: str
    is_attendee: bool = True
    is_cancelled: bool = False
    is_monitor: bool = False
    is_organizer: bool = False
    is_presenter: bool = False
    is_sponsor: bool = False
    presenter_bio: str | None = None
    presenter_pic_url: str | None = None
    session1_title: str | None = None
    session1_description: str | None = None
    session2_title: str | None = None
    session2_description: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    login_pin: str | None = None


class LoginRequest(BaseModel):
    email: str = ""
    pin: str = ""


def registration_json(row, login_pin: str | None = None) -> dict:
    view = RegistrationView.model_validate(row)
    if login_pin is None:
        return view.model_dump(by_alias=True, mode="json", exclude={"login_pin"})
    view.login_pin = login_pin
    return view.model_dump(by_alias=True, mode="json")
