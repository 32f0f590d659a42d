from decimal import Decimal
from types import SimpleNamespace

import pytest
from pydantic import ValidationError as PydanticValidationError

from glassflow.schemas import (
    CostEstimateCreate, DamageReportCreate, JobResponseRequest, SelectionRequest, ShopCreate, ShopSelectionCreate,
    ShopSelectionRead, WSMessage,
)

OFFER_ID = "3f2b8c1e-8d7a-4f6b-9a51-2c4e6d8f0a13"


def test_damage_report_valid():
    report = DamageReportCreate(
        customer_name="Jane Doe", customer_email=" jane@example.com ",
        service_type="windshield_repair", damage_type="chip",
    )
    assert report.customer_email == "jane@example.com"
    assert report.requires_adas_calibration is False


def test_damage_report_rejects_bad_email():
    with pytest.raises(PydanticValidationError):
        DamageReportCreate(customer_name="Jane", customer_email="not-an-email", service_type="x", damage_type="chip")


def test_job_response_valid():
    body = JobResponseRequest(jobOfferId=OFFER_ID, response="decline", declineReason="Fully booked")
    assert str(body.jobOfferId) == OFFER_ID
    assert body.counterOffer is None


@pytest.mark.parametrize("payload", [
    {"jobOfferId": "not-a-uuid", "response": "accept"},
    {"jobOfferId": OFFER_ID, "response": "maybe"},
    {"jobOfferId": OFFER_ID, "response": "accept", "counterOffer": -5},
])
def test_job_response_rejects(payload):
    with pytest.raises(PydanticValidationError):
        JobResponseRequest(**payload)


def test_selection_request_keeps_raw_fields():
    body = SelectionRequest(action="select_shop_and_schedule", tracking_token="abc", appointment_time="9am")
    assert body.appointment_time == "9am"
    assert body.shop_id is None


def test_shortlist_prices_non_negative():
    with pytest.raises(PydanticValidationError):
        ShopSelectionCreate(shops=[{"shop_id": "s1", "estimated_price": -1}])


def test_cost_estimate_line_items_default_empty():
    body = CostEstimateCreate(labor_cost="75", parts_cost="50")
    assert body.line_items == []


def test_ws_message_defaults():
    msg = WSMessage(event="JobOfferAccepted", appointment_id="a1")
    assert msg.model_dump() == {"event": "JobOfferAccepted", "appointment_id": "a1", "workflow_stage": "", "data": {}}


def test_shop_create_rejects_blank_name_and_unknown_capability():
    with pytest.raises(PydanticValidationError):
        ShopCreate(name="")
    with pytest.raises(PydanticValidationError):
        ShopCreate(name="Glass Corner", service_capability="tinting")
    assert ShopCreate(name="Glass Corner").service_capability == "both"


def test_shortlist_row_flattens_shop_details():
    shop = SimpleNamespace(
        name="Shop A", address="Main St 1", city="Utrecht", rating=4.5,
        mobile_service=True, adas_calibration_capability=False,
    )
    row = SimpleNamespace(
        shop_id="01SHOPA0000000000000000000", priority_order=1,
        estimated_price=Decimal("300.00"), distance_km=4.2, shop=shop,
    )
    read = ShopSelectionRead.from_row(row)
    assert read.shop_name == "Shop A"
    assert read.address == "Main St 1"
    assert read.estimated_price == Decimal("300.00")
    assert read.mobile_service is True
