import pytest

from glassflow.services import stages


def test_no_skips_from_new():
    assert not stages.is_legal(stages.NEW, stages.SCHEDULED)
    assert not stages.is_legal(stages.NEW, stages.COMPLETED)
    assert not stages.is_legal(stages.SHOP_SELECTION, stages.DAMAGE_REPORT)


@pytest.mark.parametrize("stage", [s for s in stages.STAGES if s not in stages.TERMINAL])
def test_every_open_stage_can_be_cancelled(stage):
    assert stages.is_legal(stage, stages.CANCELLED)


@pytest.mark.parametrize("stage", sorted(stages.TERMINAL))
def test_terminal_stages_have_no_exits(stage):
    assert all(not stages.is_legal(stage, other) for other in stages.STAGES)


def test_job_status_only_after_scheduling():
    assert stages.job_status_for(stages.COST_APPROVAL) is None
    assert stages.job_status_for(stages.SCHEDULED) == "scheduled"
    assert stages.job_status_for(stages.IN_PROGRESS) == "in_progress"


def test_booking_status():
    assert stages.booking_status_for(stages.AWAITING_SHOP_RESPONSE) == "pending"
    assert stages.booking_status_for(stages.DAMAGE_REPORT) == "confirmed"
    assert stages.booking_status_for(stages.COMPLETED) == "completed"
    assert stages.booking_status_for(stages.CANCELLED) == "cancelled"


def test_stage_fields_written_together():
    assert stages.stage_fields(stages.SCHEDULED) == {
        "workflow_stage": "scheduled", "job_status": "scheduled", "status": "confirmed",
    }
