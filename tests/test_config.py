"""Tests for stayvia.config — Settings validators."""

import pytest
from pydantic import ValidationError

from stayvia.config import Settings


def test_allowed_user_ids_from_csv():
    s = Settings(TELEGRAM_BOT_TOKEN="t", ALLOWED_USER_IDS="1, 2,,3")
    assert s.ALLOWED_USER_IDS == [1, 2, 3]


def test_empty_allowed_user_ids_means_anyone():
    s = Settings(TELEGRAM_BOT_TOKEN="t", ALLOWED_USER_IDS="")
    assert s.ALLOWED_USER_IDS == []


def test_int_settings_parsed_from_strings():
    s = Settings(TELEGRAM_BOT_TOKEN="t", REMINDER_HOUR="7", SYNC_LOOKAHEAD_DAYS="30")
    assert s.REMINDER_HOUR == 7
    assert s.SYNC_LOOKAHEAD_DAYS == 30


def test_reminder_hour_out_of_range():
    with pytest.raises(ValidationError):
        Settings(TELEGRAM_BOT_TOKEN="t", REMINDER_HOUR="24")


def test_policy_normalized():
    s = Settings(TELEGRAM_BOT_TOKEN="t", PAYMENT_PAST_DUE_POLICY=" FIRE_NOW ")
    assert s.PAYMENT_PAST_DUE_POLICY == "fire_now"


def test_unknown_policy_rejected():
    with pytest.raises(ValidationError):
        Settings(TELEGRAM_BOT_TOKEN="t", RATING_PAST_DUE_POLICY="later")
