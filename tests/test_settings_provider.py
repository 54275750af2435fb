"""Tests for the merge settings provider fallbacks."""

from account_merge.database import set_setting
from account_merge.settings_provider import (
    COOLING_PERIOD_KEY,
    EXPIRY_DAYS_KEY,
    MergeSettings,
    load_merge_settings,
)


def test_defaults_without_rows(session):
    assert load_merge_settings(session) == MergeSettings(invitation_expiry_days=7, unmerge_cooling_period_days=0)


def test_values_from_settings_table(session):
    set_setting(EXPIRY_DAYS_KEY, 3)
    set_setting(COOLING_PERIOD_KEY, "14")

    settings = load_merge_settings(session)
    assert settings.invitation_expiry_days == 3
    assert settings.unmerge_cooling_period_days == 14


def test_bad_values_fall_back(session):
    set_setting(EXPIRY_DAYS_KEY, "soon")
    set_setting(COOLING_PERIOD_KEY, -2)

    settings = load_merge_settings(session)
    assert settings.invitation_expiry_days == 7
    assert settings.unmerge_cooling_period_days == 0


def test_environment_supplies_fallback(session, monkeypatch):
    monkeypatch.setenv("MERGE_INVITATION_EXPIRY_DAYS", "10")
    assert load_merge_settings(session).invitation_expiry_days == 10

    set_setting(EXPIRY_DAYS_KEY, 2)
    assert load_merge_settings(session).invitation_expiry_days == 2


def test_to_dict_uses_table_keys():
    assert MergeSettings().to_dict() == {EXPIRY_DAYS_KEY: 7, COOLING_PERIOD_KEY: 0}
