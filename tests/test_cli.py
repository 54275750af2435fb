"""Tests for the flask CLI commands and demo seeding."""

import json

from account_merge.models import Account, TravelEntry, db


def test_merge_settings_command(app):
    runner = app.test_cli_runner()
    result = runner.invoke(args=["merge-settings"])
    assert result.exit_code == 0
    assert json.loads(result.output) == {
        "merge_invitation_expiry_days": 7,
        "merge_unmerge_cooling_period_days": 0,
    }


def test_seed_demo_is_idempotent(app):
    runner = app.test_cli_runner()
    assert runner.invoke(args=["seed-demo"]).exit_code == 0
    result = runner.invoke(args=["seed-demo"])
    assert result.exit_code == 0
    assert "anna, ben" in result.output

    assert db.session.query(Account).count() == 2
    assert db.session.query(TravelEntry).filter_by(is_public=1).count() == 3

    anna = db.session.query(Account).filter_by(username="anna").one()
    assert anna.verify_password("DemoPassword123!")
    assert not anna.verify_password("wrong")


def test_merge_settings_command_updates_values(app):
    runner = app.test_cli_runner()
    result = runner.invoke(args=["merge-settings", "--cooling-days", "3"])
    assert result.exit_code == 0
    assert json.loads(result.output)["merge_unmerge_cooling_period_days"] == 3

    result = runner.invoke(args=["merge-settings", "--expiry-days", "-1"])
    assert result.exit_code != 0
