"""
Tests for the command line interface.
"""

import json

from bizflow.cli import main


def write_json(path, data):
    path.write_text(json.dumps(data))
    return str(path)


def sale_workflow():
    return {
        "name": "Big sale thank-you",
        "trigger": {
            "type": "SALE_COMPLETED",
            "conditions": [{"field": "amount", "operator": "greater_than", "value": 100}],
        },
        "actions": [
            {
                "type": "SEND_EMAIL",
                "order": 1,
                "config": {"to": "{{ client.email }}", "subject": "Thanks", "body": "Thank you!"},
            },
        ],
    }


def daily_workflow():
    return {
        "name": "Daily digest",
        "trigger": {
            "type": "SCHEDULED",
            "schedule": {"type": "RECURRING", "interval": "DAYS", "interval_value": 1},
        },
        "actions": [
            {"type": "CREATE_TASK", "order": 1, "config": {"title": "Review bookings", "assigned_to": "staff-1"}},
        ],
    }


class TestValidateCommand:
    """Tests for the validate command."""

    def test_valid(self, tmp_path, capsys):
        path = write_json(tmp_path / "workflow.json", sale_workflow())

        assert main(["validate", path]) == 0
        assert json.loads(capsys.readouterr().out)["is_valid"] is True

    def test_invalid(self, tmp_path, capsys):
        data = sale_workflow()
        data["actions"] = []
        path = write_json(tmp_path / "workflow.json", data)

        assert main(["validate", path]) == 1

        report = json.loads(capsys.readouterr().out)
        assert [e["code"] for e in report["errors"]] == ["NO_ACTIONS"]

    def test_missing_file(self, tmp_path, capsys):
        assert main(["validate", str(tmp_path / "missing.json")]) == 1
        assert "error" in json.loads(capsys.readouterr().out)


class TestDryRunCommand:
    """Tests for the test command."""

    def test_payload(self, tmp_path, capsys):
        workflow = write_json(tmp_path / "workflow.json", sale_workflow())
        payload = write_json(tmp_path / "payload.json", {"amount": 250})

        assert main(["test", workflow, "--payload", payload]) == 0

        result = json.loads(capsys.readouterr().out)
        assert result["can_execute"] is True
        assert result["predicted_actions"][0]["type"] == "SEND_EMAIL"

    def test_malformed_definition(self, tmp_path, capsys):
        workflow = write_json(tmp_path / "workflow.json", {"name": "No trigger"})
        payload = write_json(tmp_path / "payload.json", {})

        assert main(["test", workflow, "--payload", payload]) == 1
        assert json.loads(capsys.readouterr().out)["code"] == "VALIDATION_ERROR"


class TestNextRunsCommand:
    """Tests for the next-runs command."""

    def test_daily(self, tmp_path, capsys):
        path = write_json(tmp_path / "workflow.json", daily_workflow())

        code = main(["next-runs", path, "--count", "3", "--from", "2024-01-01T09:00:00+00:00"])

        assert code == 0
        assert json.loads(capsys.readouterr().out)["next_runs"] == [
            "2024-01-02T09:00:00+00:00",
            "2024-01-03T09:00:00+00:00",
            "2024-01-04T09:00:00+00:00",
        ]

    def test_not_scheduled(self, tmp_path, capsys):
        path = write_json(tmp_path / "workflow.json", sale_workflow())

        assert main(["next-runs", path]) == 1
        assert "SCHEDULED" in json.loads(capsys.readouterr().out)["error"]


class TestTemplatesCommand:
    """Tests for the templates command."""

    def test_lists_templates(self, capsys):
        assert main(["templates"]) == 0

        templates = json.loads(capsys.readouterr().out)
        assert "appointment-reminder" in [t["id"] for t in templates]

    def test_no_command(self, capsys):
        assert main([]) == 2
