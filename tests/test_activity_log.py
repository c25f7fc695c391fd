import json

from cpa_hub.logs import activity as activity_log
from cpa_hub.logs import fetch_activity_entries, log_activity


def test_log_activity_writes_jsonl(tmp_path, monkeypatch):
    log_file = tmp_path / "log.jsonl"
    monkeypatch.setenv("HUB_ACTIVITY_LOG", str(log_file))
    monkeypatch.setenv("HUB_ACTIVITY_FORCE_FILE", "1")

    entry = log_activity(
        action="created",
        resource_type="task",
        resource_id="t-1",
        resource_name="Prepare 1040",
        user_email="staff@example.com",
    )

    assert log_file.exists()
    lines = log_file.read_text(encoding="utf-8").strip().splitlines()
    assert len(lines) == 1
    record = json.loads(lines[0])
    assert record["id"] == entry["id"]
    assert record["resource_id"] == "t-1"
    assert record["details"] == {}


def test_fetch_newest_first_with_filters():
    log_activity(action="created", resource_type="task", resource_name="Payroll review", user_email="a@x.com")
    log_activity(action="updated", resource_type="client", resource_name="Acme LLC", user_email="b@x.com")
    log_activity(action="created", resource_type="client", resource_name="Beta Inc", user_email="a@x.com")

    assert [e["resource_name"] for e in fetch_activity_entries()] == [
        "Beta Inc",
        "Acme LLC",
        "Payroll review",
    ]
    assert len(fetch_activity_entries(resource_type="client")) == 2
    assert len(fetch_activity_entries(action="created", user_email="a@x.com")) == 2
    assert [e["resource_name"] for e in fetch_activity_entries(search="acme")] == ["Acme LLC"]
    assert [e["resource_name"] for e in fetch_activity_entries(1, offset=1)] == ["Acme LLC"]


def test_fetch_skips_corrupt_lines(tmp_path, monkeypatch):
    log_file = tmp_path / "corrupt.jsonl"
    monkeypatch.setenv("HUB_ACTIVITY_LOG", str(log_file))
    log_file.write_text('{"action": "created"}\nnot json\n', encoding="utf-8")

    assert activity_log.fetch_activity_entries() == [{"action": "created"}]
