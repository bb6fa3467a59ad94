"""Tests for the assess and create workflows."""

import pytest

from dvschema.errors import InputError
from dvschema.pipeline import assess, create, load_records, summarize
from dvschema.templates import write_sample

HEADER = "Table Logical Name,Column Logical Name,Table Name,Column Name,Column Type,Choice Options\n"


def _csv(tmp_path, body, name="schema.csv"):
    path = tmp_path / name
    path.write_text(HEADER + body, encoding="utf-8")
    return path


class TestLoadRecords:

    def test_deduplicates(self, tmp_path):
        path = _csv(tmp_path, (
            "account,tier,Account,Tier,choice,A;B\n"
            "Account,TIER,Account,Tier,text,\n"
            "contact,isvip,Contact,Is VIP,boolean,\n"
        ))

        records, duplicates = load_records(path)

        assert [r.key for r in records] == ["account|tier", "contact|isvip"]
        assert len(duplicates) == 1
        assert duplicates[0].conflicting


class TestAssess:

    def test_existing_and_new(self, tmp_path, registry):
        records, _ = load_records(_csv(tmp_path, (
            "account,emailaddress1,,,,\n"
            "account,tier,,,,\n"
            "widget,color,,,,\n"
        )))

        result = assess(records, registry, template_path=tmp_path / "create.csv")

        assert [r.field_logical_name for r in result.existing] == ["emailaddress1"]
        assert [r.key for r in result.new] == ["account|tier", "widget|color"]
        assert result.errored == []
        assert result.template_path == tmp_path / "create.csv"
        assert (tmp_path / "create.csv").read_text().count("\n") == 3

    def test_no_template_when_nothing_new(self, tmp_path, registry):
        records, _ = load_records(_csv(tmp_path, "account,name,,,,\n"))

        result = assess(records, registry, template_path=tmp_path / "create.csv")

        assert result.template_path is None
        assert not (tmp_path / "create.csv").exists()

    def test_empty_raises(self, registry):
        with pytest.raises(InputError):
            assess([], registry)


class TestCreate:

    def test_everything_exists(self, tmp_path, registry):
        records, _ = load_records(_csv(tmp_path, "account,name,Account,Name,text,\n"))

        result = create(records, registry, "new", "CoreSolution", confirm=True)

        assert result.to_create == []
        assert result.provision is None
        assert result.success
        assert registry.publish_count == 0

    def test_validation_halts_run(self, tmp_path, registry):
        records, _ = load_records(_csv(tmp_path, (
            "account,tier,Account,Tier,choice,\n"
            "account,nickname,Account,Nickname,text,\n"
        )))
        asked = []

        result = create(records, registry, "new", "CoreSolution", confirm=lambda pending: asked.append(pending) or True)

        assert result.halted
        assert not result.success
        assert asked == []
        assert registry.call_count("create_field") == 0
        assert records[0].error_message.startswith("Validation failed: ")
        assert records[1].error_message is None

    def test_skip_invalid_provisions_the_rest(self, tmp_path, registry, fast_policy):
        records, _ = load_records(_csv(tmp_path, (
            "account,tier,Account,Tier,choice,\n"
            "account,nickname,Account,Nickname,text,\n"
        )))

        result = create(records, registry, "new", "CoreSolution", confirm=True, policy=fast_policy, skip_invalid=True)

        assert not result.halted
        assert result.provision.fields_created == ["new_nickname"]
        assert not result.success

    def test_declined_confirmation_creates_nothing(self, tmp_path, registry):
        records, _ = load_records(_csv(tmp_path, "account,nickname,Account,Nickname,text,\n"))
        seen = []

        def decline(pending):
            seen.extend(r.key for r in pending)
            return False

        result = create(records, registry, "new", "CoreSolution", confirm=decline)

        assert seen == ["account|nickname"]
        assert result.provision.skipped
        assert registry.call_count("create_field") == 0

    def test_probe_errors_excluded(self, tmp_path, registry, fast_policy):
        from dvschema.errors import RegistryError

        registry.fail("describe_table", "contact", RegistryError("HTTP 500: boom"))
        records, _ = load_records(_csv(tmp_path, (
            "contact,isvip,Contact,Is VIP,boolean,\n"
            "account,nickname,Account,Nickname,text,\n"
        )))

        result = create(records, registry, "new", "CoreSolution", confirm=True, policy=fast_policy)

        assert [r.key for r in result.to_create] == ["account|nickname"]
        assert records[0].error_message.startswith("Error checking table 'contact'")
        assert not result.success

    def test_sample_file_end_to_end(self, tmp_path, registry, fast_policy):
        records, _ = load_records(write_sample(tmp_path / "sample.csv"))

        result = create(records, registry, "new", "CoreSolution", confirm=True, policy=fast_policy)

        assert result.validation_errors == []
        assert result.success
        assert result.provision.tables_created == ["new_project"]
        assert len(result.provision.fields_created) == len(records)
        assert registry.publish_count == 1
        assert summarize(records)["existing"] == len(records)

    def test_second_run_creates_nothing(self, tmp_path, registry, fast_policy):
        sample = write_sample(tmp_path / "sample.csv")
        first, _ = load_records(sample)
        assert create(first, registry, "new", "CoreSolution", confirm=True, policy=fast_policy).success
        calls_before = len(registry.calls)

        again, _ = load_records(sample)
        result = create(again, registry, "new", "CoreSolution", confirm=True, policy=fast_policy)

        assert result.to_create == []
        assert result.validation_errors == []
        assert result.success
        assert result.provision is None
        assert registry.publish_count == 1
        assert {op for op, _ in registry.calls[calls_before:]} == {"describe_table"}
        assert {r.registry_table for r in again if r.table_key == "project"} == {"new_project"}

    def test_rerun_after_partial_failure_creates_only_the_failed_field(self, tmp_path, registry, fast_policy):
        from dvschema.errors import RegistryError

        sample = write_sample(tmp_path / "sample.csv")
        registry.fail("create_field", "new_notes", RegistryError("HTTP 500: boom"))
        first, _ = load_records(sample)
        assert not create(first, registry, "new", "CoreSolution", confirm=True, policy=fast_policy).success

        again, _ = load_records(sample)
        result = create(again, registry, "new", "CoreSolution", confirm=True, policy=fast_policy)

        assert [r.key for r in result.to_create] == ["project|notes"]
        assert result.validation_errors == []
        assert result.provision.fields_created == ["new_notes"]
        assert result.provision.tables_created == []
        assert "new_notes" in registry.tables["new_project"]
        assert result.success

    def test_empty_raises(self, registry):
        with pytest.raises(InputError):
            create([], registry, "new", "CoreSolution", confirm=True)


def test_summarize(make_record):
    exists = make_record("account", "name")
    exists.mark_field_exists()
    absent = make_record("widget", "color")
    failed = make_record("contact", "x")
    failed.error_message = "boom"

    assert summarize([exists, absent, failed]) == {
        "total": 3, "existing": 1, "new": 1, "errored": 1, "tables_absent": 1,
    }
