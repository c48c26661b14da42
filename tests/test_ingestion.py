"""测试 CSV / JSON 解析与初始快照构建。"""

from __future__ import annotations

import json

import pytest

from insightos.dataops.hashing import hash_rows
from insightos.dataops.ingestion import INITIAL_UPLOAD, build_snapshot, parse_csv, parse_json, process_file
from insightos.dataops.runner import TransformationRunner
from insightos.exceptions import IngestionError
from insightos.models.dataset import ColumnType
from insightos.models.plan import OperationType, TransformationPlan
from tests.factories import fixed_clock


class TestParseCsv:
    def test_values_trimmed_and_numbers_coerced(self):
        text = 'name, age, city\n"Alice", 30, "Paris"\n\nBob, 25.5, Berlin\n'
        result = parse_csv(text)
        assert result.rows == [
            {"name": "Alice", "age": 30, "city": "Paris"},
            {"name": "Bob", "age": 25.5, "city": "Berlin"},
        ]
        assert [c.name for c in result.columns] == ["name", "age", "city"]

    def test_column_types_from_first_row(self):
        text = "name,salary,hire_date,joined\nAlice,100,,2020-01-05\n"
        types = {c.name: c.type for c in parse_csv(text).columns}
        assert types == {
            "name": ColumnType.STRING,
            "salary": ColumnType.NUMBER,
            "hire_date": ColumnType.DATE,
            "joined": ColumnType.DATE,
        }

    def test_empty_values_kept_as_empty_string(self):
        result = parse_csv("a,b\n1,\n")
        assert result.rows == [{"a": 1, "b": ""}]

    def test_alphanumeric_text_stays_string(self):
        """无法完整解析为数字的值保留为字符串。"""
        result = parse_csv("code\nabc123\n")
        assert result.rows == [{"code": "abc123"}]

    def test_rows_with_wrong_field_count_skipped(self):
        """字段数少于或多于表头的行都被跳过，不做补齐。"""
        result = parse_csv("a,b,c\n1,2,3\n4,5\n6,7,8,9\n10,11,12\n")
        assert result.rows == [{"a": 1, "b": 2, "c": 3}, {"a": 10, "b": 11, "c": 12}]

    def test_quoted_comma_counts_as_one_field(self):
        result = parse_csv('name,city\n"Doe, Jane",Paris\n')
        assert result.rows == [{"name": "Doe, Jane", "city": "Paris"}]

    def test_header_only(self):
        result = parse_csv("a,b\n")
        assert result.rows == []
        assert [c.name for c in result.columns] == ["a", "b"]

    @pytest.mark.parametrize("text", ["", "\n\n  \n"])
    def test_empty_file_rejected(self, text):
        with pytest.raises(IngestionError):
            parse_csv(text)


class TestParseJson:
    def test_array_of_objects(self):
        text = json.dumps([{"name": "Alice", "age": 30, "active": True}, {"name": "Bob", "age": 41, "active": False}])
        result = parse_json(text)
        assert len(result.rows) == 2
        types = {c.name: c.type for c in result.columns}
        assert types == {"name": ColumnType.STRING, "age": ColumnType.NUMBER, "active": ColumnType.BOOLEAN}

    def test_single_object_is_one_row(self):
        result = parse_json('{"a": 1}')
        assert result.rows == [{"a": 1}]

    def test_nested_values_stored_as_json_strings(self):
        result = parse_json('[{"tags": ["x", "y"], "meta": {"k": 1}}]')
        assert result.rows == [{"tags": '["x","y"]', "meta": '{"k":1}'}]
        assert all(c.type is ColumnType.STRING for c in result.columns)

    def test_example_truncated(self):
        result = parse_json(json.dumps([{"text": "x" * 50}]))
        assert result.columns[0].example == "x" * 20

    @pytest.mark.parametrize("text", ["not json", "[]", "[1, 2]"])
    def test_invalid_input_rejected(self, text):
        with pytest.raises(IngestionError):
            parse_json(text)


class TestProcessFile:
    def test_extension_case_insensitive(self):
        ingested = process_file("DATA.CSV", b"a\n1\n")
        assert ingested.file_name == "DATA.CSV"
        assert ingested.rows == [{"a": 1}]

    def test_utf8_bom_stripped(self):
        ingested = process_file("data.csv", "\ufeffname\nAlice\n".encode("utf-8"))
        assert ingested.columns[0].name == "name"

    @pytest.mark.parametrize("name", ["data.xlsx", "data", "notes.txt"])
    def test_unsupported_extension(self, name):
        with pytest.raises(IngestionError, match="Unsupported file type"):
            process_file(name, b"a\n1\n")


class TestBuildSnapshot:
    def test_initial_snapshot(self):
        ingested = process_file("people.json", '[{"name": "Alice"}, {"name": "Bob"}]')
        snapshot = build_snapshot(ingested, dataset_id="abc", clock=fixed_clock)
        assert snapshot.id == "abc"
        assert snapshot.version == 1
        assert snapshot.row_ids == ["r1", "r2"]
        assert snapshot.next_row_seq == 3
        assert snapshot.version_hash == hash_rows(snapshot.rows)
        assert len(snapshot.history) == 1
        assert snapshot.history[0].change_description == INITIAL_UPLOAD
        assert snapshot.history[0].row_count == 2

    def test_generated_ids_unique(self):
        ingested = process_file("a.csv", "x\n1\n")
        assert build_snapshot(ingested).id != build_snapshot(ingested).id


class TestUploadThenTransform:
    def test_fill_nulls_after_csv_upload(self):
        """上传 CSV 后 age 推断为数值列，FILL_NULLS 把 Bob 的空年龄填为 0。"""
        snapshot = build_snapshot(process_file("people.csv", "name,age\nAlice,30\nBob,\n"), clock=fixed_clock)
        assert [c.type for c in snapshot.columns] == [ColumnType.STRING, ColumnType.NUMBER]
        assert snapshot.rows[1] == {"name": "Bob", "age": ""}

        result = TransformationRunner(clock=fixed_clock).execute(
            snapshot, TransformationPlan.single(OperationType.FILL_NULLS)
        )
        assert result.rows == [{"name": "Alice", "age": 30}, {"name": "Bob", "age": 0}]
        assert result.version == 2
        assert result.history[-1].modifications_count == 1
