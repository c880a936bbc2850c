"""
Unit tests for workload_reader module.
"""

from pathlib import Path

from jitstats.workload_reader import (
    WorkloadStatement,
    clean_sql,
    load_sql_text,
    load_workload,
    scan_workload_dir,
    split_on_semicolons,
    split_statements,
    strip_comments,
    strip_psql_meta_commands,
)


class TestStripComments:
    """Tests for comment stripping."""

    def test_single_line_comment(self):
        """Test stripping single-line comments."""
        sql = "SELECT * FROM t -- this is a comment\nWHERE x = 1"
        result = strip_comments(sql)
        assert "--" not in result
        assert "SELECT * FROM t" in result
        assert "WHERE x = 1" in result

    def test_block_comment(self):
        """Test stripping block comments."""
        sql = "SELECT /* inline comment */ * FROM t"
        result = strip_comments(sql)
        assert "/*" not in result
        assert "*/" not in result
        assert "* FROM t" in result

    def test_preserve_string_with_comment_chars(self):
        """Test that comment-like chars in strings are preserved."""
        sql = "SELECT '-- not a comment' FROM t"
        assert "'-- not a comment'" in strip_comments(sql)

    def test_preserve_quoted_identifier(self):
        sql = 'SELECT "a--b" FROM t'
        assert strip_comments(sql) == sql

    def test_preserve_dollar_quoted_body(self):
        """Test dollar-quoted bodies keep their contents."""
        sql = "SELECT $fn$ -- kept /* also kept */ $fn$ FROM t"
        assert strip_comments(sql) == sql

    def test_escaped_quote(self):
        sql = "SELECT 'it''s -- here' FROM t -- gone"
        result = strip_comments(sql)
        assert "'it''s -- here'" in result
        assert "gone" not in result


class TestMetaCommands:
    def test_strip_meta_commands(self):
        """Test psql backslash commands are dropped."""
        sql = "\\timing on\n\\pset pager off\nSELECT 1;\n  \\gset"
        assert strip_psql_meta_commands(sql).strip() == "SELECT 1;"

    def test_clean_sql(self):
        sql = "-- header\n\n\\timing\nSELECT *\n\n\nFROM t;  "
        assert clean_sql(sql) == "SELECT *\nFROM t;"


class TestSplitting:
    """Tests for statement splitting."""

    def test_split_statements(self):
        asts, warnings = split_statements("SELECT 1; SELECT 2")
        assert len(asts) == 2
        assert warnings == []

    def test_split_statements_parse_error(self):
        asts, warnings = split_statements("SELECT * FROM (")
        assert asts == []
        assert warnings[0].startswith("Parse error")

    def test_split_statements_token_error(self):
        asts, warnings = split_statements("SELECT 'unterminated")
        assert asts == []
        assert warnings[0].startswith("Parse error")

    def test_split_on_semicolons(self):
        sql = "select ';' from t; select $$a;b$$; ; select \"x;y\" from u"
        assert split_on_semicolons(sql) == [
            "select ';' from t",
            "select $$a;b$$",
            'select "x;y" from u',
        ]


class TestLoadSqlText:
    def test_multiple_statements(self):
        statements = load_sql_text("select * from t1; select * from t2;", "q.sql")

        assert [s.statement_id for s in statements] == ["q.sql::0", "q.sql::1"]
        assert statements[1].sql == "SELECT * FROM t2"
        assert all(s.ast is not None for s in statements)

    def test_bad_statement_does_not_hide_others(self):
        """Test a statement the parser rejects is isolated from its neighbours."""
        statements = load_sql_text("select * from t1; select * from (; select 2", "q.sql")

        assert len(statements) == 3
        assert statements[0].ast is not None
        assert statements[1].ast is None
        assert statements[1].sql == "select * from ("
        assert statements[1].warnings
        assert statements[2].ast is not None

    def test_untokenizable_statement_recorded(self):
        """Test an unterminated string becomes a warning, not an exception."""
        statements = load_sql_text("select * from t1; select 'abc from t2", "q.sql")

        assert len(statements) == 2
        assert statements[0].ast is not None
        assert statements[1].ast is None
        assert statements[1].warnings[0].startswith("Parse error")

    def test_empty(self):
        assert load_sql_text("-- only a comment\n") == []


class TestWorkloadStatement:
    def test_statement_id(self):
        stmt = WorkloadStatement(source_sql_file="test4.sql", index=2, sql="SELECT 1")
        assert stmt.statement_id == "test4.sql::2"
        assert stmt.warnings == []


class TestLoadWorkload:
    """Tests for directory loading."""

    def test_scan(self, tmp_path: Path):
        (tmp_path / "b.sql").write_text("select 1")
        (tmp_path / "a.sql").write_text("select 1")
        (tmp_path / "notes.txt").write_text("ignored")
        nested = tmp_path / "nested"
        nested.mkdir()
        (nested / "c.sql").write_text("select 1")

        assert [p.name for p in scan_workload_dir(tmp_path)] == ["a.sql", "b.sql", "c.sql"]
        assert [p.name for p in scan_workload_dir(tmp_path, recursive=False)] == [
            "a.sql",
            "b.sql",
        ]

    def test_load_workload(self, tmp_path: Path):
        (tmp_path / "q1.sql").write_bytes(
            "\ufeff-- first\nselect * from t1;\nselect * from t2;\n".encode("utf-8")
        )
        (tmp_path / "q2.sql").write_text("\\timing on\nselect 1")

        statements = load_workload(tmp_path)

        assert [s.statement_id for s in statements] == ["q1.sql::0", "q1.sql::1", "q2.sql::0"]
        assert statements[0].sql == "SELECT * FROM t1"

    def test_unreadable_file(self, tmp_path: Path):
        (tmp_path / "bad.sql").write_bytes(b"select '\xff\xfe'")

        [stmt] = load_workload(tmp_path)

        assert stmt.ast is None
        assert stmt.warnings[0].startswith("Failed to read file")
