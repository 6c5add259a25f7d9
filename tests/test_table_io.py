import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from table_io import (
    output_filename,
    parse_id_list,
    parse_keyword_list,
    parse_table,
    read_table,
    school_slug,
    write_table,
)


def test_parse_table_picks_delimiter_from_first_line():
    assert parse_table("a\tb\n1\t2, 3\n") == [["a", "b"], ["1", "2, 3"]]
    assert parse_table('a,b\n"x, y",2\n') == [["a", "b"], ["x, y", "2"]]


def test_id_list_from_lines():
    assert parse_id_list("123.4567\n\n  456.4567  \n") == frozenset({"123.4567", "456.4567"})
    assert parse_id_list("") == frozenset()


def test_id_list_from_csv_with_student_id_column():
    text = "name,Student_ID\nJane,123.4567\nTom,\nAri,200.4567\n"
    assert parse_id_list(text) == frozenset({"123.4567", "200.4567"})


def test_keyword_list():
    assert parse_keyword_list("Uniform\n\n  Stationery \n") == ("Uniform", "Stationery")


def test_school_slug_and_file_names():
    assert school_slug("  Te Kura o Ōtaki! ") == "te_kura_o_taki"
    assert output_filename("Hillside School", "payables") == "hillside_school_payables.csv"
    assert output_filename("", "removed") == "removed.csv"


def test_write_then_read(tmp_path):
    path = write_table(tmp_path / "nested" / "out.csv", ["a", "b"], [["1", "x, y"]])
    assert read_table(path) == [["a", "b"], ["1", "x, y"]]
