import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from services.csv_tokenizer import RawGrid, detect_delimiter, join_row, tokenize


def test_plain_grid_round_trips_through_join():
    rows = [
        ["product_url", "rating", "review_text"],
        ["red-shirt", "5", "Love it"],
        ["blue-hat", "3", "Fine I guess"],
    ]
    text = "\n".join(join_row(r) for r in rows)

    grid = tokenize(text)

    assert [list(r) for r in grid] == rows
    assert [join_row(r) for r in grid] == [join_row(r) for r in rows]


def test_quoted_cell_keeps_newline_and_delimiter():
    text = 'rating,body\n5,"Great fit,\nwould buy again"\n4,ok\n'

    grid = tokenize(text)

    assert len(grid) == 3
    assert grid[1] == ("5", "Great fit,\nwould buy again")
    assert grid[2] == ("4", "ok")


def test_doubled_quotes_decode_to_literal_quote():
    grid = tokenize('body\n"He said ""hi"""')

    assert grid.cell(1, 0) == 'He said "hi"'


def test_empty_input_gives_empty_grid():
    grid = tokenize("")

    assert len(grid) == 0
    assert grid.header == ()
    assert grid.data_rows == ()


def test_trailing_newlines_do_not_add_rows():
    assert len(tokenize("a,b\n1,2\n")) == 2
    assert len(tokenize("a,b\r\n1,2\r\n\r\n")) == 2


def test_crlf_and_lone_cr_close_rows():
    grid = tokenize("a,b\r\n1,2\r3,4")

    assert [list(r) for r in grid] == [["a", "b"], ["1", "2"], ["3", "4"]]


def test_unterminated_quote_absorbs_rest_of_input():
    grid = tokenize('rating,body\n5,"never closed\n4,next row')

    assert len(grid) == 2
    assert grid.cell(1, 1) == "never closed\n4,next row"


def test_semicolon_detected_only_when_it_outnumbers_commas():
    assert detect_delimiter("a;b;c\n1;2;3") == ";"
    assert detect_delimiter("a,b;c\n") == ","
    assert detect_delimiter("a;b,c,d") == ","

    grid = tokenize("rating;body\n5;Nice, really nice")
    assert grid[1] == ("5", "Nice, really nice")


def test_delimiter_sniffed_from_first_line_with_bare_cr_breaks():
    text = "rating;body\r5,a,b,c\r4,d,e,f"

    assert detect_delimiter(text) == ";"
    assert tokenize(text)[0] == ("rating", "body")



def test_leading_bom_is_stripped():
    grid = tokenize("\ufeffrating,body\n5,Nice")

    assert grid.header == ("rating", "body")


def test_cell_is_tolerant_of_ragged_rows():
    grid = RawGrid([("a", "b", "c"), ("1",)])

    assert grid.cell(1, 0) == "1"
    assert grid.cell(1, 2) == ""
    assert grid.cell(5, 0) == ""
