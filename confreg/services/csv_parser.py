"""Quote-aware CSV tokenizer for RSVP uploads.

Rows are numbered by physical line and fully blank rows are dropped. An
unterminated quote raises instead of swallowing the rest of the file.
"""

from dataclasses import dataclass, field


class CsvParseError(ValueError):
    pass


@dataclass
class CsvRow:
    row_number: int
    columns: list[str] = field(default_factory=list)


def parse_csv(content: str) -> list[CsvRow]:
    text = content
    if text.startswith("\ufeff"):
        text = text[1:]
    text = text.replace("\r\n", "\n")

    rows: list[CsvRow] = []
    current: list[str] = []
    buf: list[str] = []
    inside_quotes = False
    row_number = 1
    i = 0
    length = len(text)

    while i < length:
        char = text[i]
        if inside_quotes:
            if char == '"':
                if i + 1 < length and text[i + 1] == '"':
                    buf.append('"')
                    i += 2
                    continue
                inside_quotes = False
            else:
                buf.append(char)
            i += 1
            continue

        if char == '"':
            inside_quotes = True
        elif char == ",":
            current.append("".join(buf))
            buf = []
        elif char == "\n":
            current.append("".join(buf))
            rows.append(CsvRow(row_number, current))
            current = []
            buf = []
            row_number += 1
        elif char != "\r":
            buf.append(char)
        i += 1

    if inside_quotes:
        raise CsvParseError("CSV appears to have mismatched quotes")

    current.append("".join(buf))
    rows.append(CsvRow(row_number, current))

    return [row for row in rows if any(col.strip() for col in row.columns)]


def looks_like_header(row: CsvRow) -> bool:
    if len(row.columns) < 2:
        return False
    first = row.columns[0].strip().lower()
    second = row.columns[1].strip().lower()
    if not first:
        return False
    if first == "email":
        return True
    return "email" in first and "name" in second
