import csv, io, re
from datetime import date
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

import pandas as pd
from loguru import logger

ATTENDEE_COLUMNS = ["nik", "nama", "departemen"]
RESPONSE_COLUMNS = ["nik", "nama", "nilai", "waktu"]
RECORD_COLUMNS = ["nik", "nama", "departemen", "status", "nilai", "waktu"]
SUMMARY_COLUMNS = ["departemen", "total", "done", "pending", "percent"]

STATUS_DONE = "done"
STATUS_PENDING = "pending"
ALL_DEPARTMENTS = "semua"

# published sheet layout: A = timestamp, C = nama, D = departemen
SHEET_COL_TIMESTAMP = 0
SHEET_COL_NAME = 2
SHEET_COL_DEPARTMENT = 3

Records = Union[pd.DataFrame, Iterable[dict]]

# -------------------- csv parsing --------------------

def _finish_field(chars: List[str], q_start: Optional[int], q_end: Optional[int]) -> str:
    s = "".join(chars)
    if q_start is None: return s.strip()
    return s[:q_start].lstrip() + s[q_start:q_end] + s[q_end:].rstrip()

def parse_csv(text: str, skip_header: bool = False) -> List[List[str]]:
    """Split comma-separated text into rows of fields.

    Quoted fields keep commas, newlines and doubled quotes literally; only the
    whitespace outside the quotes is trimmed. Lines that are blank after
    trimming produce no row. An unterminated quote is not an error: the rest
    of the text becomes part of the open field.
    """
    if not text: return []
    if text.startswith("\ufeff"): text = text[1:]
    rows: List[List[str]] = []
    row: List[str] = []; chars: List[str] = []
    q_start: Optional[int] = None; q_end: Optional[int] = None
    in_quotes = False; has_content = False
    i, n = 0, len(text)
    while i < n:
        ch = text[i]
        if in_quotes:
            if ch == '"':
                if i+1 < n and text[i+1] == '"':
                    chars.append('"'); i += 2; continue
                in_quotes = False; q_end = len(chars)
            else:
                chars.append(ch)
        elif ch == '"':
            in_quotes = True; has_content = True
            if q_start is None: q_start = len(chars)
        elif ch == ',':
            has_content = True
            row.append(_finish_field(chars, q_start, q_end))
            chars = []; q_start = q_end = None
        elif ch == '\n' or (ch == '\r' and i+1 < n and text[i+1] == '\n'):
            row.append(_finish_field(chars, q_start, q_end))
            if has_content: rows.append(row)
            row = []; chars = []; q_start = q_end = None; has_content = False
            if ch == '\r': i += 1
        else:
            chars.append(ch)
            if not ch.isspace(): has_content = True
        i += 1
    if in_quotes: q_end = len(chars)
    if has_content:
        row.append(_finish_field(chars, q_start, q_end))
        rows.append(row)
    return rows[1:] if skip_header else rows

# -------------------- record mapping --------------------

def _text(val) -> str:
    if val is None: return ""
    if isinstance(val, float) and val.is_integer(): val = int(val)
    return str(val).strip()

def _field(row: List[str], idx: int) -> str:
    return row[idx].strip() if idx < len(row) else ""

def _frame(rows: Iterable[dict], columns: List[str]) -> pd.DataFrame:
    return pd.DataFrame(list(rows), columns=columns, dtype=object)

def _is_missing(val) -> bool:
    try:
        return val is None or bool(pd.isna(val))
    except (TypeError, ValueError):
        return False

def map_sheet_rows(rows: List[List[str]]) -> Tuple[pd.DataFrame, pd.DataFrame, int]:
    """Each valid sheet row is one submission: an attendee known only by name
    plus a response carrying that same name and no id."""
    employees, responses = [], []; rejected = 0
    for r in rows:
        nama = _field(r, SHEET_COL_NAME); dept = _field(r, SHEET_COL_DEPARTMENT)
        if not nama or not dept:
            rejected += 1; continue
        employees.append(dict(nik="", nama=nama, departemen=dept))
        responses.append(dict(nik="", nama=nama, nilai=None, waktu=_field(r, SHEET_COL_TIMESTAMP) or None))
    return _frame(employees, ATTENDEE_COLUMNS), _frame(responses, RESPONSE_COLUMNS), rejected

def map_employees(items: Iterable) -> Tuple[pd.DataFrame, int]:
    rows = []; rejected = 0
    for it in items:
        if not isinstance(it, dict):
            rejected += 1; continue
        nik, nama, dept = _text(it.get("nik")), _text(it.get("nama")), _text(it.get("departemen"))
        if not (nik or nama) or not dept:
            rejected += 1; continue
        rows.append(dict(nik=nik, nama=nama, departemen=dept))
    return _frame(rows, ATTENDEE_COLUMNS), rejected

def map_responses(items: Iterable) -> Tuple[pd.DataFrame, int]:
    rows = []; rejected = 0
    for it in items:
        if not isinstance(it, dict):
            rejected += 1; continue
        nik = _text(it.get("nik"))
        if not nik:
            rejected += 1; continue
        nilai = it.get("nilai")
        if isinstance(nilai, str): nilai = nilai.strip() or None
        rows.append(dict(nik=nik, nama=_text(it.get("nama")), nilai=nilai, waktu=_text(it.get("waktu")) or None))
    return _frame(rows, RESPONSE_COLUMNS), rejected

def dataset_from_sheet_csv(text: str) -> dict:
    rows = parse_csv(text, skip_header=True)
    employees, responses, rejected = map_sheet_rows(rows)
    logger.info(f"Sheet CSV: {len(rows)} rows, {rejected} rejected")
    return dict(employees=employees, responses=responses,
                rejected=dict(employees=rejected, responses=rejected))

def dataset_from_json(employees: Iterable, responses: Iterable) -> dict:
    emp_df, emp_rej = map_employees(employees)
    resp_df, resp_rej = map_responses(responses)
    logger.info(f"Backend JSON: {len(emp_df)} employees ({emp_rej} rejected), {len(resp_df)} responses ({resp_rej} rejected)")
    return dict(employees=emp_df, responses=resp_df,
                rejected=dict(employees=emp_rej, responses=resp_rej))

# -------------------- identity & dedup --------------------

def normalize_key(val) -> str:
    return _text(val).casefold()

def _identity(rec: dict) -> str:
    # ids and names live in separate key spaces so a name never matches an id
    nik = normalize_key(rec.get("nik"))
    return f"nik:{nik}" if nik else f"nama:{normalize_key(rec.get('nama'))}"

def attendee_key(rec: dict) -> str:
    return _identity(rec)

def response_key(rec: dict) -> str:
    return _identity(rec)

def dedupe(df: pd.DataFrame, key: Callable[[dict], str], report_duplicates: bool = False) -> Tuple[pd.DataFrame, Optional[pd.DataFrame]]:
    """Keep the first row per key, in input order.

    With ``report_duplicates`` the second value holds every row whose key
    occurs more than once (first occurrence included), else ``None``.
    """
    keys = pd.Series([key(r) for r in df.to_dict("records")], index=df.index, dtype=object)
    unique = df.loc[~keys.duplicated(keep="first")].reset_index(drop=True)
    dups = df.loc[keys.duplicated(keep=False)].reset_index(drop=True) if report_duplicates else None
    return unique, dups

# -------------------- reconciliation --------------------

def reconcile(employees: pd.DataFrame, responses: pd.DataFrame) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """One record per attendee, ``done`` iff a response shares its key.

    Returns (records, orphans); orphans are responses no attendee claims.
    """
    by_key: Dict[str, dict] = {}
    for r in responses.to_dict("records"):
        by_key.setdefault(response_key(r), r)
    rows = []; claimed = set()
    for e in employees.to_dict("records"):
        k = attendee_key(e); hit = by_key.get(k)
        if hit is not None: claimed.add(k)
        rows.append(dict(
            nik=e["nik"], nama=e["nama"], departemen=e["departemen"],
            status=STATUS_DONE if hit is not None else STATUS_PENDING,
            nilai=None if hit is None or _is_missing(hit["nilai"]) else hit["nilai"],
            waktu=None if hit is None or _is_missing(hit["waktu"]) else hit["waktu"],
        ))
    orphans = [r for k, r in by_key.items() if k not in claimed]
    if orphans:
        logger.warning(f"{len(orphans)} responses match no employee: {', '.join(str(r['nik'] or r['nama']) for r in orphans[:10])}")
    return _frame(rows, RECORD_COLUMNS), _frame(orphans, RESPONSE_COLUMNS)

# -------------------- aggregation --------------------

def percent(done: int, total: int) -> int:
    if total <= 0: return 0
    # round half up, in integers
    return (200*done + total) // (2*total)

def _summary_row(dept: str, total: int, done: int) -> dict:
    return dict(departemen=dept, total=total, done=done, pending=total-done, percent=percent(done, total))

def summarize(records: pd.DataFrame) -> List[dict]:
    if records.empty: return []
    done = (records["status"] == STATUS_DONE).astype(int)
    grouped = done.groupby(records["departemen"], sort=True).agg(["size", "sum"])
    return [_summary_row(str(dept), int(g["size"]), int(g["sum"])) for dept, g in grouped.iterrows()]

def overall(records: pd.DataFrame) -> dict:
    return _summary_row(ALL_DEPARTMENTS, len(records), int((records["status"] == STATUS_DONE).sum()))

def _records(df: Optional[pd.DataFrame]) -> List[dict]:
    if df is None: return []
    return [{k: (None if _is_missing(v) else v) for k, v in r.items()} for r in df.to_dict("records")]

def build_report(dataset: dict, department: Optional[str] = None) -> dict:
    employees, duplicates = dedupe(dataset["employees"], attendee_key, report_duplicates=True)
    responses, _ = dedupe(dataset["responses"], response_key)
    records, orphans = reconcile(employees, responses)
    summary = summarize(records)
    total = overall(records)
    if department:
        records = records.loc[records["departemen"] == department]
    logger.info(f"Reconciled {len(employees)} employees: {total['done']} done, {total['pending']} pending, "
                f"{len(dataset['employees'])-len(employees)} duplicate rows, {len(orphans)} orphan responses")
    return dict(
        summary=summary, overall=total,
        records=_records(records), duplicates=_records(duplicates), orphans=_records(orphans),
        rejected=dict(dataset.get("rejected") or {}),
        counts=dict(employees=len(dataset["employees"]), unique_employees=len(employees),
                    responses=len(dataset["responses"]), unique_responses=len(responses),
                    orphans=len(orphans)),
    )

# -------------------- export --------------------

EXPORT_KINDS = ("rekap", "detail", "pending", "duplikat")

def report_rows(report: dict, kind: str, department: Optional[str] = None) -> List[dict]:
    if kind == "rekap":
        return [s for s in report["summary"] if not department or s["departemen"] == department]
    if kind == "detail":
        return list(report["records"])
    if kind == "pending":
        return [r for r in report["records"] if r["status"] == STATUS_PENDING]
    if kind == "duplikat":
        return [d for d in report["duplicates"] if not department or d["departemen"] == department]
    raise ValueError(f"Unknown report kind: {kind}. Expected one of {', '.join(EXPORT_KINDS)}")

def export_csv(records: Records) -> Optional[str]:
    """Header of bare keys, then every value quoted. ``None`` when empty."""
    rows = records.to_dict("records") if isinstance(records, pd.DataFrame) else list(records)
    if not rows:
        logger.warning("Nothing to export")
        return None
    header = list(rows[0].keys())
    body = _frame(rows, header).to_csv(index=False, header=False, quoting=csv.QUOTE_ALL,
                                       na_rep="", lineterminator="\n")
    return ",".join(header) + "\n" + body

def report_filename(kind: str, department: Optional[str] = None, today: Optional[date] = None, ext: str = "csv") -> str:
    # slug is safe for Content-Disposition and file paths
    dept = re.sub(r"[^a-z0-9]+", "-", (department or "").lower()).strip("-") or ALL_DEPARTMENTS
    return f"{kind}_{dept}_{(today or date.today()).isoformat()}.{ext}"

def export_workbook(report: dict) -> bytes:
    sheets = {
        "Ringkasan": _frame(report["summary"], SUMMARY_COLUMNS),
        "Detail": _frame(report["records"], RECORD_COLUMNS),
        "Duplikat": _frame(report["duplicates"], ATTENDEE_COLUMNS),
        "Orphan": _frame(report["orphans"], RESPONSE_COLUMNS),
    }
    last_err: Optional[Exception] = None
    for engine in ("openpyxl", "xlsxwriter"):
        buf = io.BytesIO()
        try:
            with pd.ExcelWriter(buf, engine=engine) as w:
                for name, df in sheets.items():
                    df.to_excel(w, index=False, sheet_name=name)
        except Exception as e:
            logger.warning(f"Excel engine {engine} failed: {e}")
            last_err = e; continue
        return buf.getvalue()
    raise last_err
