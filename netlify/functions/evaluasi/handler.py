from mangum import Mangum
from fastapi import Depends, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.responses import Response, JSONResponse
from typing import Optional
import os
from . import logic, sources

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

app = FastAPI()


def get_source() -> sources.HttpSource:
    return sources.source_from_env(os.environ)


@app.exception_handler(sources.TransportError)
async def transport_error(request: Request, exc: sources.TransportError):
    return JSONResponse(status_code=502, content={"error": str(exc), "status": exc.status})


# bad EVALUASI_* configuration or request values
@app.exception_handler(ValueError)
async def value_error(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"error": str(exc)})


def _attachment(content, media_type: str, filename: str) -> Response:
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@app.get("/api/health")
def health():
    return {"ok": True}


@app.get("/api/summary")
async def summary(source: sources.HttpSource = Depends(get_source)):
    report = await sources.run_pipeline(source)
    report.pop("records")
    return report


@app.get("/api/records")
async def records(department: Optional[str] = None, source: sources.HttpSource = Depends(get_source)):
    report = await sources.run_pipeline(source, department=department)
    return report["records"]


@app.get("/api/duplicates")
async def duplicates(source: sources.HttpSource = Depends(get_source)):
    report = await sources.run_pipeline(source)
    return report["duplicates"]


@app.get("/api/export.xlsx")
async def export_xlsx(source: sources.HttpSource = Depends(get_source)):
    report = await sources.run_pipeline(source)
    return _attachment(logic.export_workbook(report), XLSX_MEDIA_TYPE, logic.report_filename("evaluasi", ext="xlsx"))


@app.get("/api/export/{kind}")
async def export(kind: str, department: Optional[str] = None, source: sources.HttpSource = Depends(get_source)):
    if kind not in logic.EXPORT_KINDS:
        raise HTTPException(status_code=404, detail=f"Unknown report kind: {kind}")
    report = await sources.run_pipeline(source, department=department)
    text = logic.export_csv(logic.report_rows(report, kind, department=department))
    if text is None:
        return Response(status_code=204, headers={"X-Export-Warning": "nothing to export"})
    return _attachment(text, "text/csv; charset=utf-8", logic.report_filename(kind, department))


@app.post("/api/upload")
async def upload(sheet_csv: UploadFile = File(...), department: Optional[str] = None):
    raw = await sheet_csv.read()
    dataset = logic.dataset_from_sheet_csv(raw.decode("utf-8-sig", errors="replace"))
    return logic.build_report(dataset, department=department)


handler = Mangum(app)
