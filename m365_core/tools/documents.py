"""
Document generation: Word documents built with python-docx, PowerPoint decks
built with python-pptx and self-contained HTML reports, all uploaded to
OneDrive or a SharePoint document library.
"""

import html
import io
from datetime import datetime, timezone
from typing import List, Literal, Optional

from docx import Document
from docx.shared import Pt
from mcp.server.fastmcp import Context
from mcp.types import CallToolResult
from pptx import Presentation
from pptx.util import Inches
from pydantic import BaseModel

from ..context import get_graph
from ..errors import InvalidParamsError, handle_tool_errors
from . import ToolSpec, annotations, json_result, odata_params, require, text_result, unknown_action

DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
PPTX_MIME = "application/vnd.openxmlformats-officedocument.presentationml.presentation"
HTML_MIME = "text/html"

SectionType = Literal["heading1", "heading2", "heading3", "paragraph", "list", "table", "pageBreak", "card", "alert"]


class Section(BaseModel):
    type: SectionType
    content: Optional[str] = None
    title: Optional[str] = None
    items: Optional[List[str]] = None
    table_data: Optional[List[List[str]]] = None
    bold: bool = False
    level: Literal["info", "success", "warning", "error"] = "info"


def drive_base(drive_id: Optional[str], user_id: Optional[str]) -> str:
    """App-only tokens have no /me, so a drive or a user must be named."""
    if drive_id:
        return f"/drives/{drive_id}"
    if user_id:
        return f"/users/{user_id}/drive"
    raise InvalidParamsError("drive_id or user_id is required")


def _with_extension(file_name: str, extension: str) -> str:
    return file_name if file_name.lower().endswith(extension) else f"{file_name}{extension}"


def _upload_path(base: str, folder_path: Optional[str], file_name: str) -> str:
    folder = folder_path.strip("/") if folder_path else ""
    target = f"{folder}/{file_name}" if folder else file_name
    return f"{base}/root:/{target}:/content"


def build_docx(title: Optional[str], sections: List[Section]) -> bytes:
    """Build a valid .docx in memory."""
    doc = Document()
    style = doc.styles["Normal"]
    style.font.name = "Calibri"
    style.font.size = Pt(11)

    if title:
        doc.add_heading(title, level=0)

    for section in sections:
        match section.type:
            case "heading1" | "heading2" | "heading3":
                doc.add_heading(section.content or "", level=int(section.type[-1]))
            case "paragraph" | "card" | "alert":
                if section.title:
                    doc.add_heading(section.title, level=3)
                run = doc.add_paragraph().add_run(section.content or "")
                run.bold = section.bold
            case "list":
                for item in section.items or []:
                    doc.add_paragraph(item, style="List Bullet")
            case "table":
                rows = section.table_data or []
                if rows:
                    table = doc.add_table(rows=len(rows), cols=max(len(r) for r in rows))
                    table.style = "Table Grid"
                    for r, row in enumerate(rows):
                        for c, value in enumerate(row):
                            table.cell(r, c).text = str(value)
            case "pageBreak":
                doc.add_page_break()

    bio = io.BytesIO()
    doc.save(bio)
    return bio.getvalue()


class Slide(BaseModel):
    title: str
    layout: Literal["title", "content", "table"] = "content"
    subtitle: Optional[str] = None
    bullets: Optional[List[str]] = None
    table_data: Optional[List[List[str]]] = None
    notes: Optional[str] = None


# Slide layouts of the default python-pptx template.
TITLE_LAYOUT = 0
CONTENT_LAYOUT = 1
TITLE_ONLY_LAYOUT = 5


def build_pptx(slides: List[Slide]) -> bytes:
    """Build a valid .pptx in memory, one slide per entry."""
    prs = Presentation()
    for spec in slides:
        match spec.layout:
            case "title":
                slide = prs.slides.add_slide(prs.slide_layouts[TITLE_LAYOUT])
                slide.shapes.title.text = spec.title
                slide.placeholders[1].text = spec.subtitle or ""
            case "content":
                slide = prs.slides.add_slide(prs.slide_layouts[CONTENT_LAYOUT])
                slide.shapes.title.text = spec.title
                body = slide.placeholders[1].text_frame
                bullets = spec.bullets or []
                body.text = bullets[0] if bullets else ""
                for bullet in bullets[1:]:
                    body.add_paragraph().text = bullet
            case "table":
                slide = prs.slides.add_slide(prs.slide_layouts[TITLE_ONLY_LAYOUT])
                slide.shapes.title.text = spec.title
                rows = spec.table_data or []
                if rows:
                    cols = max(len(r) for r in rows)
                    shape = slide.shapes.add_table(
                        len(rows), cols, Inches(0.5), Inches(1.5), Inches(9), Inches(0.4 * len(rows))
                    )
                    for r, row in enumerate(rows):
                        for c, value in enumerate(row):
                            shape.table.cell(r, c).text = str(value)
        if spec.notes:
            slide.notes_slide.notes_text_frame.text = spec.notes

    bio = io.BytesIO()
    prs.save(bio)
    return bio.getvalue()


def render_html(title: str, sections: List[Section]) -> str:
    esc = html.escape
    parts = []
    for section in sections:
        match section.type:
            case "heading1" | "heading2" | "heading3":
                tag = f"h{section.type[-1]}"
                parts.append(f"<{tag}>{esc(section.content or '')}</{tag}>")
            case "paragraph":
                text = esc(section.content or "")
                parts.append(f"<p><strong>{text}</strong></p>" if section.bold else f"<p>{text}</p>")
            case "list":
                items = "".join(f"<li>{esc(i)}</li>" for i in section.items or [])
                parts.append(f"<ul>{items}</ul>")
            case "table":
                rows = section.table_data or []
                if rows:
                    head = "".join(f"<th>{esc(str(v))}</th>" for v in rows[0])
                    body = "".join(
                        "<tr>" + "".join(f"<td>{esc(str(v))}</td>" for v in row) + "</tr>" for row in rows[1:]
                    )
                    parts.append(f"<table><thead><tr>{head}</tr></thead><tbody>{body}</tbody></table>")
            case "card":
                heading = f"<h3>{esc(section.title)}</h3>" if section.title else ""
                parts.append(f'<div class="card">{heading}<p>{esc(section.content or "")}</p></div>')
            case "alert":
                parts.append(f'<div class="alert alert-{section.level}">{esc(section.content or "")}</div>')
            case "pageBreak":
                parts.append('<div class="page-break"></div>')

    generated = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
    return REPORT_TEMPLATE.format(title=esc(title), generated=generated, body="\n".join(parts))


REPORT_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>{title}</title>
<style>
body {{ font-family: 'Segoe UI', Arial, sans-serif; margin: 2rem; color: #323130; }}
h1 {{ color: #0078d4; }}
table {{ border-collapse: collapse; width: 100%; margin: 1rem 0; }}
th, td {{ border: 1px solid #c8c6c4; padding: 0.5rem; text-align: left; }}
th {{ background: #f3f2f1; }}
.card {{ border: 1px solid #edebe9; border-radius: 4px; padding: 1rem; margin: 1rem 0; }}
.alert {{ padding: 0.75rem 1rem; border-radius: 4px; margin: 1rem 0; }}
.alert-info {{ background: #deecf9; }}
.alert-success {{ background: #dff6dd; }}
.alert-warning {{ background: #fff4ce; }}
.alert-error {{ background: #fde7e9; }}
.page-break {{ page-break-after: always; }}
footer {{ margin-top: 2rem; font-size: 0.8rem; color: #605e5c; }}
</style>
</head>
<body>
<h1>{title}</h1>
{body}
<footer>Generated {generated}</footer>
</body>
</html>
"""


def _file_summary(item: dict) -> dict:
    return {
        "id": item.get("id"),
        "name": item.get("name"),
        "size": item.get("size"),
        "webUrl": item.get("webUrl"),
        "createdDateTime": item.get("createdDateTime"),
        "lastModifiedDateTime": item.get("lastModifiedDateTime"),
        "lastModifiedBy": (item.get("lastModifiedBy") or {}).get("user", {}).get("displayName"),
    }


async def _list_files(graph, base: str, folder_path: Optional[str], top: Optional[int], extension: str) -> list:
    folder = f"/root:/{folder_path.strip('/')}:" if folder_path else "/root"
    items = await graph.get_all(f"{base}{folder}/children", params=odata_params(top=top))
    return [_file_summary(i) for i in items if (i.get("name") or "").lower().endswith(extension)]


@handle_tool_errors
async def generate_word_document(
    action: Literal["create", "list", "get"],
    drive_id: Optional[str] = None,
    user_id: Optional[str] = None,
    file_name: Optional[str] = None,
    file_id: Optional[str] = None,
    folder_path: Optional[str] = None,
    title: Optional[str] = None,
    sections: Optional[List[Section]] = None,
    top: Optional[int] = None,
    ctx: Context = None,
) -> CallToolResult:
    """Create, list or inspect Word documents in a OneDrive or document library."""
    base = drive_base(drive_id, user_id)

    match action:
        case "create":
            require(action, file_name=file_name, sections=sections)
            name = _with_extension(file_name, ".docx")
            content = build_docx(title, sections)
            uploaded = await get_graph(ctx).put(
                _upload_path(base, folder_path, name),
                data=content,
                headers={"Content-Type": DOCX_MIME},
            )
            return json_result(
                {
                    "success": True,
                    **_file_summary(uploaded),
                    "message": f'Word document "{name}" created successfully with {len(sections)} sections',
                }
            )
        case "list":
            docs = await _list_files(get_graph(ctx), base, folder_path, top, ".docx")
            return json_result({"documents": docs, "count": len(docs)})
        case "get":
            require(action, file_id=file_id)
            return json_result(_file_summary(await get_graph(ctx).get(f"{base}/items/{file_id}")))
        case _:
            raise unknown_action(action)


@handle_tool_errors
async def generate_powerpoint_presentation(
    action: Literal["create", "list", "get"],
    drive_id: Optional[str] = None,
    user_id: Optional[str] = None,
    file_name: Optional[str] = None,
    file_id: Optional[str] = None,
    folder_path: Optional[str] = None,
    slides: Optional[List[Slide]] = None,
    top: Optional[int] = None,
    ctx: Context = None,
) -> CallToolResult:
    """Create, list or inspect PowerPoint decks in a OneDrive or document library."""
    base = drive_base(drive_id, user_id)

    match action:
        case "create":
            require(action, file_name=file_name, slides=slides)
            name = _with_extension(file_name, ".pptx")
            uploaded = await get_graph(ctx).put(
                _upload_path(base, folder_path, name),
                data=build_pptx(slides),
                headers={"Content-Type": PPTX_MIME},
            )
            return json_result(
                {
                    "success": True,
                    **_file_summary(uploaded),
                    "message": f'Presentation "{name}" created successfully with {len(slides)} slides',
                }
            )
        case "list":
            decks = await _list_files(get_graph(ctx), base, folder_path, top, ".pptx")
            return json_result({"presentations": decks, "count": len(decks)})
        case "get":
            require(action, file_id=file_id)
            return json_result(_file_summary(await get_graph(ctx).get(f"{base}/items/{file_id}")))
        case _:
            raise unknown_action(action)


@handle_tool_errors
async def generate_html_report(
    action: Literal["create", "preview"],
    title: str,
    sections: List[Section],
    drive_id: Optional[str] = None,
    user_id: Optional[str] = None,
    file_name: Optional[str] = None,
    folder_path: Optional[str] = None,
    ctx: Context = None,
) -> CallToolResult:
    """Render an HTML report; preview returns the markup, create uploads it."""
    require(action, title=title, sections=sections)
    markup = render_html(title, sections)

    match action:
        case "preview":
            return text_result(markup)
        case "create":
            require(action, file_name=file_name)
            name = _with_extension(file_name, ".html")
            uploaded = await get_graph(ctx).put(
                _upload_path(drive_base(drive_id, user_id), folder_path, name),
                data=markup.encode("utf-8"),
                headers={"Content-Type": HTML_MIME},
            )
            return json_result({"success": True, **_file_summary(uploaded), "message": f'Report "{name}" uploaded'})
        case _:
            raise unknown_action(action)


TOOLS = [
    ToolSpec(
        generate_word_document,
        "generate_word_document",
        "Generate Word Document",
        "Create Word documents from headings, paragraphs, lists and tables and store them in OneDrive or SharePoint.",
        annotations("Generate Word Document"),
    ),
    ToolSpec(
        generate_powerpoint_presentation,
        "generate_powerpoint_presentation",
        "Generate PowerPoint Presentation",
        "Create PowerPoint decks from title, bullet and table slides and store them in OneDrive or SharePoint.",
        annotations("Generate PowerPoint Presentation"),
    ),
    ToolSpec(
        generate_html_report,
        "generate_html_report",
        "Generate HTML Report",
        "Render a styled HTML report from sections; preview it or upload it to OneDrive or SharePoint.",
        annotations("Generate HTML Report"),
    ),
]
